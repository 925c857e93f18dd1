"""
Configuration module for the OIDC Backend-For-Frontend service.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider (OIDC), the server-side session cookie, role
resolution and CORS settings.

Environment variables are loaded from .env file or system environment.
Identity provider settings are optional at process start: a missing issuer
or client id fails the affected login request, not the whole service.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the OIDC client, session cookies, admin
    allowlist and security policies are defined here.
    """

    # =========================================================================
    # Identity Provider (OIDC)
    # =========================================================================

    OIDC_ISSUER: Optional[str] = Field(
        None,
        description="Issuer URL of the identity provider (e.g., https://idp.example.com)",
    )

    OIDC_DISCOVERY_URL: Optional[str] = Field(
        None,
        description="Explicit discovery document URL (defaults to <issuer>/.well-known/openid-configuration)",
    )

    OIDC_CLIENT_ID: Optional[str] = Field(
        None,
        description="Client ID registered with the identity provider",
    )

    OIDC_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret (optional for public clients)",
    )

    OIDC_REDIRECT_URI: str = Field(
        default="http://localhost:3000/auth/callback",
        description="Redirect URI registered with the identity provider",
        min_length=1,
    )

    OIDC_SCOPES: str = Field(
        default="openid,profile,email",
        description="Comma-separated list of requested scopes",
    )

    OIDC_HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for discovery, token and JWKS requests",
        gt=0,
        le=120,
    )

    # =========================================================================
    # ID Token Validation
    # =========================================================================

    OIDC_VERIFY_SIGNATURE: bool = Field(
        default=True,
        description="Verify ID token signatures against the provider JWKS. "
                    "Set to false only where the JWKS endpoint is unreachable.",
    )

    OIDC_CLOCK_SKEW_SECONDS: int = Field(
        default=300,
        description="Allowed clock skew for the iat claim, applied in both directions",
        ge=0,
        le=3600,
    )

    OIDC_PENDING_AUTH_TTL_SECONDS: int = Field(
        default=600,
        description="Maximum age of a pending login before the callback is rejected",
        ge=30,
        le=3600,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Role Resolution / Frontend
    # =========================================================================

    ADMIN_EMAIL_ALLOWLIST: str = Field(
        default="",
        description="Comma-separated list of identifiers that resolve to the admin role",
    )

    FRONTEND_BASE_URL: str = Field(
        default="http://localhost:5173",
        description="Base URL of the frontend application (post-login redirect target)",
        min_length=1,
    )

    # =========================================================================
    # Session Cookie Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret key for signing session cookies (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="bff_session",
        description="Name of the session cookie",
        min_length=1,
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=True,
        description="Send the session cookie over HTTPS only",
    )

    SESSION_COOKIE_SAMESITE: str = Field(
        default="lax",
        description="SameSite attribute of the session cookie (lax, strict or none)",
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=7 * 24 * 60 * 60,
        description="Session lifetime in seconds",
        ge=60,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the service",
    )

    PORT: int = Field(
        default=3000,
        description="Port to bind the service",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (defaults to FRONTEND_BASE_URL)",
    )

    AUTH_DEBUG_ENDPOINTS: bool = Field(
        default=False,
        description="Expose /auth/_debug/session (never enable in production)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def scopes_list(self) -> List[str]:
        """
        Parse and return OIDC_SCOPES as a clean list.

        Returns:
            List of scope strings, defaulting to the standard OIDC scopes.
        """
        scopes = [s.strip() for s in self.OIDC_SCOPES.split(",") if s.strip()]
        return scopes or ["openid", "profile", "email"]

    @property
    def admin_allowlist(self) -> List[str]:
        """
        Parse ADMIN_EMAIL_ALLOWLIST into normalized (trimmed, lowercase) entries.
        """
        return [
            entry.strip().lower()
            for entry in self.ADMIN_EMAIL_ALLOWLIST.split(",")
            if entry.strip()
        ]

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs; the frontend base URL when unset.
        """
        if not self.ALLOWED_ORIGINS:
            return [self.frontend_base_url]

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def frontend_base_url(self) -> str:
        """Frontend base URL without trailing slash."""
        return self.FRONTEND_BASE_URL.rstrip("/")

    @property
    def discovery_url(self) -> Optional[str]:
        """
        Resolve the discovery document URL.

        Returns:
            OIDC_DISCOVERY_URL if set, otherwise the well-known path under
            the issuer, or None if neither is configured.
        """
        if self.OIDC_DISCOVERY_URL:
            return self.OIDC_DISCOVERY_URL
        if not self.OIDC_ISSUER:
            return None
        return f"{self.OIDC_ISSUER.rstrip('/')}/.well-known/openid-configuration"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_COOKIE_SAMESITE")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        """
        Validate the SameSite attribute.

        Raises:
            ValueError: If value is not lax, strict or none
        """
        value = v.strip().lower()
        if value not in ("lax", "strict", "none"):
            raise ValueError(
                f"SESSION_COOKIE_SAMESITE must be one of lax, strict, none, got: {v}"
            )
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @field_validator("OIDC_ISSUER", "OIDC_DISCOVERY_URL", "OIDC_CLIENT_ID", "OIDC_CLIENT_SECRET")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        # Empty env values mean "not configured"
        if v is None or not v.strip():
            return None
        return v.strip()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.

    Example:
        >>> from oidc_bff.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.OIDC_ISSUER)
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> Dict[str, Any]:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup. Missing identity provider settings are
    reported as errors but do not stop the process; the login routes fail
    with a ConfigurationError until they are provided.

    Returns:
        Dictionary with validation status, errors and warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if not settings.OIDC_ISSUER and not settings.OIDC_DISCOVERY_URL:
        errors.append("OIDC_ISSUER (or OIDC_DISCOVERY_URL) is not set")

    if not settings.OIDC_CLIENT_ID:
        errors.append("OIDC_CLIENT_ID is not set")

    if not settings.OIDC_CLIENT_SECRET:
        warnings.append("OIDC_CLIENT_SECRET is not set (required for confidential clients)")

    if not settings.OIDC_VERIFY_SIGNATURE:
        warnings.append(
            "OIDC_VERIFY_SIGNATURE is disabled: ID token signatures are NOT verified"
        )

    if not settings.admin_allowlist:
        warnings.append("ADMIN_EMAIL_ALLOWLIST is empty (no user will resolve to admin)")

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is disabled (cookie sent over plain HTTP)")

    if settings.SESSION_COOKIE_SAMESITE == "none" and not settings.SESSION_COOKIE_SECURE:
        errors.append("SESSION_COOKIE_SAMESITE=none requires SESSION_COOKIE_SECURE=true")

    if settings.AUTH_DEBUG_ENDPOINTS:
        warnings.append("AUTH_DEBUG_ENDPOINTS is enabled")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "discovery_url": settings.discovery_url,
        "scopes": settings.scopes_list,
        "verify_signature": settings.OIDC_VERIFY_SIGNATURE,
    }
