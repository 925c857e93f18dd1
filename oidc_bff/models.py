"""
Data Models Module

This module defines Pydantic models for the identity provider metadata,
the server-side session record and the HTTP responses of the service.

Models are organized by functional area:
- Identity provider models (discovery document, token set)
- Session models (pending login, identity, session record)
- Response models (user, logout, refresh, health)
"""

import time
from datetime import datetime, timezone
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Role = Literal["admin", "employee"]


# ============================================================================
# Identity Provider Models
# ============================================================================

class DiscoveryDocument(BaseModel):
    """Subset of the provider's OpenID configuration used by the login flow."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: Optional[str] = Field(None, description="Issuer reported by the provider")
    authorization_endpoint: str = Field(..., min_length=1, description="Authorization endpoint URL")
    token_endpoint: str = Field(..., min_length=1, description="Token endpoint URL")
    userinfo_endpoint: Optional[str] = Field(None, description="UserInfo endpoint URL")
    jwks_uri: str = Field(..., min_length=1, description="JWKS endpoint URL")


class Tokens(BaseModel):
    """Token set held only in the server-side session."""
    access_token: Optional[str] = Field(None, description="Access token")
    id_token: str = Field(..., description="Raw ID token")
    refresh_token: Optional[str] = Field(None, description="Refresh token, if issued")
    expires_at: Optional[int] = Field(None, description="Access token expiry (epoch seconds)")


# ============================================================================
# Session Models
# ============================================================================

class PendingAuthState(BaseModel):
    """Single-use values generated by /login and consumed by /callback."""
    state: str = Field(..., description="Anti-CSRF state value")
    nonce: str = Field(..., description="Replay-protection nonce echoed in the ID token")
    code_verifier: str = Field(..., description="PKCE code verifier")
    created_at: float = Field(default_factory=time.time, description="Creation time (epoch seconds)")

    def is_expired(self, ttl_seconds: int, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current - self.created_at > ttl_seconds


class Identity(BaseModel):
    """Authenticated user as exposed to the rest of the application."""
    subject: str = Field(..., min_length=1, description="Provider subject identifier")
    email: Optional[str] = Field(None, description="Normalized email / login identifier")
    name: Optional[str] = Field(None, description="Display name")
    role: Role = Field(..., description="Internal role (admin or employee)")


class SessionData(BaseModel):
    """
    Server-side session record.

    A session is anonymous while ``identity`` is unset, pending while
    ``pending_auth`` is set, and authenticated once ``identity`` is set.
    """
    pending_auth: Optional[PendingAuthState] = None
    identity: Optional[Identity] = None
    tokens: Optional[Tokens] = None

    def clear_pending(self) -> None:
        self.pending_auth = None

    def mark_authenticated(self, identity: Identity, tokens: Tokens) -> None:
        """Clear the pending login and set identity and tokens in one step."""
        self.pending_auth = None
        self.identity = identity
        self.tokens = tokens


# ============================================================================
# Response Models
# ============================================================================

class UserResponse(BaseModel):
    """Response model for GET /auth/me."""
    user: Identity = Field(..., description="Current authenticated user")


class LogoutResponse(BaseModel):
    """Response model for POST /auth/logout."""
    message: str = Field(default="Logged out", description="Result message")


class RefreshResponse(BaseModel):
    """Response model for POST /auth/refresh. Tokens themselves are never returned."""
    expires_at: Optional[int] = Field(None, serialization_alias="expiresAt", description="New access token expiry")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Check timestamp",
    )
    dependencies: Optional[Dict[str, str]] = Field(None, description="Dependency health status")
