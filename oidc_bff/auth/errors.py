"""
Authentication error taxonomy.

Every failure in the login flow is raised as an ``AuthError`` subclass and
translated into an HTTP response at the route boundary. ``public_message``
is the only text that ever reaches the browser; ``reason`` is for logs.
"""

from typing import Optional, Sequence, Tuple


class AuthError(Exception):
    """Base exception for authentication flow errors"""

    status_code: int = 500
    error_code: str = "auth_error"
    public_message: str = "Authentication failed"

    def __init__(self, reason: Optional[str] = None, *, public_message: Optional[str] = None):
        self.reason = reason or self.error_code
        if public_message is not None:
            self.public_message = public_message
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.public_message}


class ConfigurationError(AuthError):
    """Issuer, client credentials or endpoints are not configured."""
    status_code = 500
    error_code = "configuration_error"
    public_message = "Authentication is not configured"


class DiscoveryError(AuthError):
    """Provider metadata is unreachable or malformed."""
    status_code = 502
    error_code = "discovery_error"
    public_message = "Identity provider is unavailable"


class IssuerNotConfiguredError(DiscoveryError, ConfigurationError):
    """Discovery cannot run because no issuer or discovery URL is set."""
    status_code = 500
    error_code = "configuration_error"
    public_message = "Authentication is not configured"


class MissingParameterError(AuthError):
    status_code = 400
    error_code = "missing_parameter"
    public_message = "Missing code or state parameter"


class MissingSessionDataError(AuthError):
    status_code = 400
    error_code = "missing_session_data"
    public_message = "Login session expired or incomplete, please sign in again"


class StateMismatchError(AuthError):
    status_code = 400
    error_code = "state_mismatch"
    public_message = "Invalid state parameter, please sign in again"


class TokenExchangeError(AuthError):
    status_code = 502
    error_code = "token_exchange_failed"
    public_message = "Could not complete sign-in with the identity provider"


class TokenValidationError(AuthError):
    """
    ID token failed a claim or signature check.

    ``reason`` is the first failed check; ``reasons`` holds every failed
    check when the validator ran in collect-all mode.
    """
    status_code = 401
    error_code = "invalid_token"
    public_message = "Identity token was rejected"

    def __init__(self, reason: str, reasons: Optional[Sequence[str]] = None):
        super().__init__(reason)
        self.reasons: Tuple[str, ...] = tuple(reasons) if reasons else (reason,)


class AuthorizationDeniedError(AuthError):
    status_code = 403
    error_code = "access_denied"
    public_message = "Access denied"


class SessionPersistenceError(AuthError):
    """The session store failed to persist or destroy a session."""
    status_code = 500
    error_code = "session_error"
    public_message = "Could not save session, please try again"


__all__ = [
    "AuthError",
    "ConfigurationError",
    "DiscoveryError",
    "IssuerNotConfiguredError",
    "MissingParameterError",
    "MissingSessionDataError",
    "StateMismatchError",
    "TokenExchangeError",
    "TokenValidationError",
    "AuthorizationDeniedError",
    "SessionPersistenceError",
]
