"""
PKCE, state and nonce generation plus the authorization request builder.

Everything here is pure computation. Persisting the generated values in the
session is the caller's job (see ``oidc_bff.auth.flow``).
"""

import base64
import hashlib
import secrets
from typing import Optional
from urllib.parse import urlencode

from oidc_bff.auth.errors import ConfigurationError
from oidc_bff.config import Settings
from oidc_bff.models import DiscoveryDocument, PendingAuthState


STATE_BYTES = 16
NONCE_BYTES = 16
VERIFIER_BYTES = 32


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        64 hex characters (32 random bytes), within the 43-128 range RFC 7636 allows
    """
    return secrets.token_hex(VERIFIER_BYTES)


def code_challenge_s256(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier, without padding
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pending_auth() -> PendingAuthState:
    """Generate independent state, nonce and code verifier for one login attempt."""
    return PendingAuthState(
        state=secrets.token_hex(STATE_BYTES),
        nonce=secrets.token_hex(NONCE_BYTES),
        code_verifier=generate_code_verifier(),
    )


# =============================================================================
# Authorization Request
# =============================================================================

def build_authorization_url(
    discovery: Optional[DiscoveryDocument],
    pending: PendingAuthState,
    settings: Settings,
) -> str:
    """
    Build the provider authorization URL for a pending login.

    Args:
        discovery: Provider metadata (None if discovery has not run)
        pending: Values generated by generate_pending_auth()
        settings: Application settings

    Returns:
        Full authorization URL to redirect the browser to

    Raises:
        ConfigurationError: If no authorization endpoint is known or the
            client id / redirect URI are not configured
    """
    if discovery is None or not discovery.authorization_endpoint:
        raise ConfigurationError("authorization endpoint unavailable")
    if not settings.OIDC_CLIENT_ID:
        raise ConfigurationError("OIDC_CLIENT_ID not configured")
    if not settings.OIDC_REDIRECT_URI:
        raise ConfigurationError("OIDC_REDIRECT_URI not configured")

    params = {
        "response_type": "code",
        "client_id": settings.OIDC_CLIENT_ID,
        "scope": " ".join(settings.scopes_list),
        "redirect_uri": settings.OIDC_REDIRECT_URI,
        "state": pending.state,
        "nonce": pending.nonce,
        "code_challenge": code_challenge_s256(pending.code_verifier),
        "code_challenge_method": "S256",
    }

    endpoint = discovery.authorization_endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode(params)}"
