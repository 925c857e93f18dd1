"""
Token endpoint client.

Handles the authorization code exchange and on-demand refresh. Both send
form-encoded requests through the shared ``httpx.AsyncClient`` with an
explicit timeout and return a ``Tokens`` model.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from oidc_bff.auth.errors import ConfigurationError, TokenExchangeError
from oidc_bff.config import Settings
from oidc_bff.models import DiscoveryDocument, Tokens

logger = logging.getLogger(__name__)


async def exchange_code_for_tokens(
    http_client: httpx.AsyncClient,
    discovery: DiscoveryDocument,
    settings: Settings,
    code: str,
    code_verifier: str,
) -> Tokens:
    """
    Exchange an authorization code for tokens.

    Args:
        http_client: Shared HTTP client
        discovery: Provider metadata (token endpoint)
        settings: Application settings
        code: Authorization code from the callback
        code_verifier: PKCE verifier stored at login

    Returns:
        Tokens with the ID token guaranteed present

    Raises:
        TokenExchangeError: Network error, non-2xx, invalid JSON or no id_token
    """
    payload = {
        "grant_type": "authorization_code",
        "client_id": _client_id(settings),
        "code": code,
        "redirect_uri": settings.OIDC_REDIRECT_URI,
        "code_verifier": code_verifier,
    }
    if settings.OIDC_CLIENT_SECRET:
        payload["client_secret"] = settings.OIDC_CLIENT_SECRET

    data = await _post_token_request(http_client, discovery.token_endpoint, payload, settings)

    id_token = data.get("id_token")
    if not isinstance(id_token, str) or not id_token:
        raise TokenExchangeError("token response missing id_token")

    return Tokens(
        access_token=data.get("access_token"),
        id_token=id_token,
        refresh_token=data.get("refresh_token"),
        expires_at=_expires_at(data),
    )


async def refresh_tokens(
    http_client: httpx.AsyncClient,
    discovery: DiscoveryDocument,
    settings: Settings,
    current: Tokens,
) -> Tokens:
    """
    Refresh the session's tokens with its refresh token.

    Values the provider omits from the refresh response (ID token, rotated
    refresh token) are carried over from ``current``.

    Raises:
        TokenExchangeError: No refresh token, or the provider call failed
    """
    if not current.refresh_token:
        raise TokenExchangeError("no refresh token in session")

    payload = {
        "grant_type": "refresh_token",
        "client_id": _client_id(settings),
        "refresh_token": current.refresh_token,
    }
    if settings.OIDC_CLIENT_SECRET:
        payload["client_secret"] = settings.OIDC_CLIENT_SECRET

    data = await _post_token_request(http_client, discovery.token_endpoint, payload, settings)

    return Tokens(
        access_token=data.get("access_token") or current.access_token,
        id_token=data.get("id_token") or current.id_token,
        refresh_token=data.get("refresh_token") or current.refresh_token,
        expires_at=_expires_at(data),
    )


# =============================================================================
# Helpers
# =============================================================================

def _client_id(settings: Settings) -> str:
    if not settings.OIDC_CLIENT_ID:
        raise ConfigurationError("OIDC_CLIENT_ID not configured")
    return settings.OIDC_CLIENT_ID


def _expires_at(data: Dict[str, Any]) -> Optional[int]:
    expires_in = data.get("expires_in")
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
        return None
    return int(time.time()) + int(expires_in)


async def _post_token_request(
    http_client: httpx.AsyncClient,
    token_endpoint: str,
    payload: Dict[str, str],
    settings: Settings,
) -> Dict[str, Any]:
    try:
        response = await http_client.post(
            token_endpoint,
            data=payload,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.error(f"Token request failed: {type(e).__name__}")
        raise TokenExchangeError(f"token endpoint unreachable: {type(e).__name__}") from e

    if not 200 <= response.status_code < 300:
        # Status only, never the response body
        logger.error(
            f"Token endpoint returned HTTP {response.status_code}",
            extra={"grant_type": payload.get("grant_type")},
        )
        raise TokenExchangeError(f"token endpoint returned HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as e:
        raise TokenExchangeError("token response is not valid JSON") from e

    if not isinstance(data, dict):
        raise TokenExchangeError("token response is not a JSON object")

    return data
