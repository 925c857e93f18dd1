"""
Shared fixtures for the OIDC BFF test suite.

The identity provider is mocked at the HTTP client level: ``mock_http_client``
is an ``AsyncMock`` whose ``get`` serves the discovery document and whose
``post`` serves token responses. ID tokens are minted with PyJWT (HS256);
signature verification is disabled in the app fixtures and covered
separately in test_signature.py.
"""

import asyncio
import time
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, Mock
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from oidc_bff.auth.session import InMemorySessionStore
from oidc_bff.config import Settings
from oidc_bff.main import create_application
from oidc_bff.models import SessionData


ISSUER = "https://idp.example.com"
CLIENT_ID = "bff-client"
CLIENT_SECRET = "bff-client-secret"
FRONTEND = "http://frontend.test"
REDIRECT_URI = "http://testserver/auth/callback"
TOKEN_SIGNING_KEY = "test-id-token-signing-key-0123456789abcdef"

DISCOVERY_DOC = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/oauth2/authorize",
    "token_endpoint": f"{ISSUER}/oauth2/token",
    "userinfo_endpoint": f"{ISSUER}/oauth2/userinfo",
    "jwks_uri": f"{ISSUER}/oauth2/keys",
}


# ============================================================================
# Helpers
# ============================================================================

def make_settings(**overrides: Any) -> Settings:
    """Settings for tests, isolated from any local .env file."""
    values = {
        "OIDC_ISSUER": ISSUER,
        "OIDC_CLIENT_ID": CLIENT_ID,
        "OIDC_CLIENT_SECRET": CLIENT_SECRET,
        "OIDC_REDIRECT_URI": REDIRECT_URI,
        "OIDC_VERIFY_SIGNATURE": False,
        "ADMIN_EMAIL_ALLOWLIST": "admin@corp.com, Boss@Corp.com",
        "FRONTEND_BASE_URL": FRONTEND,
        "SESSION_SECRET": "test-session-secret-0123456789abcdef",
        "SESSION_COOKIE_SECURE": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def mock_response(status_code: int = 200, json_data: Any = None) -> Mock:
    """Mock httpx response with a status code and JSON body."""
    response = Mock(spec=httpx.Response)
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    return response


def make_id_token(
    nonce: Optional[str] = "test-nonce",
    now: Optional[float] = None,
    remove: tuple = (),
    **claims: Any,
) -> str:
    """
    Create an HS256 ID token with valid default claims.

    Keyword arguments override claims; names in ``remove`` are dropped.
    """
    issued = int(time.time() if now is None else now)
    payload: Dict[str, Any] = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "user-123",
        "email": "dev@corp.com",
        "name": "Dev User",
        "nonce": nonce,
        "iat": issued,
        "exp": issued + 3600,
    }
    payload.update(claims)
    for name in remove:
        payload.pop(name, None)
    return jwt.encode(payload, TOKEN_SIGNING_KEY, algorithm="HS256")


def token_payload(id_token: str, **extra: Any) -> Dict[str, Any]:
    data = {
        "access_token": "provider-access-token",
        "id_token": id_token,
        "refresh_token": "provider-refresh-token",
        "token_type": "Bearer",
        "expires_in": 3600,
    }
    data.update(extra)
    return data


def query_params(url: str) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def load_session(app, client: TestClient) -> Optional[SessionData]:
    """Read the server-side session addressed by the client's cookie."""
    services = app.state.auth
    cookie = client.cookies.get(services.settings.SESSION_COOKIE_NAME)
    session_id = services.cookie_signer.unsign(cookie)
    if session_id is None:
        return None
    return asyncio.run(services.session_store.load(session_id))


def start_login(client: TestClient) -> Dict[str, str]:
    """GET /auth/login and return the authorization request parameters."""
    response = client.get("/auth/login", follow_redirects=False)
    assert response.status_code == 302
    return query_params(response.headers["location"])


def complete_login(client: TestClient, http_client: AsyncMock, **claims: Any):
    """Run /auth/login then /auth/callback with a token for ``claims``."""
    params = start_login(client)
    http_client.post.return_value = mock_response(
        200, token_payload(make_id_token(nonce=params["nonce"], **claims))
    )
    return client.get(
        "/auth/callback",
        params={"code": "abc", "state": params["state"]},
        follow_redirects=False,
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mock_http_client() -> AsyncMock:
    """Mock shared HTTP client serving the discovery document."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get.return_value = mock_response(200, DISCOVERY_DOC)
    return client


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def app(settings, session_store, mock_http_client):
    return create_application(
        settings=settings,
        session_store=session_store,
        http_client=mock_http_client,
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
