"""
Authentication Route Tests
==========================

End-to-end tests for the /auth endpoints through FastAPI's TestClient. The
identity provider is the mocked HTTP client from conftest.py.

Test Coverage:
--------------
1. Login redirect and pending state persistence
2. Callback success, state mismatch and provider failures
3. Token rejection and denial redirects with session destruction
4. /me, /logout, /refresh and the debug endpoint
5. require_user / require_admin dependencies for downstream routers
"""

import asyncio
import time
from unittest.mock import patch

import httpx
import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient

from oidc_bff.dependencies import require_admin, require_user
from oidc_bff.main import create_application
from oidc_bff.models import Identity

from conftest import (
    DISCOVERY_DOC,
    FRONTEND,
    complete_login,
    load_session,
    make_id_token,
    make_settings,
    mock_response,
    start_login,
    token_payload,
)


COOKIE = "bff_session"


# ============================================================================
# /auth/login
# ============================================================================

class TestLogin:

    def test_redirects_to_authorization_endpoint(self, client):
        response = client.get("/auth/login", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"].startswith(DISCOVERY_DOC["authorization_endpoint"])
        assert response.headers["cache-control"] == "no-store"
        assert COOKIE in response.cookies

    def test_pending_state_stored_in_session(self, app, client):
        params = start_login(client)

        session = load_session(app, client)
        assert session.pending_auth.state == params["state"]
        assert session.pending_auth.nonce == params["nonce"]
        assert session.identity is None

    def test_injected_session_store_is_used(self, app, client, session_store):
        assert app.state.auth.session_store is session_store

        start_login(client)

        assert len(session_store) == 1

    def test_pending_only_sessions_expire_with_pending_ttl(self, app, session_store, settings):
        for _ in range(5):
            TestClient(app).get("/auth/login", follow_redirects=False)
        assert len(session_store) == 5

        later = time.time() + settings.OIDC_PENDING_AUTH_TTL_SECONDS + 1
        with patch("oidc_bff.auth.session.time") as clock:
            clock.time.return_value = later
            purged = asyncio.run(session_store.purge_expired())

        assert purged == 5
        assert len(session_store) == 0

    def test_authenticated_session_outlives_pending_ttl(
        self, app, client, session_store, settings, mock_http_client
    ):
        complete_login(client, mock_http_client)

        later = time.time() + settings.OIDC_PENDING_AUTH_TTL_SECONDS + 1
        with patch("oidc_bff.auth.session.time") as clock:
            clock.time.return_value = later
            asyncio.run(session_store.purge_expired())

        assert len(session_store) == 1
        assert load_session(app, client).identity is not None

    def test_cookie_attributes(self, client):
        response = client.get("/auth/login", follow_redirects=False)
        cookie = response.headers["set-cookie"].lower()

        assert "httponly" in cookie
        assert "samesite=lax" in cookie
        assert "path=/" in cookie

    def test_discovery_failure_returns_502(self, client, mock_http_client):
        mock_http_client.get.side_effect = httpx.ConnectError("idp down")

        response = client.get("/auth/login", follow_redirects=False)

        assert response.status_code == 502
        assert response.json()["error"] == "discovery_error"
        assert "idp down" not in response.text

    def test_missing_issuer_returns_configuration_error(self, session_store, mock_http_client):
        app = create_application(
            settings=make_settings(OIDC_ISSUER=None),
            session_store=session_store,
            http_client=mock_http_client,
        )

        response = TestClient(app).get("/auth/login", follow_redirects=False)

        assert response.status_code == 500
        assert response.json() == {
            "error": "configuration_error",
            "message": "Authentication is not configured",
        }


# ============================================================================
# /auth/callback
# ============================================================================

class TestCallback:

    def test_successful_round_trip(self, app, client, mock_http_client):
        response = complete_login(client, mock_http_client)

        assert response.status_code == 302
        assert response.headers["location"] == FRONTEND

        session = load_session(app, client)
        assert session.pending_auth is None
        assert session.identity.role in ("admin", "employee")
        assert session.tokens.access_token == "provider-access-token"

        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.json() == {
            "user": {
                "subject": "user-123",
                "email": "dev@corp.com",
                "name": "Dev User",
                "role": "employee",
            }
        }

    def test_tokens_never_sent_to_browser(self, client, mock_http_client):
        callback = complete_login(client, mock_http_client)
        me = client.get("/auth/me")

        for response in (callback, me):
            assert "provider-access-token" not in response.text
            assert "provider-refresh-token" not in response.text
            assert "provider-access-token" not in response.headers.get("location", "")

    def test_admin_allowlist(self, client, mock_http_client):
        complete_login(client, mock_http_client, email=" Admin@Corp.com ")

        assert client.get("/auth/me").json()["user"]["role"] == "admin"

    def test_sub_only_identity_is_employee(self, client, mock_http_client):
        complete_login(client, mock_http_client, remove=("email",), sub="abc-123")

        user = client.get("/auth/me").json()["user"]
        assert user["role"] == "employee"
        assert user["subject"] == "abc-123"

    def test_issuer_with_trailing_slash_accepted(self, client, mock_http_client):
        response = complete_login(client, mock_http_client, iss="https://idp.example.com/")

        assert response.status_code == 302
        assert response.headers["location"] == FRONTEND

    def test_state_mismatch_returns_400(self, app, client, mock_http_client):
        params = start_login(client)

        response = client.get(
            "/auth/callback",
            params={"code": "abc", "state": "S2-not-the-stored-state"},
            follow_redirects=False,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "state_mismatch"
        mock_http_client.post.assert_not_called()
        session = load_session(app, client)
        assert session.identity is None
        assert session.pending_auth.state == params["state"]
        assert client.get("/auth/me").status_code == 401

    def test_login_issues_new_session_cookie(self, app, client, session_store, mock_http_client):
        params = start_login(client)
        pending_cookie = client.cookies.get(COOKIE)
        mock_http_client.post.return_value = mock_response(
            200, token_payload(make_id_token(nonce=params["nonce"]))
        )

        client.get("/auth/callback", params={"code": "abc", "state": params["state"]}, follow_redirects=False)

        assert client.cookies.get(COOKIE) != pending_cookie
        assert client.get("/auth/me").status_code == 200
        assert len(session_store) == 1

        planted = TestClient(app)
        planted.cookies.set(COOKIE, pending_cookie)
        assert planted.get("/auth/me").status_code == 401

    def test_state_from_another_session_rejected(self, app, mock_http_client):
        victim = TestClient(app)
        attacker = TestClient(app)
        victim_params = start_login(victim)
        start_login(attacker)

        response = attacker.get(
            "/auth/callback",
            params={"code": "abc", "state": victim_params["state"]},
            follow_redirects=False,
        )

        assert response.status_code == 400
        assert attacker.get("/auth/me").status_code == 401

    def test_callback_without_login_returns_400(self, client):
        response = client.get("/auth/callback", params={"code": "abc", "state": "s"}, follow_redirects=False)

        assert response.status_code == 400
        assert response.json()["error"] == "state_mismatch"

    @pytest.mark.parametrize("params", [{}, {"code": "abc"}, {"state": "s"}, {"code": "", "state": "s"}])
    def test_missing_parameters_return_400(self, client, params):
        start_login(client)

        response = client.get("/auth/callback", params=params, follow_redirects=False)

        assert response.status_code == 400
        assert response.json()["error"] == "missing_parameter"

    def test_token_exchange_failure_returns_502(self, app, client, mock_http_client):
        params = start_login(client)
        mock_http_client.post.return_value = mock_response(
            400, {"error": "invalid_grant", "error_description": "code already redeemed"}
        )

        response = client.get(
            "/auth/callback", params={"code": "abc", "state": params["state"]}, follow_redirects=False
        )

        assert response.status_code == 502
        assert response.json()["error"] == "token_exchange_failed"
        assert "redeemed" not in response.text
        assert load_session(app, client).pending_auth is None

    def test_token_exchange_timeout_returns_502(self, client, mock_http_client):
        params = start_login(client)
        mock_http_client.post.side_effect = httpx.ReadTimeout("slow")

        response = client.get(
            "/auth/callback", params={"code": "abc", "state": params["state"]}, follow_redirects=False
        )

        assert response.status_code == 502

    def test_expired_token_redirects_with_error_and_destroys_session(
        self, app, client, session_store, mock_http_client
    ):
        response = complete_login(client, mock_http_client, exp=int(time.time()) - 1)

        assert response.status_code == 302
        assert response.headers["location"] == f"{FRONTEND}/login?error=invalid_token"
        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert len(session_store) == 0
        assert client.get("/auth/me").status_code == 401

    def test_wrong_nonce_rejected(self, client, mock_http_client):
        params = start_login(client)
        mock_http_client.post.return_value = mock_response(
            200, token_payload(make_id_token(nonce="some-other-nonce"))
        )

        response = client.get(
            "/auth/callback", params={"code": "abc", "state": params["state"]}, follow_redirects=False
        )

        assert response.headers["location"] == f"{FRONTEND}/login?error=invalid_token"
        assert client.get("/auth/me").status_code == 401

    def test_denied_identity_redirects_with_access_denied(self, client, session_store, mock_http_client):
        with patch("oidc_bff.auth.flow.resolve_role", return_value=None):
            response = complete_login(client, mock_http_client)

        assert response.status_code == 302
        assert response.headers["location"] == f"{FRONTEND}/login?error=access_denied"
        assert len(session_store) == 0
        assert client.get("/auth/me").status_code == 401

    def test_provider_error_parameter(self, app, client, mock_http_client):
        start_login(client)

        response = client.get(
            "/auth/callback",
            params={"error": "access_denied", "error_description": "user cancelled"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"{FRONTEND}/login?error=idp_error"
        assert load_session(app, client).pending_auth is None
        mock_http_client.post.assert_not_called()

    def test_callback_is_single_use(self, client, mock_http_client):
        params = start_login(client)
        mock_http_client.post.return_value = mock_response(
            200, token_payload(make_id_token(nonce=params["nonce"]))
        )
        query = {"code": "abc", "state": params["state"]}

        first = client.get("/auth/callback", params=query, follow_redirects=False)
        replay = client.get("/auth/callback", params=query, follow_redirects=False)

        assert first.status_code == 302
        assert replay.status_code == 400


# ============================================================================
# /auth/me and /auth/logout
# ============================================================================

class TestSessionEndpoints:

    def test_me_unauthenticated(self, client):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["error"] == "not_authenticated"

    def test_me_with_tampered_cookie(self, client, mock_http_client):
        complete_login(client, mock_http_client)
        value = client.cookies.get(COOKIE)
        client.cookies.clear()
        client.cookies.set(COOKIE, value[:-2] + "xx")

        assert client.get("/auth/me").status_code == 401

    def test_logout_invalidates_session(self, app, client, session_store, mock_http_client):
        complete_login(client, mock_http_client)
        old_cookie = client.cookies.get(COOKIE)

        response = client.post("/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"message": "Logged out"}
        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert client.get("/auth/me").status_code == 401
        assert len(session_store) == 0

        replay = TestClient(app)
        replay.cookies.set(COOKIE, old_cookie)
        assert replay.get("/auth/me").status_code == 401

    def test_logout_is_idempotent(self, client):
        assert client.post("/auth/logout").status_code == 200
        assert client.post("/auth/logout").status_code == 200

    def test_logout_cookie_uses_configured_attributes(self, session_store, mock_http_client):
        app = create_application(
            settings=make_settings(SESSION_COOKIE_SECURE=True, SESSION_COOKIE_SAMESITE="strict"),
            session_store=session_store,
            http_client=mock_http_client,
        )

        cookie = TestClient(app).post("/auth/logout").headers["set-cookie"].lower()

        assert "secure" in cookie
        assert "samesite=strict" in cookie
        assert "httponly" in cookie


# ============================================================================
# /auth/refresh
# ============================================================================

class TestRefresh:

    def test_refresh_requires_authentication(self, client):
        assert client.post("/auth/refresh").status_code == 401

    def test_refresh_returns_only_expiry(self, client, mock_http_client):
        complete_login(client, mock_http_client)
        mock_http_client.post.return_value = mock_response(
            200, {"access_token": "rotated-access-token", "expires_in": 120}
        )

        response = client.post("/auth/refresh")

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"expiresAt"}
        assert body["expiresAt"] >= int(time.time()) + 100
        assert "rotated-access-token" not in response.text

    def test_refresh_without_refresh_token(self, client, mock_http_client):
        params = start_login(client)
        payload = token_payload(make_id_token(nonce=params["nonce"]))
        del payload["refresh_token"]
        mock_http_client.post.return_value = mock_response(200, payload)
        client.get("/auth/callback", params={"code": "abc", "state": params["state"]}, follow_redirects=False)

        response = client.post("/auth/refresh")

        assert response.status_code == 400
        assert response.json()["error"] == "missing_session_data"

    def test_refresh_provider_failure(self, client, mock_http_client):
        complete_login(client, mock_http_client)
        mock_http_client.post.return_value = mock_response(401, {"error": "invalid_grant"})

        assert client.post("/auth/refresh").status_code == 502


# ============================================================================
# Debug endpoint
# ============================================================================

class TestDebugEndpoint:

    def test_hidden_by_default(self, client):
        assert client.get("/auth/_debug/session").status_code == 404

    def test_reports_booleans_and_state_prefix(self, session_store, mock_http_client):
        app = create_application(
            settings=make_settings(AUTH_DEBUG_ENDPOINTS=True),
            session_store=session_store,
            http_client=mock_http_client,
        )
        client = TestClient(app)
        params = start_login(client)

        body = client.get("/auth/_debug/session").json()

        assert body["hasPendingAuth"] is True
        assert body["statePrefix"] == params["state"][:8]
        assert body["hasCodeVerifier"] is True
        assert body["authenticated"] is False
        assert params["state"] not in str(body)
        assert params["nonce"] not in str(body)


# ============================================================================
# Downstream route protection
# ============================================================================

@pytest.fixture
def protected_app(app):
    router = APIRouter()

    @router.get("/files")
    async def files(user: Identity = Depends(require_user)):
        return {"subject": user.subject}

    @router.get("/admin/stats")
    async def stats(user: Identity = Depends(require_admin)):
        return {"ok": True}

    app.include_router(router)
    return app


class TestRouteProtection:

    def test_anonymous_rejected(self, protected_app):
        client = TestClient(protected_app)

        assert client.get("/files").status_code == 401
        assert client.get("/admin/stats").status_code == 401

    def test_employee_forbidden_from_admin_route(self, protected_app, mock_http_client):
        client = TestClient(protected_app)
        complete_login(client, mock_http_client)

        assert client.get("/files").json() == {"subject": "user-123"}
        assert client.get("/admin/stats").status_code == 403

    def test_admin_allowed(self, protected_app, mock_http_client):
        client = TestClient(protected_app)
        complete_login(client, mock_http_client, email="admin@corp.com")

        assert client.get("/admin/stats").json() == {"ok": True}


# ============================================================================
# System endpoints
# ============================================================================

class TestSystemEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["dependencies"] == {"discovery": "not_loaded"}

    def test_root_lists_endpoints(self, client):
        assert client.get("/").json()["endpoints"]["me"] == "/auth/me"
