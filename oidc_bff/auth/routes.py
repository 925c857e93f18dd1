"""
Authentication routes for the OIDC Backend-For-Frontend.

Endpoints (mounted under /auth):
    GET  /login           Start login, 302 to the identity provider
    GET  /callback        Provider redirect target, 302 to the frontend
    GET  /me              Current user or 401
    POST /logout          Destroy the session and clear the cookie
    POST /refresh         Refresh the session's tokens on demand
    GET  /_debug/session  Session diagnostics (AUTH_DEBUG_ENDPOINTS only)

Errors are translated here into a status code and a generic
``{"error", "message"}`` body; internal reasons only go to the logs.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from oidc_bff.auth.errors import (
    AuthError,
    AuthorizationDeniedError,
    TokenValidationError,
)
from oidc_bff.auth.flow import LoginFlow
from oidc_bff.auth.session import SessionContext, current_user, logout as logout_session
from oidc_bff.dependencies import AuthServices, get_services, get_session_context
from oidc_bff.models import LogoutResponse, RefreshResponse, UserResponse

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


def get_login_flow(services: AuthServices = Depends(get_services)) -> LoginFlow:
    return LoginFlow(
        services.settings,
        services.http_client,
        services.discovery,
        services.signature_verifier,
    )


# =============================================================================
# Response Helpers
# =============================================================================

def _no_store(response: Response) -> Response:
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return response


def _error_response(exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _frontend_redirect(services: AuthServices, error: Optional[str] = None) -> RedirectResponse:
    base = services.settings.frontend_base_url
    url = f"{base}/login?{urlencode({'error': error})}" if error else base
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


def _finish(session: SessionContext, response: Response) -> Response:
    session.apply_cookie(response)
    return _no_store(response)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(
    session: SessionContext = Depends(get_session_context),
    flow: LoginFlow = Depends(get_login_flow),
):
    """
    Initiate the OIDC login flow.

    Generates state, nonce and PKCE verifier, stores them in the session and
    redirects to the provider authorization endpoint. The session write
    completes before the redirect is returned.
    """
    try:
        authorization_url = await flow.begin(session)
    except AuthError as e:
        logger.error(f"Login failed: {e.reason}", extra={"error_code": e.error_code})
        return _finish(session, _error_response(e))

    return _finish(session, RedirectResponse(url=authorization_url, status_code=status.HTTP_302_FOUND))


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback")
async def callback(
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    session: SessionContext = Depends(get_session_context),
    flow: LoginFlow = Depends(get_login_flow),
    services: AuthServices = Depends(get_services),
):
    """
    Handle the provider redirect.

    Responses:
        302 to the frontend on success
        400 for missing parameters, state mismatch or expired login
        502 if the provider could not be reached
        302 to ``/login?error=...`` on token rejection or denial
    """
    if error:
        try:
            await flow.abort(session, error)
        except AuthError as e:
            return _finish(session, _error_response(e))
        return _finish(session, _frontend_redirect(services, "idp_error"))

    try:
        await flow.complete(session, code, state)
    except TokenValidationError:
        return _finish(session, _frontend_redirect(services, "invalid_token"))
    except AuthorizationDeniedError:
        return _finish(session, _frontend_redirect(services, "access_denied"))
    except AuthError as e:
        logger.warning(f"Callback failed: {e.reason}", extra={"error_code": e.error_code})
        return _finish(session, _error_response(e))

    return _finish(session, _frontend_redirect(services))


# =============================================================================
# Session Endpoints
# =============================================================================

@auth_router.get("/me", response_model=UserResponse)
async def me(session: SessionContext = Depends(get_session_context)):
    """Return the authenticated user, or 401 when there is none."""
    identity = current_user(session)
    if identity is None:
        return _no_store(JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "not_authenticated", "message": "Not authenticated"},
        ))

    return _no_store(JSONResponse(content=UserResponse(user=identity).model_dump()))


@auth_router.post("/logout", response_model=LogoutResponse)
async def logout(session: SessionContext = Depends(get_session_context)):
    """Destroy the session and clear the cookie. Safe to call repeatedly."""
    try:
        await logout_session(session)
    except AuthError as e:
        return _no_store(_error_response(e))

    return _finish(session, JSONResponse(content=LogoutResponse().model_dump()))


@auth_router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    session: SessionContext = Depends(get_session_context),
    flow: LoginFlow = Depends(get_login_flow),
):
    """
    Refresh the session's tokens with the stored refresh token.

    Only the new expiry is returned; tokens stay server-side.
    """
    if current_user(session) is None:
        return _no_store(JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "not_authenticated", "message": "Not authenticated"},
        ))

    try:
        tokens = await flow.refresh(session)
    except AuthError as e:
        logger.warning(f"Token refresh failed: {e.reason}", extra={"error_code": e.error_code})
        return _finish(session, _error_response(e))

    body = RefreshResponse(expires_at=tokens.expires_at).model_dump(by_alias=True)
    return _finish(session, JSONResponse(content=body))


# =============================================================================
# Debugging
# =============================================================================

@auth_router.get("/_debug/session", include_in_schema=False)
async def debug_session(
    session: SessionContext = Depends(get_session_context),
    services: AuthServices = Depends(get_services),
):
    """Session diagnostics without secrets. 404 unless AUTH_DEBUG_ENDPOINTS is set."""
    if not services.settings.AUTH_DEBUG_ENDPOINTS:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Not Found"})

    pending = session.data.pending_auth
    return _no_store(JSONResponse(content={
        "hasSession": not session.is_new,
        "hasPendingAuth": pending is not None,
        "statePrefix": pending.state[:8] if pending else None,
        "hasCodeVerifier": bool(pending and pending.code_verifier),
        "hasNonce": bool(pending and pending.nonce),
        "authenticated": session.data.identity is not None,
        "role": session.data.identity.role if session.data.identity else None,
        "hasTokens": session.data.tokens is not None,
        "signatureVerification": services.signature_verifier.enabled,
    }))
