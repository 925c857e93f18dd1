"""
Shared services and FastAPI dependencies.

``AuthServices`` is built once by the application factory and stored on
``app.state.auth``. Downstream routers protect their endpoints with
``require_user`` / ``require_admin``.
"""

import logging
from typing import Optional

import httpx
from fastapi import Depends, HTTPException, Request, status

from oidc_bff.auth.discovery import DiscoveryClient
from oidc_bff.auth.session import SessionContext, SessionCookieSigner, SessionStore
from oidc_bff.auth.signature import SignatureVerifier
from oidc_bff.config import Settings
from oidc_bff.models import Identity

logger = logging.getLogger(__name__)


class AuthServices:
    """Container for the objects shared by every auth request."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        discovery: DiscoveryClient,
        signature_verifier: SignatureVerifier,
        session_store: SessionStore,
        cookie_signer: SessionCookieSigner,
        owns_http_client: bool = True,
    ):
        self.settings = settings
        self.http_client = http_client
        self.discovery = discovery
        self.signature_verifier = signature_verifier
        self.session_store = session_store
        self.cookie_signer = cookie_signer
        self.owns_http_client = owns_http_client

    async def aclose(self) -> None:
        if self.owns_http_client:
            await self.http_client.aclose()


def get_services(request: Request) -> AuthServices:
    return request.app.state.auth


async def get_session_context(
    request: Request,
    services: AuthServices = Depends(get_services),
) -> SessionContext:
    """Load the session addressed by the request's cookie (or a fresh one)."""
    cookie_value = request.cookies.get(services.settings.SESSION_COOKIE_NAME)
    return await SessionContext.load(
        services.session_store,
        services.cookie_signer,
        services.settings,
        cookie_value,
    )


async def get_current_user(
    session: SessionContext = Depends(get_session_context),
) -> Optional[Identity]:
    """Current identity or None; never raises for anonymous requests."""
    return session.data.identity


async def require_user(
    identity: Optional[Identity] = Depends(get_current_user),
) -> Identity:
    """
    Dependency for endpoints that need an authenticated user.

    Raises:
        HTTPException: 401 if the request has no authenticated session
    """
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return identity


async def require_admin(identity: Identity = Depends(require_user)) -> Identity:
    """
    Dependency for admin-only endpoints.

    Raises:
        HTTPException: 401 if anonymous, 403 if the user is not an admin
    """
    if identity.role != "admin":
        logger.warning("Admin endpoint denied", extra={"subject": identity.subject})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return identity
