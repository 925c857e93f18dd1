"""
FastAPI Application Factory
===========================

Entry point for the OIDC Backend-For-Frontend service. It sits between the
browser frontend and the identity provider and keeps every token server-side.

Architecture:
    Browser (cookie only) → BFF (this service) → OpenID Provider

Routers:
    - /auth/*       : Login, callback, current user, logout, refresh
    - /health       : Health check endpoint

Environment Variables (see oidc_bff/config.py for the full list):
    - OIDC_ISSUER / OIDC_DISCOVERY_URL: Provider location
    - OIDC_CLIENT_ID / OIDC_CLIENT_SECRET: Client credentials
    - OIDC_REDIRECT_URI: Callback URL registered with the provider
    - ADMIN_EMAIL_ALLOWLIST: Comma-separated admin identifiers
    - FRONTEND_BASE_URL: Post-login redirect target
    - SESSION_SECRET: Secret for signing the session cookie
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn oidc_bff.main:create_application --factory --reload --port 3000

    Production:
        uvicorn oidc_bff.main:create_application --factory --host 0.0.0.0 --port 3000

    The bundled in-memory session store is per process; run a single worker
    or pass a shared SessionStore to create_application().
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oidc_bff import __version__
from oidc_bff.auth.discovery import DiscoveryClient
from oidc_bff.auth.errors import AuthError
from oidc_bff.auth.routes import auth_router
from oidc_bff.auth.session import InMemorySessionStore, SessionCookieSigner, SessionStore
from oidc_bff.auth.signature import build_signature_verifier
from oidc_bff.config import Settings, get_settings, validate_configuration
from oidc_bff.dependencies import AuthServices
from oidc_bff.models import HealthResponse

SERVICE_NAME = "oidc-bff"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


logger = logging.getLogger("oidc_bff.main")


def build_services(
    settings: Settings,
    session_store: Optional[SessionStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AuthServices:
    """
    Build the shared service container.

    A client passed in by the caller is not closed on shutdown.
    """
    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS)

    discovery = DiscoveryClient(settings, http_client)
    return AuthServices(
        settings=settings,
        http_client=http_client,
        discovery=discovery,
        signature_verifier=build_signature_verifier(settings, discovery, http_client),
        session_store=session_store if session_store is not None else InMemorySessionStore(),
        cookie_signer=SessionCookieSigner(settings.SESSION_SECRET, settings.SESSION_MAX_AGE_SECONDS),
        owns_http_client=owns_client,
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Log the configuration report (errors, warnings)

    Shutdown tasks:
        - Close the shared HTTP client
    """
    services: AuthServices = app.state.auth
    status = validate_configuration(services.settings)

    for error in status["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in status["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    logger.info(
        "OIDC BFF service started",
        extra={
            "service": SERVICE_NAME,
            "version": __version__,
            "discovery_url": status["discovery_url"],
            "verify_signature": status["verify_signature"],
        }
    )

    yield

    logger.info("Shutting down OIDC BFF service")
    await services.aclose()
    logger.info("OIDC BFF service shutdown complete")


# Create FastAPI application
def create_application(
    settings: Optional[Settings] = None,
    session_store: Optional[SessionStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Shared services on app.state.auth
        - Lifespan management
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use (defaults to get_settings())
        session_store: Session backing store (defaults to in-memory)
        http_client: Shared HTTP client for provider calls

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="OIDC BFF Service",
        description="Backend-For-Frontend authentication against an OpenID Connect provider",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.auth = build_services(settings, session_store, http_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint. Does not contact the identity provider."""
        discovery = app.state.auth.discovery
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=__version__,
            dependencies={"discovery": "loaded" if discovery.cached else "not_loaded"},
        )

    # Root endpoint
    @app.get("/", tags=["System"])
    async def root() -> Dict[str, object]:
        """Service metadata and available endpoints."""
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "login": "/auth/login",
                "callback": "/auth/callback",
                "me": "/auth/me",
                "logout": "/auth/logout",
            }
        }

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Render auth errors raised outside the auth routes' own handling."""
        logger.warning(
            f"Auth error: {exc.reason}",
            extra={"path": request.url.path, "error_code": exc.error_code},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a generic error response.
        """
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "oidc_bff.main:create_application",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
