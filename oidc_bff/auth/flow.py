"""
Login flow orchestration.

``LoginFlow.begin`` starts a login (ANONYMOUS -> PENDING_AUTH) and
``LoginFlow.complete`` runs the callback state machine
(PENDING_AUTH -> AUTHENTICATED). Every failure leaves the session without a
half-populated identity:

- missing parameters and state mismatches leave the pending login untouched
- missing/expired pending data and provider failures clear the pending login
- token rejection and authorization denial destroy the whole session
"""

import logging
import secrets
from typing import Optional

import httpx

from oidc_bff.auth.discovery import DiscoveryClient
from oidc_bff.auth.errors import (
    AuthorizationDeniedError,
    ConfigurationError,
    DiscoveryError,
    MissingParameterError,
    MissingSessionDataError,
    StateMismatchError,
    TokenExchangeError,
    TokenValidationError,
)
from oidc_bff.auth.pkce import build_authorization_url, generate_pending_auth
from oidc_bff.auth.roles import display_name, extract_identifier, resolve_role
from oidc_bff.auth.session import SessionContext
from oidc_bff.auth.signature import SignatureVerifier
from oidc_bff.auth.tokens import exchange_code_for_tokens, refresh_tokens
from oidc_bff.auth.validator import validate_id_token_claims
from oidc_bff.config import Settings
from oidc_bff.models import Identity, Tokens

logger = logging.getLogger(__name__)


def _prefix(value: Optional[str]) -> Optional[str]:
    return value[:8] if value else None


def _states_match(received: str, expected: str) -> bool:
    return secrets.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


class LoginFlow:
    """Authorization Code + PKCE login against a single OpenID provider."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        discovery: DiscoveryClient,
        signature_verifier: SignatureVerifier,
    ):
        self.settings = settings
        self.http_client = http_client
        self.discovery = discovery
        self.signature_verifier = signature_verifier

    # =========================================================================
    # Login
    # =========================================================================

    async def begin(self, session: SessionContext) -> str:
        """
        Start a login attempt and return the provider authorization URL.

        The pending login is committed to the store before this returns, so
        the redirect can never reach the provider ahead of the session write.
        A second login in the same session replaces the first pending login.

        Raises:
            ConfigurationError, DiscoveryError, SessionPersistenceError
        """
        discovery = await self.discovery.get_config()
        pending = generate_pending_auth()
        authorization_url = build_authorization_url(discovery, pending, self.settings)

        session.data.pending_auth = pending
        await session.commit()

        logger.info("Login started", extra={"state_prefix": _prefix(pending.state)})
        return authorization_url

    # =========================================================================
    # Callback
    # =========================================================================

    async def complete(
        self,
        session: SessionContext,
        code: Optional[str],
        state: Optional[str],
    ) -> Identity:
        """
        Handle the provider callback and authenticate the session.

        Returns:
            The identity stored in the session

        Raises:
            MissingParameterError: code or state empty
            StateMismatchError: state differs from the pending login (or none exists)
            MissingSessionDataError: pending login incomplete or expired
            TokenExchangeError / DiscoveryError: provider call failed
            TokenValidationError: ID token rejected (session destroyed)
            AuthorizationDeniedError: no usable identifier (session destroyed)
            SessionPersistenceError: the session store failed
        """
        if not code or not state:
            raise MissingParameterError("code or state missing")

        pending = session.data.pending_auth
        if pending is None or not _states_match(state, pending.state):
            logger.warning(
                "Callback state mismatch",
                extra={
                    "received_prefix": _prefix(state),
                    "expected_prefix": _prefix(pending.state if pending else None),
                },
            )
            raise StateMismatchError("state mismatch")

        if not pending.code_verifier or not pending.nonce:
            await self._clear_pending(session)
            raise MissingSessionDataError("pending login incomplete")

        if pending.is_expired(self.settings.OIDC_PENDING_AUTH_TTL_SECONDS):
            await self._clear_pending(session)
            raise MissingSessionDataError("pending login expired")

        try:
            discovery = await self.discovery.get_config()
            tokens = await exchange_code_for_tokens(
                self.http_client,
                discovery,
                self.settings,
                code=code,
                code_verifier=pending.code_verifier,
            )
        except (ConfigurationError, DiscoveryError, TokenExchangeError):
            await self._clear_pending(session)
            raise

        try:
            await self.signature_verifier.verify(tokens.id_token)
            claims = validate_id_token_claims(
                tokens.id_token,
                expected_nonce=pending.nonce,
                expected_issuer=discovery.issuer,
                configured_issuer=self.settings.OIDC_ISSUER,
                client_id=self.settings.OIDC_CLIENT_ID,
                clock_skew_seconds=self.settings.OIDC_CLOCK_SKEW_SECONDS,
            )
        except TokenValidationError as e:
            logger.warning(f"ID token rejected: {e.reason}", extra={"reasons": list(e.reasons)})
            await session.destroy()
            raise

        identifier, source = extract_identifier(claims)
        role = resolve_role(identifier, self.settings.admin_allowlist)
        if role is None:
            logger.warning("Login denied: no usable identifier in ID token")
            await session.destroy()
            raise AuthorizationDeniedError("no usable identifier")

        identity = Identity(
            subject=claims["sub"],
            email=identifier if source != "sub" else None,
            name=display_name(claims),
            role=role,
        )

        session.data.mark_authenticated(identity, tokens)
        await session.commit(rotate=True)

        logger.info(
            "Login completed",
            extra={"role": role, "identifier_claim": source},
        )
        return identity

    async def abort(self, session: SessionContext, provider_error: str) -> None:
        """Clear the pending login after the provider reported an error."""
        logger.warning(f"Identity provider returned error: {provider_error}")
        if session.data.pending_auth is not None:
            await self._clear_pending(session)

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self, session: SessionContext) -> Tokens:
        """
        Refresh the authenticated session's tokens on demand.

        Raises:
            MissingSessionDataError: No tokens or no refresh token in session
            TokenExchangeError / DiscoveryError: Provider call failed
        """
        current = session.data.tokens
        if current is None or not current.refresh_token:
            raise MissingSessionDataError(
                "no refresh token in session",
                public_message="No refresh token available",
            )

        discovery = await self.discovery.get_config()
        tokens = await refresh_tokens(self.http_client, discovery, self.settings, current)
        session.data.tokens = tokens
        await session.commit()

        logger.info("Tokens refreshed", extra={"expires_at": tokens.expires_at})
        return tokens

    async def _clear_pending(self, session: SessionContext) -> None:
        session.data.clear_pending()
        await session.commit()
