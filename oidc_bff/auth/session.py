"""
Server-Side Session Management Module
=====================================

Sessions are stored server-side and addressed by an opaque id. The browser
only holds that id, signed with ``itsdangerous`` in an httpOnly cookie; no
token ever leaves the server.

- ``SessionStore``: async backing store interface (``InMemorySessionStore``
  is the bundled implementation)
- ``SessionCookieSigner``: cookie value signing and verification
- ``SessionContext``: per-request handle with the typed ``SessionData`` and
  awaited ``commit()`` / ``destroy()`` operations
"""

import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from fastapi import Response
from itsdangerous import BadSignature, TimestampSigner

from oidc_bff.auth.errors import SessionPersistenceError
from oidc_bff.config import Settings
from oidc_bff.models import Identity, SessionData

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 32
COOKIE_SALT = "oidc-bff.session"


# =============================================================================
# Session Stores
# =============================================================================

class SessionStore(ABC):
    """Async key-value store for session records."""

    @abstractmethod
    async def load(self, session_id: str) -> Optional[SessionData]:
        """Return the session, or None if unknown or expired."""

    @abstractmethod
    async def save(self, session_id: str, data: SessionData, ttl_seconds: int) -> None:
        """Persist the session. Must not return before the write is durable."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove the session. Deleting an unknown id is not an error."""


class InMemorySessionStore(SessionStore):
    """
    Process-local session store with per-entry expiry.

    Records are stored as JSON-mode dumps so callers never share mutable
    state with the store. Expired records are dropped on read and swept
    every ``purge_every`` saves. Suitable for a single worker process.
    """

    def __init__(self, purge_every: int = 100):
        self._records: Dict[str, Tuple[dict, float]] = {}
        self.purge_every = purge_every
        self._saves = 0

    async def load(self, session_id: str) -> Optional[SessionData]:
        record = self._records.get(session_id)
        if record is None:
            return None
        payload, expires_at = record
        if time.time() >= expires_at:
            self._records.pop(session_id, None)
            return None
        return SessionData.model_validate(payload)

    async def save(self, session_id: str, data: SessionData, ttl_seconds: int) -> None:
        payload = data.model_dump(mode="json")
        self._records[session_id] = (payload, time.time() + ttl_seconds)

        self._saves += 1
        if self.purge_every > 0 and self._saves % self.purge_every == 0:
            purged = self._purge()
            if purged:
                logger.debug(f"Purged {purged} expired sessions")

    async def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    async def purge_expired(self) -> int:
        """Drop expired records and return how many were removed."""
        return self._purge()

    def _purge(self) -> int:
        now = time.time()
        expired = [sid for sid, (_, exp) in self._records.items() if now >= exp]
        for sid in expired:
            del self._records[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


# =============================================================================
# Cookie Signing
# =============================================================================

class SessionCookieSigner:
    """Sign session ids for the cookie and verify them on the way back in."""

    def __init__(self, secret: str, max_age_seconds: int):
        self._signer = TimestampSigner(secret, salt=COOKIE_SALT)
        self.max_age_seconds = max_age_seconds

    def sign(self, session_id: str) -> str:
        return self._signer.sign(session_id).decode("utf-8")

    def unsign(self, cookie_value: Optional[str]) -> Optional[str]:
        """
        Return the session id from a cookie value.

        Tampered, malformed or expired cookies yield None.
        """
        if not cookie_value:
            return None
        try:
            session_id = self._signer.unsign(cookie_value, max_age=self.max_age_seconds)
        except BadSignature:
            logger.debug("Rejected session cookie with invalid or expired signature")
            return None
        return session_id.decode("utf-8")


def new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


# =============================================================================
# Request-Scoped Session Handle
# =============================================================================

class SessionContext:
    """
    Typed session for one request.

    Route handlers mutate ``data`` and then await ``commit()`` (or
    ``destroy()``) before building their response, then call
    ``apply_cookie(response)`` so the cookie matches the stored state.
    """

    def __init__(
        self,
        store: SessionStore,
        signer: SessionCookieSigner,
        settings: Settings,
        session_id: Optional[str] = None,
        data: Optional[SessionData] = None,
    ):
        self.store = store
        self.signer = signer
        self.settings = settings
        self.session_id = session_id
        self.data = data if data is not None else SessionData()
        self._committed = False
        self._destroyed = False

    @classmethod
    async def load(
        cls,
        store: SessionStore,
        signer: SessionCookieSigner,
        settings: Settings,
        cookie_value: Optional[str],
    ) -> "SessionContext":
        session_id = signer.unsign(cookie_value)
        data = None
        if session_id is not None:
            data = await store.load(session_id)
            if data is None:
                # Signed but unknown (logged out or expired): start over
                session_id = None
        return cls(store, signer, settings, session_id=session_id, data=data)

    @property
    def is_new(self) -> bool:
        return self.session_id is None

    @property
    def ttl_seconds(self) -> int:
        """Record lifetime: full session age once authenticated, pending-login TTL before."""
        if self.data.identity is not None:
            return self.settings.SESSION_MAX_AGE_SECONDS
        return self.settings.OIDC_PENDING_AUTH_TTL_SECONDS

    async def commit(self, rotate: bool = False) -> None:
        """
        Persist ``data``, creating the session id on first write.

        Args:
            rotate: Save under a fresh session id and delete the previous record

        Raises:
            SessionPersistenceError: If the store write or the old record's delete fails
        """
        previous_id = self.session_id
        if self.session_id is None or rotate:
            self.session_id = new_session_id()
        try:
            await self.store.save(self.session_id, self.data, self.ttl_seconds)
        except Exception as e:
            self.session_id = previous_id
            logger.error(f"Failed to save session: {type(e).__name__}", exc_info=True)
            raise SessionPersistenceError(f"session save failed: {type(e).__name__}") from e

        if rotate and previous_id is not None:
            try:
                await self.store.delete(previous_id)
            except Exception as e:
                logger.error(f"Failed to delete rotated session: {type(e).__name__}", exc_info=True)
                raise SessionPersistenceError(f"session rotation failed: {type(e).__name__}") from e

        self._committed = True
        self._destroyed = False

    async def destroy(self) -> None:
        """
        Delete the stored session and reset ``data``. Idempotent.

        Raises:
            SessionPersistenceError: If the store delete fails
        """
        if self.session_id is not None:
            try:
                await self.store.delete(self.session_id)
            except Exception as e:
                logger.error(f"Failed to delete session: {type(e).__name__}", exc_info=True)
                raise SessionPersistenceError(f"session delete failed: {type(e).__name__}") from e
        self.session_id = None
        self.data = SessionData()
        self._committed = False
        self._destroyed = True

    def apply_cookie(self, response: Response) -> Response:
        """Set or clear the session cookie on ``response`` to match the stored state."""
        if self._destroyed:
            response.delete_cookie(
                self.settings.SESSION_COOKIE_NAME,
                path="/",
                secure=self.settings.SESSION_COOKIE_SECURE,
                httponly=True,
                samesite=self.settings.SESSION_COOKIE_SAMESITE,
            )
        elif self._committed and self.session_id is not None:
            response.set_cookie(
                self.settings.SESSION_COOKIE_NAME,
                self.signer.sign(self.session_id),
                max_age=self.settings.SESSION_MAX_AGE_SECONDS,
                path="/",
                secure=self.settings.SESSION_COOKIE_SECURE,
                httponly=True,
                samesite=self.settings.SESSION_COOKIE_SAMESITE,
            )
        return response


# =============================================================================
# Identity Store Operations
# =============================================================================

def current_user(session: SessionContext) -> Optional[Identity]:
    """Return the authenticated identity, or None. Never raises for anonymous sessions."""
    return session.data.identity


async def logout(session: SessionContext) -> None:
    """Destroy the session record; the caller applies the cookie deletion. Idempotent."""
    had_identity = session.data.identity is not None
    await session.destroy()
    if had_identity:
        logger.info("User logged out")


__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SessionCookieSigner",
    "SessionContext",
    "current_user",
    "logout",
]
