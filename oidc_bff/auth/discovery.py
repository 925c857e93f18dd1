"""
OpenID Provider discovery.

``DiscoveryClient`` fetches the provider's ``.well-known/openid-configuration``
once and keeps the result for the lifetime of the instance. The instance is
created by the application factory and shared through ``app.state``.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from oidc_bff.auth.errors import DiscoveryError, IssuerNotConfiguredError
from oidc_bff.config import Settings
from oidc_bff.models import DiscoveryDocument

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("authorization_endpoint", "token_endpoint", "jwks_uri")


def normalize_issuer(value: Optional[str]) -> str:
    """Strip a single trailing slash so ``https://idp/`` and ``https://idp`` compare equal."""
    if not value:
        return ""
    return value[:-1] if value.endswith("/") else value


class DiscoveryClient:
    """
    Lazily fetched, then immutable, provider metadata.

    Concurrent first callers may each issue a fetch. The first document
    stored wins and every caller returns that same object, so later
    fetches are discarded rather than replacing it.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self._document: Optional[DiscoveryDocument] = None

    @property
    def cached(self) -> Optional[DiscoveryDocument]:
        return self._document

    def invalidate(self) -> None:
        """Drop the cached document so the next call re-fetches."""
        self._document = None

    async def get_config(self) -> DiscoveryDocument:
        """
        Return the provider metadata, fetching it on first use.

        Raises:
            IssuerNotConfiguredError: Neither OIDC_ISSUER nor OIDC_DISCOVERY_URL is set
            DiscoveryError: Endpoint unreachable, non-2xx, invalid JSON or
                missing required endpoints
        """
        if self._document is not None:
            return self._document

        document = await self._fetch()
        if self._document is None:
            self._document = document
        return self._document

    async def _fetch(self) -> DiscoveryDocument:
        url = self.settings.discovery_url
        if not url:
            raise IssuerNotConfiguredError("issuer not configured")

        try:
            response = await self.http_client.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self.settings.OIDC_HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.error(f"Discovery request failed: {type(e).__name__}", extra={"url": url})
            raise DiscoveryError(f"discovery unreachable: {type(e).__name__}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Discovery returned HTTP {response.status_code}", extra={"url": url})
            raise DiscoveryError(f"discovery returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise DiscoveryError("discovery document is not valid JSON") from e

        if not isinstance(data, dict):
            raise DiscoveryError("discovery document is not a JSON object")

        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise DiscoveryError(f"discovery document missing: {', '.join(missing)}")

        try:
            document = DiscoveryDocument.model_validate(data)
        except ValidationError as e:
            raise DiscoveryError("discovery document is malformed") from e

        configured = normalize_issuer(self.settings.OIDC_ISSUER)
        if configured and document.issuer and normalize_issuer(document.issuer) != configured:
            logger.warning(
                "Discovery issuer differs from configured issuer",
                extra={"discovered": document.issuer, "configured": self.settings.OIDC_ISSUER},
            )

        logger.info("Loaded OIDC discovery document", extra={"issuer": document.issuer})
        return document
