"""
Pluggable ID token signature verification.

The verifier is chosen once by ``build_signature_verifier`` from
``OIDC_VERIFY_SIGNATURE``:

- ``JWKSSignatureVerifier`` checks the token signature against the provider
  JWKS (``jwks_uri`` from discovery), with a TTL cache and one forced refresh
  when the token's ``kid`` is unknown (key rotation).
- ``DisabledSignatureVerifier`` accepts every token. It exists for
  deployments where the JWKS endpoint is unreachable and is announced with a
  WARNING when it is built.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from jose import JOSEError, jwk, jws
from jose import jwt as jose_jwt

from oidc_bff.auth.discovery import DiscoveryClient
from oidc_bff.auth.errors import TokenValidationError
from oidc_bff.config import Settings

logger = logging.getLogger(__name__)

SIGNATURE_INVALID = "signature_invalid"
JWKS_UNAVAILABLE = "jwks_unavailable"

SUPPORTED_ALGORITHMS = ("RS256", "RS384", "RS512", "ES256", "ES384", "ES512")


class SignatureVerifier(ABC):
    """Interface: raise TokenValidationError if the token signature is not acceptable."""

    enabled: bool = True

    @abstractmethod
    async def verify(self, id_token: str) -> None:
        """Check the signature of ``id_token``."""


class DisabledSignatureVerifier(SignatureVerifier):
    """No-op verifier. Claims are still validated by the validator."""

    enabled = False

    async def verify(self, id_token: str) -> None:
        return None


class JWKSSignatureVerifier(SignatureVerifier):
    """Verify signatures with keys from the provider JWKS endpoint."""

    def __init__(
        self,
        discovery: DiscoveryClient,
        http_client: httpx.AsyncClient,
        cache_seconds: int = 3600,
        timeout: float = 10.0,
    ):
        self.discovery = discovery
        self.http_client = http_client
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch JWKS with caching.

        Raises:
            TokenValidationError: jwks_unavailable if the endpoint fails or
                returns a document without keys
        """
        now = time.time()
        if not force_refresh and self._jwks and (now - self._fetched_at) < self.cache_seconds:
            return self._jwks

        config = await self.discovery.get_config()
        try:
            response = await self.http_client.get(config.jwks_uri, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"JWKS request failed: {type(e).__name__}")
            raise TokenValidationError(JWKS_UNAVAILABLE) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"JWKS endpoint returned HTTP {response.status_code}")
            raise TokenValidationError(JWKS_UNAVAILABLE)

        try:
            data = response.json()
        except ValueError as e:
            raise TokenValidationError(JWKS_UNAVAILABLE) from e

        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise TokenValidationError(JWKS_UNAVAILABLE)

        self._jwks = data
        self._fetched_at = now
        return data

    @staticmethod
    def find_key(kid: Optional[str], jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Find the JWKS key matching ``kid``. A token without ``kid`` matches
        only when the set holds exactly one key.
        """
        keys = [k for k in jwks.get("keys", []) if isinstance(k, dict)]
        if kid is None:
            return keys[0] if len(keys) == 1 else None
        for key in keys:
            if key.get("kid") == kid:
                return key
        return None

    async def verify(self, id_token: str) -> None:
        try:
            header = jose_jwt.get_unverified_header(id_token)
        except JOSEError as e:
            raise TokenValidationError(SIGNATURE_INVALID) from e

        algorithm = header.get("alg")
        if algorithm not in SUPPORTED_ALGORITHMS:
            logger.warning(f"Rejected ID token with unsupported alg {algorithm!r}")
            raise TokenValidationError(SIGNATURE_INVALID)

        kid = header.get("kid")
        signing_key = self.find_key(kid, await self.fetch_jwks())
        if signing_key is None:
            # Keys may have rotated
            signing_key = self.find_key(kid, await self.fetch_jwks(force_refresh=True))
        if signing_key is None:
            logger.warning("No JWKS key matches the ID token", extra={"kid": kid})
            raise TokenValidationError(SIGNATURE_INVALID)

        try:
            public_key = jwk.construct(signing_key, algorithm=algorithm)
            jws.verify(id_token, public_key, algorithms=[algorithm])
        except JOSEError as e:
            raise TokenValidationError(SIGNATURE_INVALID) from e


def build_signature_verifier(
    settings: Settings,
    discovery: DiscoveryClient,
    http_client: httpx.AsyncClient,
) -> SignatureVerifier:
    """Select the signature verifier from configuration."""
    if settings.OIDC_VERIFY_SIGNATURE:
        return JWKSSignatureVerifier(
            discovery,
            http_client,
            cache_seconds=settings.JWKS_CACHE_SECONDS,
            timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS,
        )

    logger.warning("=" * 72)
    logger.warning("ID TOKEN SIGNATURE VERIFICATION IS DISABLED (OIDC_VERIFY_SIGNATURE=false)")
    logger.warning("Tokens are trusted based on the TLS connection to the token endpoint only")
    logger.warning("=" * 72)
    return DisabledSignatureVerifier()
