"""
ID token claim validation.

``validate_id_token_claims`` is a pure function: it decodes the token without
checking the signature (that is the job of ``oidc_bff.auth.signature``, which
runs first) and applies the issuer, audience, nonce, expiry, issued-at and
subject checks in that order.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import jwt

from oidc_bff.auth.discovery import normalize_issuer
from oidc_bff.auth.errors import TokenValidationError


# Failure reasons carried by TokenValidationError
MALFORMED_TOKEN = "malformed_token"
ISSUER_MISMATCH = "issuer_mismatch"
AUDIENCE_MISMATCH = "audience_mismatch"
NONCE_MISMATCH = "nonce_mismatch"
TOKEN_EXPIRED = "token_expired"
INVALID_ISSUED_AT = "invalid_issued_at"
MISSING_SUBJECT = "missing_subject"

DEFAULT_CLOCK_SKEW_SECONDS = 300


def decode_unverified(id_token: str) -> Dict[str, Any]:
    """
    Decode JWT claims without verifying signature or any registered claim.

    Raises:
        TokenValidationError: If the token is not a decodable JWT
    """
    try:
        return jwt.decode(
            id_token,
            options={
                "verify_signature": False,
                "verify_exp": False,
                "verify_nbf": False,
                "verify_iat": False,
                "verify_aud": False,
                "verify_iss": False,
            },
        )
    except jwt.InvalidTokenError as e:
        raise TokenValidationError(MALFORMED_TOKEN) from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_id_token_claims(
    id_token: str,
    *,
    expected_nonce: str,
    expected_issuer: Optional[str],
    configured_issuer: Optional[str],
    client_id: Optional[str],
    clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
    now: Optional[float] = None,
    collect_all: bool = False,
) -> Dict[str, Any]:
    """
    Validate ID token claims.

    Args:
        id_token: Raw ID token from the token endpoint
        expected_nonce: Nonce stored in the session at login
        expected_issuer: Issuer from the discovery document
        configured_issuer: Issuer from configuration (either issuer is accepted)
        client_id: Configured client id that must appear in ``aud``
        clock_skew_seconds: Allowed skew for ``iat`` in both directions
        now: Current time in epoch seconds (defaults to time.time())
        collect_all: Run every check and report all failures instead of
            stopping at the first one

    Returns:
        Decoded claims

    Raises:
        TokenValidationError: With the first failed reason, and every failed
            reason in ``reasons`` when collect_all is set
    """
    claims = decode_unverified(id_token)
    current = time.time() if now is None else now

    def check_issuer() -> bool:
        iss = claims.get("iss")
        if not isinstance(iss, str) or not iss:
            return False
        accepted = {
            normalize_issuer(value)
            for value in (expected_issuer, configured_issuer)
            if value
        }
        return normalize_issuer(iss) in accepted

    def check_audience() -> bool:
        if not client_id:
            return False
        aud = claims.get("aud")
        if isinstance(aud, str):
            return aud == client_id
        if isinstance(aud, list):
            return client_id in aud
        return False

    def check_nonce() -> bool:
        nonce = claims.get("nonce")
        return isinstance(nonce, str) and bool(expected_nonce) and nonce == expected_nonce

    def check_expiry() -> bool:
        exp = claims.get("exp")
        return _is_number(exp) and exp >= current

    def check_issued_at() -> bool:
        iat = claims.get("iat")
        if not _is_number(iat):
            return False
        return current - clock_skew_seconds <= iat <= current + clock_skew_seconds

    def check_subject() -> bool:
        sub = claims.get("sub")
        return isinstance(sub, str) and bool(sub.strip())

    checks: List[Tuple[str, Callable[[], bool]]] = [
        (ISSUER_MISMATCH, check_issuer),
        (AUDIENCE_MISMATCH, check_audience),
        (NONCE_MISMATCH, check_nonce),
        (TOKEN_EXPIRED, check_expiry),
        (INVALID_ISSUED_AT, check_issued_at),
        (MISSING_SUBJECT, check_subject),
    ]

    failures: List[str] = []
    for reason, check in checks:
        if check():
            continue
        if not collect_all:
            raise TokenValidationError(reason)
        failures.append(reason)

    if failures:
        raise TokenValidationError(failures[0], failures)

    return claims
