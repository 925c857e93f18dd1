"""
Identifier extraction and role resolution.
"""

from typing import Any, Dict, Iterable, Optional, Tuple

ADMIN = "admin"
EMPLOYEE = "employee"

# Claims tried in order when picking the login identifier
IDENTIFIER_CLAIMS = ("email", "preferred_username", "upn", "sub")


def normalize_identifier(value: Any) -> Optional[str]:
    """Trim and lower-case a string; None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def extract_identifier(claims: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """
    Pick the identifier passed to the role resolver.

    Returns:
        (normalized identifier, claim name it came from), or (None, None)
        if no candidate claim holds a non-empty string
    """
    for claim_name in IDENTIFIER_CLAIMS:
        identifier = normalize_identifier(claims.get(claim_name))
        if identifier:
            return identifier, claim_name
    return None, None


def resolve_role(email: Any, allowlist: Iterable[str]) -> Optional[str]:
    """
    Map an identifier to an internal role.

    Args:
        email: Identifier from extract_identifier (any type accepted)
        allowlist: Admin identifiers (normalized here as well)

    Returns:
        "admin" if the identifier is on the allowlist, "employee" otherwise,
        None (deny) for a missing, non-string or blank identifier

    Example:
        >>> resolve_role(" Admin@Corp.com ", ["admin@corp.com"])
        'admin'
        >>> resolve_role("dev@corp.com", ["admin@corp.com"])
        'employee'
    """
    normalized = normalize_identifier(email)
    if normalized is None:
        return None

    admins = {entry for entry in (normalize_identifier(a) for a in allowlist) if entry}
    return ADMIN if normalized in admins else EMPLOYEE


def display_name(claims: Dict[str, Any]) -> Optional[str]:
    name = claims.get("name") or claims.get("given_name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None
