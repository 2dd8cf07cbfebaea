"""Admin token authentication.

Tokens are configured as ``role:token`` entries (``admin.tokens``) and sent
either as ``Authorization: Bearer <token>`` or ``x-admin-token``. Lookups
compare every configured token in constant time.
"""

import hmac
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from fastapi import Request

from ledger_bridge.api.permissions import Permission, Role, has_permission, parse_role
from ledger_bridge.config import config
from ledger_bridge.errors import AuthError

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "x-admin-token"


@dataclass(frozen=True)
class AdminIdentity:
    role: Role
    label: str


def parse_admin_tokens(entries: Iterable[str]) -> list[tuple[Role, str]]:
    """Parse ``role:token`` entries, skipping malformed ones and duplicates."""
    parsed: list[tuple[Role, str]] = []
    seen: set[str] = set()
    for entry in entries:
        role_raw, sep, token = entry.partition(":")
        role = parse_role(role_raw)
        token = token.strip()
        if not sep or role is None or not token:
            logger.warning("Ignoring malformed admin token entry for role %r", role_raw.strip())
            continue
        if token in seen:
            continue
        seen.add(token)
        parsed.append((role, token))
    return parsed


def extract_admin_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization") or ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    token = (request.headers.get(ADMIN_TOKEN_HEADER) or "").strip()
    return token or None


def identify_admin(token: str | None) -> AdminIdentity | None:
    """Return the identity for ``token``, or None when it matches nothing."""
    if not token:
        return None
    match: AdminIdentity | None = None
    for role, candidate in parse_admin_tokens(config.admin.tokens):
        # Keep scanning after a match so timing does not reveal the position.
        if hmac.compare_digest(candidate.encode(), token.encode()) and match is None:
            match = AdminIdentity(role=role, label=role.value)
    return match


def get_admin(request: Request) -> AdminIdentity | None:
    """Dependency: the admin behind the request's token, if any."""
    return identify_admin(extract_admin_token(request))


def require_permission(permission: Permission) -> Callable[[Request], AdminIdentity]:
    """
    Build a dependency that requires an admin token with ``permission``.

    Raises:
        AuthError: 401 ``unauthorized`` without a valid token, 403
            ``forbidden`` when the token's role lacks the permission.
    """

    def dependency(request: Request) -> AdminIdentity:
        identity = get_admin(request)
        if identity is None:
            raise AuthError("Admin token required", code="unauthorized")
        if not has_permission(identity.role.value, permission):
            logger.info("Role %s denied %s", identity.role.value, permission.value)
            raise AuthError(
                f"Insufficient permissions. Required: {permission.value}",
                code="forbidden",
                status_code=403,
            )
        return identity

    return dependency
