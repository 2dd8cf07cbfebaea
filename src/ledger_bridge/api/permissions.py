"""
Role-based permissions for admin tokens.

Each configured admin token carries one role. Roles map to explicit
permission sets:

    viewer  -> read cache and reconciliation reports
    ops     -> viewer + sync orders + edit orders
    finance -> viewer + sync orders
    admin   -> everything, including the bulk ledger sync

Roles DO NOT inherit from lower roles; every set is spelled out. The rank
is only used to describe roles (e.g. in 403 messages), never to grant
access.
"""

from enum import Enum

# ============================================================================
# ROLE DEFINITIONS
# ============================================================================


class Role(Enum):
    """Admin token roles, lowest to highest."""

    VIEWER = "viewer"
    OPS = "ops"
    FINANCE = "finance"
    ADMIN = "admin"


ROLE_RANK = {
    Role.VIEWER: 0,
    Role.OPS: 1,
    Role.FINANCE: 2,
    Role.ADMIN: 3,
}


# ============================================================================
# PERMISSION DEFINITIONS
# ============================================================================


class Permission(Enum):
    """Actions an admin token may perform."""

    VIEW_CACHE = "view_cache"
    MANAGE_CACHE = "manage_cache"  # Clear or force-refresh the ledger cache
    VIEW_RECONCILE = "view_reconcile"
    RUN_RECONCILE_ACTIONS = "run_reconcile_actions"
    SYNC_ORDERS = "sync_orders"  # Chain-sync any order without a user signature
    SYNC_ALL_ORDERS = "sync_all_orders"  # Mirror the whole ledger snapshot in one run
    EDIT_ORDERS = "edit_orders"


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.VIEWER: {
        Permission.VIEW_CACHE,
        Permission.VIEW_RECONCILE,
    },
    Role.OPS: {
        Permission.VIEW_CACHE,
        Permission.VIEW_RECONCILE,
        Permission.SYNC_ORDERS,
        Permission.EDIT_ORDERS,
    },
    Role.FINANCE: {
        Permission.VIEW_CACHE,
        Permission.VIEW_RECONCILE,
        Permission.SYNC_ORDERS,
    },
    Role.ADMIN: set(Permission),
}


# ============================================================================
# PERMISSION CHECKING FUNCTIONS
# ============================================================================


def parse_role(role: str) -> Role | None:
    """Return the Role for a case-insensitive name, or None if unknown."""
    try:
        return Role(role.strip().lower())
    except ValueError:
        return None


def has_permission(role: str, permission: Permission) -> bool:
    """
    Check if a role has a specific permission.

    Unknown roles have no permissions.

    Example:
        >>> has_permission("viewer", Permission.VIEW_CACHE)
        True
        >>> has_permission("finance", Permission.EDIT_ORDERS)
        False
    """
    role_enum = parse_role(role)
    if role_enum is None:
        return False
    return permission in ROLE_PERMISSIONS.get(role_enum, set())


def get_role_rank(role: str) -> int:
    """Numeric rank of a role; unknown roles rank below viewer."""
    role_enum = parse_role(role)
    if role_enum is None:
        return -1
    return ROLE_RANK[role_enum]
