"""
Role definitions for the loyalty program.

Roles are strictly ordered: regular < cashier < manager < superuser.
Every privilege check in the engine is an "at least this role" check.
"""

from __future__ import annotations

from .errors import AuthorizationError


# =============================================================================
# ROLES
# =============================================================================

class Role:
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"


ROLE_ORDER = (Role.REGULAR, Role.CASHIER, Role.MANAGER, Role.SUPERUSER)

ROLE_RANK = {name: rank for rank, name in enumerate(ROLE_ORDER)}


def is_valid_role(role: str) -> bool:
    return role in ROLE_RANK


def has_at_least_role(principal, role: str) -> bool:
    """True when principal (a User or a role name) ranks at or above role."""
    if role not in ROLE_RANK:
        raise ValueError(f"Unknown role: {role}")
    principal_role = principal if isinstance(principal, str) else getattr(principal, "role", None)
    if principal_role not in ROLE_RANK:
        return False
    return ROLE_RANK[principal_role] >= ROLE_RANK[role]


def require_role(principal, role: str, message: str | None = None) -> None:
    if not has_at_least_role(principal, role):
        raise AuthorizationError(message or f"Requires {role} role or higher")
