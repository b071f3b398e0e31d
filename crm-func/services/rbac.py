from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple

ROLE_HIERARCHY: Mapping[str, int] = MappingProxyType(
    {
        "admin": 100,
        "manager": 75,
        "technician": 50,
        "user": 25,
    }
)
ROLES = frozenset(ROLE_HIERARCHY)
DEFAULT_ROLE = "user"
WILDCARD_PERMISSION = "*"

ROLE_PERMISSIONS: Mapping[str, frozenset] = MappingProxyType(
    {
        "admin": frozenset({WILDCARD_PERMISSION}),
        "manager": frozenset(
            {
                "leads:read",
                "leads:write",
                "contacts:read",
                "contacts:write",
                "accounts:read",
                "accounts:write",
                "quotes:read",
                "quotes:write",
                "workOrders:read",
                "workOrders:write",
                "invoices:read",
                "invoices:write",
            }
        ),
        "technician": frozenset(
            {
                "contacts:read",
                "accounts:read",
                "workOrders:read",
                "workOrders:write",
            }
        ),
        "user": frozenset(
            {
                "leads:read",
                "contacts:read",
                "accounts:read",
                "quotes:read",
                "workOrders:read",
                "invoices:read",
            }
        ),
    }
)


def is_valid_role(role: Optional[str]) -> bool:
    return role in ROLES


def role_rank(role: Optional[str]) -> int:
    if not role:
        return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(role: Optional[str], permission: str) -> bool:
    """
    Return True when `role` grants `permission`.
    Admin is a wildcard; unknown or missing roles are denied.
    """
    if not role:
        return False
    if role == "admin":
        return True
    granted = ROLE_PERMISSIONS.get(role, frozenset())
    return permission in granted or WILDCARD_PERMISSION in granted


def has_role(role: Optional[str], required_role: str) -> bool:
    """Return True when `role` ranks at or above `required_role`."""
    if not role:
        return False
    return role_rank(role) >= role_rank(required_role)


def has_any_role(role: Optional[str], allowed_roles: Iterable[str]) -> bool:
    return any(has_role(role, allowed) for allowed in allowed_roles)


def check_access(
    role: Optional[str],
    permission: Optional[str] = None,
    required_role: Optional[str] = None,
) -> bool:
    """
    Guard composition for protected views: every supplied constraint must hold,
    an omitted constraint counts as satisfied.
    """
    permission_ok = has_permission(role, permission) if permission else True
    role_ok = has_role(role, required_role) if required_role else True
    return permission_ok and role_ok


def access_denied_message(permission: Optional[str] = None, required_role: Optional[str] = None) -> str:
    if permission:
        return f"You don't have the required permission: {permission}"
    return f"You need {required_role} role or higher to access this content"


def parse_guard(payload: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str], List[str]]:
    """Read `{permission?, role?, allowedRoles?}`; raises ValueError on wrong types."""
    permission = payload.get("permission") or None
    required_role = payload.get("role") or None
    allowed_roles = payload.get("allowedRoles") or []
    if permission is not None and not isinstance(permission, str):
        raise ValueError("permission must be a string")
    if required_role is not None and not isinstance(required_role, str):
        raise ValueError("role must be a string")
    if not isinstance(allowed_roles, list) or not all(isinstance(role, str) for role in allowed_roles):
        raise ValueError("allowedRoles must be a list of strings")
    return permission, required_role, allowed_roles
