"""
Project roles and permissions.

Role defaults are fixed; a member may carry explicit overrides that take
precedence over the role default for the permissions they name.
"""

from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional


class Permission(Enum):
    """Capabilities that can be granted inside a project."""
    PROJECT_READ = "project:read"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"
    PROJECT_TRANSFER_OWNERSHIP = "project:transfer-ownership"
    PROJECT_MANAGE_MODELS = "project:manage-models"
    PROJECT_MANAGE_SPENDING_LIMITS = "project:manage-spending-limits"

    MEMBERS_READ = "members:read"
    MEMBERS_INVITE = "members:invite"
    MEMBERS_REMOVE = "members:remove"
    MEMBERS_UPDATE_ROLE = "members:update-role"

    API_KEYS_CREATE = "api-keys:create"
    API_KEYS_READ = "api-keys:read"
    API_KEYS_UPDATE = "api-keys:update"
    API_KEYS_REVOKE = "api-keys:revoke"

    FALLBACKS_CREATE = "fallbacks:create"
    FALLBACKS_READ = "fallbacks:read"
    FALLBACKS_UPDATE = "fallbacks:update"
    FALLBACKS_DELETE = "fallbacks:delete"
    FALLBACKS_SET_DEFAULT = "fallbacks:set-default"

    USAGE_READ = "usage:read"
    AUDIT_LOGS_READ = "audit-logs:read"

    BILLING_READ = "billing:read"
    BILLING_MANAGE = "billing:manage"


class ProjectRole(Enum):
    """Roles a project member can hold."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    BILLING = "BILLING"
    VIEWER = "VIEWER"


P = Permission

ROLE_PERMISSIONS: Dict[ProjectRole, FrozenSet[Permission]] = {
    ProjectRole.OWNER: frozenset(Permission),
    ProjectRole.ADMIN: frozenset({
        P.PROJECT_READ, P.PROJECT_UPDATE, P.PROJECT_MANAGE_MODELS,
        P.PROJECT_MANAGE_SPENDING_LIMITS,
        P.MEMBERS_READ, P.MEMBERS_INVITE, P.MEMBERS_REMOVE, P.MEMBERS_UPDATE_ROLE,
        P.API_KEYS_CREATE, P.API_KEYS_READ, P.API_KEYS_UPDATE, P.API_KEYS_REVOKE,
        P.FALLBACKS_CREATE, P.FALLBACKS_READ, P.FALLBACKS_UPDATE, P.FALLBACKS_DELETE,
        P.FALLBACKS_SET_DEFAULT,
        P.USAGE_READ, P.AUDIT_LOGS_READ, P.BILLING_READ,
    }),
    ProjectRole.MEMBER: frozenset({
        P.PROJECT_READ, P.MEMBERS_READ,
        P.API_KEYS_CREATE, P.API_KEYS_READ, P.API_KEYS_UPDATE, P.API_KEYS_REVOKE,
        P.FALLBACKS_CREATE, P.FALLBACKS_READ, P.FALLBACKS_UPDATE, P.FALLBACKS_DELETE,
        P.USAGE_READ, P.AUDIT_LOGS_READ,
    }),
    ProjectRole.BILLING: frozenset({
        P.PROJECT_READ, P.MEMBERS_READ, P.USAGE_READ, P.AUDIT_LOGS_READ,
        P.BILLING_READ, P.BILLING_MANAGE,
    }),
    ProjectRole.VIEWER: frozenset({
        P.PROJECT_READ, P.MEMBERS_READ, P.API_KEYS_READ, P.FALLBACKS_READ,
        P.USAGE_READ, P.AUDIT_LOGS_READ, P.BILLING_READ,
    }),
}


def role_has_permission(role: ProjectRole, permission: Permission) -> bool:
    """Check whether a role grants a permission by default."""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def resolve_permission(
    role: ProjectRole,
    overrides: Optional[Mapping[Permission, bool]],
    permission: Permission,
) -> bool:
    """Resolve a member's effective permission.

    An explicit override for the permission wins; otherwise the role
    default applies.

    Args:
        role: Member's project role
        overrides: Per-member explicit grants/denials
        permission: Permission being checked

    Returns:
        True if the member holds the permission
    """
    if overrides and permission in overrides:
        return bool(overrides[permission])
    return role_has_permission(role, permission)


def parse_overrides(raw: Optional[Mapping[str, object]]) -> Dict[Permission, bool]:
    """Parse stored override JSON into a typed mapping.

    Raises:
        ValueError: If a key is not a known permission or a value is not boolean
    """
    overrides: Dict[Permission, bool] = {}
    for name, granted in (raw or {}).items():
        try:
            permission = Permission(name)
        except ValueError:
            raise ValueError(f"Unknown permission: {name}")
        if not isinstance(granted, bool):
            raise ValueError(f"Override for '{name}' must be a boolean")
        overrides[permission] = granted
    return overrides
