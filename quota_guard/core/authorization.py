"""
Key and project authorization checks.

Answers whether a dashboard user may view or administer a key. Misses
return False; callers map that to 403/404.
"""

from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.projects import ProjectRepository

from .permissions import Permission, resolve_permission


def check_project_permission(
    user_id: str,
    project_id: str,
    permission: Permission,
    projects: ProjectRepository,
) -> bool:
    """Check a member's effective permission in a project.

    The project owner holds every permission. Other members resolve their
    explicit overrides first, then their role defaults.
    """
    project = projects.get_project(project_id)
    if project is None:
        return False
    if project.owner_id == user_id:
        return True

    member = projects.get_member(project_id, user_id)
    if member is None:
        return False
    return resolve_permission(member.role, member.permissions, permission)


def check_key_authorization(
    key_id: str,
    user_id: str,
    keys: ApiKeyRepository,
    projects: ProjectRepository,
    permission: Permission = Permission.API_KEYS_READ,
) -> bool:
    """Decide whether a user may access a key.

    Rules:
    - Personal key: only its owner
    - Project key: the project owner, or a member holding the permission
      (api-keys:read by default)

    Args:
        key_id: Key being accessed
        user_id: Requesting user
        keys: Key configuration store
        projects: Project and membership store
        permission: Project permission required for project keys

    Returns:
        True if authorized, False otherwise (including unknown keys)
    """
    key = keys.get_key(key_id)
    if key is None:
        return False

    if key.project_id is None:
        return key.user_id == user_id

    return check_project_permission(
        user_id, key.project_id, permission, projects
    )
