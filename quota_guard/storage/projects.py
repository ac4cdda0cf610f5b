"""
Project, membership and user storage.
"""

import json
from decimal import Decimal
from typing import Dict, List, Optional

from quota_guard.core.permissions import Permission, ProjectRole, parse_overrides

from .db import DEFAULT_DB_PATH, get_connection
from .models import Project, ProjectMember, User


def _row_to_project(row) -> Project:
    return Project(
        id=row[0],
        name=row[1],
        owner_id=row[2],
        spending_limit=Decimal(row[3]) if row[3] is not None else None,
    )


class ProjectRepository:
    """Repository for projects and their members."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_project(self, project: Project) -> Project:
        """Insert a project and register its owner as an OWNER member."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO project (id, name, owner_id, spending_limit) VALUES (?, ?, ?, ?)",
                (
                    project.id,
                    project.name,
                    project.owner_id,
                    str(project.spending_limit) if project.spending_limit is not None else None,
                )
            )
            conn.execute(
                "INSERT INTO project_member (project_id, user_id, role, permissions) VALUES (?, ?, ?, ?)",
                (project.id, project.owner_id, ProjectRole.OWNER.value, "{}")
            )
            conn.commit()
        finally:
            conn.close()
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, name, owner_id, spending_limit FROM project WHERE id = ?",
                (project_id,)
            ).fetchone()
            return _row_to_project(row) if row else None
        finally:
            conn.close()

    def add_member(
        self,
        project_id: str,
        user_id: str,
        role: ProjectRole,
        permissions: Optional[Dict[Permission, bool]] = None,
    ) -> ProjectMember:
        """Add a member with optional permission overrides.

        Raises:
            ValueError: If role is OWNER (ownership is set at creation)
        """
        if role == ProjectRole.OWNER:
            raise ValueError("The OWNER role is assigned at project creation only")
        overrides = permissions or {}
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "INSERT INTO project_member (project_id, user_id, role, permissions) VALUES (?, ?, ?, ?)",
                (
                    project_id,
                    user_id,
                    role.value,
                    json.dumps({p.value: granted for p, granted in overrides.items()}),
                )
            )
            conn.commit()
            member_id = cursor.lastrowid
        finally:
            conn.close()
        return ProjectMember(
            project_id=project_id,
            user_id=user_id,
            role=role,
            permissions=dict(overrides),
            id=member_id,
        )

    def get_member(self, project_id: str, user_id: str) -> Optional[ProjectMember]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT id, project_id, user_id, role, permissions
                FROM project_member
                WHERE project_id = ? AND user_id = ?
            """, (project_id, user_id)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return ProjectMember(
            id=row[0],
            project_id=row[1],
            user_id=row[2],
            role=ProjectRole(row[3]),
            permissions=parse_overrides(json.loads(row[4])),
        )

    def list_projects_with_limits(self, user_id: str) -> List[Project]:
        """Projects the user belongs to that carry a spending limit."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT p.id, p.name, p.owner_id, p.spending_limit
                FROM project p
                JOIN project_member m ON m.project_id = p.id
                WHERE m.user_id = ? AND p.spending_limit IS NOT NULL
                ORDER BY p.name
            """, (user_id,)).fetchall()
            return [_row_to_project(row) for row in rows]
        finally:
            conn.close()


class UserRepository:
    """Minimal user directory used for notification addresses."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def upsert(self, user: User) -> User:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO users (id, email, name) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email = excluded.email, name = excluded.name
            """, (user.id, user.email, user.name))
            conn.commit()
        finally:
            conn.close()
        return user

    def get(self, user_id: str) -> Optional[User]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, email, name FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            return User(id=row[0], email=row[1], name=row[2]) if row else None
        finally:
            conn.close()
