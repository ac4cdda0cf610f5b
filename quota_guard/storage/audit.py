"""
Audit log storage.

Append-only like the usage ledger.
"""

import json
from datetime import datetime
from typing import List, Optional

from quota_guard.audit.actions import AuditAction, AuditResource

from .db import DEFAULT_DB_PATH, get_connection
from .models import AuditLogEntry


class AuditRepository:
    """Repository for audit trail entries."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert(self, entry: AuditLogEntry) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO audit_log
                (user_id, action, resource, resource_id, details, ip_address,
                 user_agent, geo_location, request_id, request_type, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.user_id,
                entry.action.value,
                entry.resource.value,
                entry.resource_id,
                json.dumps(entry.details, default=str),
                entry.ip_address,
                entry.user_agent,
                json.dumps(entry.geo_location) if entry.geo_location is not None else None,
                entry.request_id,
                entry.request_type,
                entry.timestamp.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()

    def fetch(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Fetch entries in insertion order, optionally filtered."""
        query = """
            SELECT user_id, action, resource, resource_id, details, ip_address,
                   user_agent, geo_location, request_id, request_type, timestamp
            FROM audit_log
        """
        conditions = []
        params: list = []
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if action is not None:
            conditions.append("action = ?")
            params.append(action.value)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [
            AuditLogEntry(
                user_id=row[0],
                action=AuditAction(row[1]),
                resource=AuditResource(row[2]),
                resource_id=row[3],
                details=json.loads(row[4]),
                ip_address=row[5],
                user_agent=row[6],
                geo_location=json.loads(row[7]) if row[7] else None,
                request_id=row[8],
                request_type=row[9],
                timestamp=datetime.fromisoformat(row[10]),
            )
            for row in rows
        ]
