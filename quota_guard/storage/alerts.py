"""
Budget and cost alert storage.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import Alert, CostAlert, CostAlertType

BUDGET_ALERT = "budget"


def _row_to_alert(row) -> Alert:
    return Alert(
        id=row[0],
        user_id=row[1],
        project_id=row[2],
        type=row[3],
        threshold=Decimal(row[4]),
        message=row[5],
        triggered=bool(row[6]),
        created_at=datetime.fromisoformat(row[7]),
    )


def _row_to_cost_alert(row) -> CostAlert:
    return CostAlert(
        id=row[0],
        user_id=row[1],
        name=row[2],
        type=CostAlertType(row[3]),
        threshold=Decimal(row[4]),
        active=bool(row[5]),
        email_alert=bool(row[6]),
        webhook_url=row[7],
        current_spend=Decimal(row[8]),
        last_triggered=datetime.fromisoformat(row[9]) if row[9] else None,
    )


_ALERT_COLUMNS = "id, user_id, project_id, type, threshold, message, triggered, created_at"
_COST_ALERT_COLUMNS = """
    id, user_id, name, type, threshold, active, email_alert, webhook_url,
    current_spend, last_triggered
"""


class AlertRepository:
    """Repository for budget alerts and user-defined cost alerts."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_alert(self, alert: Alert) -> Alert:
        created_at = alert.created_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO alert (user_id, project_id, type, threshold, message, triggered, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                alert.user_id,
                alert.project_id,
                alert.type,
                str(alert.threshold),
                alert.message,
                int(alert.triggered),
                created_at.isoformat(),
            ))
            conn.commit()
            alert_id = cursor.lastrowid
        finally:
            conn.close()
        return Alert(
            id=alert_id,
            user_id=alert.user_id,
            project_id=alert.project_id,
            type=alert.type,
            threshold=alert.threshold,
            message=alert.message,
            triggered=alert.triggered,
            created_at=created_at,
        )

    def find_alert(
        self,
        alert_type: str,
        project_id: str,
        since: datetime,
    ) -> Optional[Alert]:
        """First alert of a type for a project created at or after ``since``."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(f"""
                SELECT {_ALERT_COLUMNS} FROM alert
                WHERE type = ? AND project_id = ? AND created_at >= ?
                ORDER BY created_at LIMIT 1
            """, (alert_type, project_id, since.isoformat())).fetchone()
            return _row_to_alert(row) if row else None
        finally:
            conn.close()

    def list_alerts(
        self,
        project_id: Optional[str] = None,
        triggered: Optional[bool] = None,
    ) -> List[Alert]:
        conditions = []
        params: list = []
        if project_id is not None:
            conditions.append("project_id = ?")
            params.append(project_id)
        if triggered is not None:
            conditions.append("triggered = ?")
            params.append(int(triggered))
        query = f"SELECT {_ALERT_COLUMNS} FROM alert"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at, id"

        conn = get_connection(self.db_path)
        try:
            return [_row_to_alert(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def mark_triggered(self, alert_id: int) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("UPDATE alert SET triggered = 1 WHERE id = ?", (alert_id,))
            conn.commit()
        finally:
            conn.close()

    def create_cost_alert(self, alert: CostAlert) -> CostAlert:
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO cost_alert ({_COST_ALERT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                alert.id,
                alert.user_id,
                alert.name,
                alert.type.value,
                str(alert.threshold),
                int(alert.active),
                int(alert.email_alert),
                alert.webhook_url,
                str(alert.current_spend),
                alert.last_triggered.isoformat() if alert.last_triggered else None,
            ))
            conn.commit()
        finally:
            conn.close()
        return alert

    def list_active_cost_alerts(self) -> List[CostAlert]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT {_COST_ALERT_COLUMNS} FROM cost_alert WHERE active = 1 ORDER BY id"
            ).fetchall()
            return [_row_to_cost_alert(row) for row in rows]
        finally:
            conn.close()

    def get_cost_alert(self, alert_id: str) -> Optional[CostAlert]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_COST_ALERT_COLUMNS} FROM cost_alert WHERE id = ?", (alert_id,)
            ).fetchone()
            return _row_to_cost_alert(row) if row else None
        finally:
            conn.close()

    def update_cost_alert_spend(
        self,
        alert_id: str,
        current_spend: Decimal,
        last_triggered: Optional[datetime] = None,
    ) -> None:
        """Store the latest spend; stamp ``last_triggered`` when given."""
        conn = get_connection(self.db_path)
        try:
            if last_triggered is None:
                conn.execute(
                    "UPDATE cost_alert SET current_spend = ? WHERE id = ?",
                    (str(current_spend), alert_id)
                )
            else:
                conn.execute(
                    "UPDATE cost_alert SET current_spend = ?, last_triggered = ? WHERE id = ?",
                    (str(current_spend), last_triggered.isoformat(), alert_id)
                )
            conn.commit()
        finally:
            conn.close()
