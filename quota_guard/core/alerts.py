"""
Cost alert evaluation.

Periodic job that refreshes spend on user-defined cost alerts and notifies
when a threshold is reached. Notifications are best-effort and never stop
the remaining alerts from being evaluated.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import structlog

from quota_guard.audit.actions import AuditAction, AuditResource
from quota_guard.audit.logger import AuditLogger
from quota_guard.notify.email import EmailSender
from quota_guard.notify.webhook import WebhookSender
from quota_guard.storage.alerts import BUDGET_ALERT, AlertRepository
from quota_guard.storage.models import CostAlert, CostAlertType
from quota_guard.storage.projects import UserRepository
from quota_guard.storage.repository import UsageRepository

from .quota import start_of_day, start_of_month

logger = structlog.get_logger(__name__)

RETRIGGER_INTERVAL = timedelta(hours=24)


@dataclass
class AlertCheckResult:
    alerts_checked: int = 0
    cost_alerts_checked: int = 0
    triggered: List[str] = field(default_factory=list)


def window_start(alert_type: CostAlertType, now: datetime) -> datetime:
    """Start of the spend window a cost alert watches."""
    if alert_type == CostAlertType.DAILY:
        return start_of_day(now)
    if alert_type == CostAlertType.WEEKLY:
        return now - timedelta(days=7)
    return start_of_month(now)


def should_notify(alert: CostAlert, spend: Decimal, now: datetime) -> bool:
    """Threshold reached and not notified within the last 24 hours."""
    if spend < alert.threshold:
        return False
    return alert.last_triggered is None or now - alert.last_triggered > RETRIGGER_INTERVAL


class AlertChecker:
    """Evaluates budget and cost alerts against the usage ledger."""

    def __init__(
        self,
        ledger: UsageRepository,
        alerts: AlertRepository,
        users: UserRepository,
        audit: AuditLogger,
        webhook: WebhookSender,
        email: Optional[EmailSender] = None,
    ):
        self.ledger = ledger
        self.alerts = alerts
        self.users = users
        self.audit = audit
        self.webhook = webhook
        self.email = email

    def run(self, now: Optional[datetime] = None) -> AlertCheckResult:
        now = now or datetime.now()
        result = AlertCheckResult()

        pending = [a for a in self.alerts.list_alerts(triggered=False) if a.type == BUDGET_ALERT]
        result.alerts_checked = len(pending)
        for alert in pending:
            spend = self.ledger.sum_billed_cost(user_id=alert.user_id, since=start_of_month(now))
            if spend >= alert.threshold:
                self.alerts.mark_triggered(alert.id)

        cost_alerts = self.alerts.list_active_cost_alerts()
        result.cost_alerts_checked = len(cost_alerts)
        for alert in cost_alerts:
            if self._check_cost_alert(alert, now):
                result.triggered.append(alert.id)

        logger.info(
            "alerts_checked",
            alerts_checked=result.alerts_checked,
            cost_alerts_checked=result.cost_alerts_checked,
            triggered=len(result.triggered),
        )
        return result

    def _check_cost_alert(self, alert: CostAlert, now: datetime) -> bool:
        spend = self.ledger.sum_billed_cost(
            user_id=alert.user_id, since=window_start(alert.type, now)
        )
        if not should_notify(alert, spend, now):
            self.alerts.update_cost_alert_spend(alert.id, spend)
            return False

        if alert.email_alert and self.email is not None:
            user = self.users.get(alert.user_id)
            if user is not None and user.email:
                self.email.send_high_usage_alert(user.email, spend, alert.threshold, user.name)

        if alert.webhook_url:
            self.webhook.send(alert.webhook_url, {
                "alertId": alert.id,
                "alertName": alert.name,
                "type": alert.type.value,
                "threshold": float(alert.threshold),
                "currentSpend": float(spend),
                "userId": alert.user_id,
                "timestamp": now.isoformat(),
            })

        self.alerts.update_cost_alert_spend(alert.id, spend, last_triggered=now)
        self.audit.log(
            alert.user_id,
            AuditAction.COST_ALERT_TRIGGERED,
            AuditResource.COST_ALERT,
            resource_id=alert.id,
            details={
                "alertName": alert.name,
                "threshold": float(alert.threshold),
                "currentSpend": float(spend),
                "type": alert.type.value,
            },
        )
        return True
