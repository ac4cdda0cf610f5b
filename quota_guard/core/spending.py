"""
Project spending-limit classification and budget alerts.

Bands (evaluated top-down, inclusive lower bounds):
- >= 100% exceeded
- >= 90%  critical
- >= 80%  warning
- otherwise normal

A budget alert fires once per calendar month per project, the first time a
check sees the project at or above the alert threshold.
"""

import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import structlog

from quota_guard.audit.actions import AuditAction, AuditResource
from quota_guard.audit.logger import AuditLogger, RequestContext
from quota_guard.storage.alerts import BUDGET_ALERT, AlertRepository
from quota_guard.storage.models import Alert, Project
from quota_guard.storage.projects import ProjectRepository
from quota_guard.storage.repository import UsageRepository

from .quota import remaining_budget, start_of_month

logger = structlog.get_logger(__name__)

ALERT_THRESHOLD_PERCENT = Decimal("80")
CRITICAL_PERCENT = Decimal("90")
EXCEEDED_PERCENT = Decimal("100")


class SpendingStatus(Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


def classify_spending(percent_used: Union[Decimal, float, int]) -> SpendingStatus:
    """Map a percentage of budget used to its band."""
    percent = Decimal(str(percent_used))
    if percent >= EXCEEDED_PERCENT:
        return SpendingStatus.EXCEEDED
    if percent >= CRITICAL_PERCENT:
        return SpendingStatus.CRITICAL
    if percent >= ALERT_THRESHOLD_PERCENT:
        return SpendingStatus.WARNING
    return SpendingStatus.NORMAL


@dataclass(frozen=True)
class ProjectSpendStatus:
    """Derived monthly spend state of a project."""
    project_id: str
    project_name: str
    current_spend: Decimal
    spending_limit: Optional[Decimal]
    percent_used: Optional[Decimal]
    status: SpendingStatus
    remaining_budget: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "projectName": self.project_name,
            "spendingLimit": float(self.spending_limit) if self.spending_limit is not None else None,
            "currentSpend": float(self.current_spend),
            "percentUsed": float(self.percent_used) if self.percent_used is not None else None,
            "status": self.status.value,
            "remainingBudget": float(self.remaining_budget) if self.remaining_budget is not None else None,
        }


def percent_of_limit(spend: Decimal, limit: Decimal) -> Decimal:
    # A zero limit is fully consumed from the start
    if limit == 0:
        return EXCEEDED_PERCENT
    return spend / limit * Decimal("100")


def evaluate_project_spend(
    project: Project,
    ledger: UsageRepository,
    now: Optional[datetime] = None,
) -> ProjectSpendStatus:
    """Compute a project's spend for the current calendar month.

    Projects without a limit report no percentage and the normal band.
    """
    now = now or datetime.now()
    spend = ledger.sum_billed_cost(project_id=project.id, since=start_of_month(now))

    if project.spending_limit is None:
        percent = None
        status = SpendingStatus.NORMAL
    else:
        percent = percent_of_limit(spend, project.spending_limit)
        status = classify_spending(percent)

    return ProjectSpendStatus(
        project_id=project.id,
        project_name=project.name,
        current_spend=spend,
        spending_limit=project.spending_limit,
        percent_used=percent,
        status=status,
        remaining_budget=remaining_budget(project.spending_limit, spend),
    )


@dataclass
class LimitCheckResult:
    """Outcome of checking every limited project a user belongs to."""
    projects: List[ProjectSpendStatus] = field(default_factory=list)
    alerts_created: List[Alert] = field(default_factory=list)

    @property
    def projects_near_limit(self) -> int:
        return sum(
            1 for p in self.projects
            if p.percent_used is not None and p.percent_used >= ALERT_THRESHOLD_PERCENT
        )

    @property
    def projects_over_limit(self) -> int:
        return sum(
            1 for p in self.projects
            if p.percent_used is not None and p.percent_used >= EXCEEDED_PERCENT
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projects": [p.to_dict() for p in self.projects],
            "summary": {
                "totalProjects": len(self.projects),
                "projectsNearLimit": self.projects_near_limit,
                "projectsOverLimit": self.projects_over_limit,
                "alertsCreated": len(self.alerts_created),
            },
        }


def maybe_create_budget_alert(
    user_id: str,
    spend: ProjectSpendStatus,
    alerts: AlertRepository,
    now: Optional[datetime] = None,
) -> Optional[Alert]:
    """Create the month's budget alert for a project if it is due.

    Fires when usage is at or above the threshold and no budget alert for the
    same project exists since the first of the month.
    """
    now = now or datetime.now()
    if spend.percent_used is None or spend.percent_used < ALERT_THRESHOLD_PERCENT:
        return None

    existing = alerts.find_alert(BUDGET_ALERT, spend.project_id, since=start_of_month(now))
    if existing is not None:
        return None

    alert = alerts.create_alert(Alert(
        user_id=user_id,
        project_id=spend.project_id,
        type=BUDGET_ALERT,
        threshold=ALERT_THRESHOLD_PERCENT,
        message=(
            f'Project "{spend.project_name}" ({spend.project_id}) has used '
            f"{spend.percent_used:.1f}% of its monthly budget"
        ),
        triggered=True,
        created_at=now,
    ))
    logger.info(
        "budget_alert_created",
        project_id=spend.project_id,
        percent_used=float(spend.percent_used),
    )
    return alert


def check_project_limits(
    user_id: str,
    projects: ProjectRepository,
    ledger: UsageRepository,
    alerts: AlertRepository,
    audit: AuditLogger,
    now: Optional[datetime] = None,
    context: Optional[RequestContext] = None,
) -> LimitCheckResult:
    """Classify every limited project of a user and fire due budget alerts.

    Raises:
        sqlite3.Error: If storage fails; the failure is audited first
    """
    started = time.monotonic()
    now = now or datetime.now()
    try:
        result = LimitCheckResult()
        for project in projects.list_projects_with_limits(user_id):
            spend = evaluate_project_spend(project, ledger, now)
            result.projects.append(spend)
            alert = maybe_create_budget_alert(user_id, spend, alerts, now)
            if alert is not None:
                result.alerts_created.append(alert)
                audit.log(
                    user_id,
                    AuditAction.BUDGET_ALERT_CREATED,
                    AuditResource.PROJECT,
                    resource_id=project.id,
                    details={"percentUsed": float(spend.percent_used)},
                    context=context,
                )
    except sqlite3.Error as e:
        logger.error("project_limits_check_failed", user_id=user_id, error=str(e))
        audit.log_user_action(
            user_id,
            AuditAction.PROJECT_LIMITS_CHECK_FAILED,
            {"error": "storage error", "duration": _elapsed_ms(started)},
            context,
        )
        raise

    audit.log_user_action(
        user_id,
        AuditAction.PROJECT_LIMITS_CHECKED,
        {
            "projectsWithLimits": len(result.projects),
            "projectsNearLimit": result.projects_near_limit,
            "projectsOverLimit": result.projects_over_limit,
            "alertsCreated": len(result.alerts_created),
            "duration": _elapsed_ms(started),
        },
        context,
    )
    return result


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
