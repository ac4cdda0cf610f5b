"""
Unit tests for project spending classification and budget alerts.
"""

import os
import shutil
import sqlite3
import tempfile
from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from quota_guard.audit.actions import AuditAction
from quota_guard.audit.logger import AuditLogger
from quota_guard.core.spending import (
    SpendingStatus,
    check_project_limits,
    classify_spending,
    evaluate_project_spend,
    percent_of_limit,
)
from quota_guard.storage.alerts import BUDGET_ALERT, AlertRepository
from quota_guard.storage.audit import AuditRepository
from quota_guard.storage.models import Project, UsageRecord
from quota_guard.storage.projects import ProjectRepository
from quota_guard.storage.repository import UsageRepository, initialize_schema

NOW = datetime(2024, 6, 15, 12, 0, 0)


class TestClassifySpending:
    """Test band boundaries."""

    @pytest.mark.parametrize("percent,expected", [
        (0, SpendingStatus.NORMAL),
        (79.9, SpendingStatus.NORMAL),
        (80, SpendingStatus.WARNING),
        (89.99, SpendingStatus.WARNING),
        (90, SpendingStatus.CRITICAL),
        (100, SpendingStatus.EXCEEDED),
        (150, SpendingStatus.EXCEEDED),
    ])
    def test_bands(self, percent, expected):
        assert classify_spending(percent) == expected

    def test_decimal_input(self):
        assert classify_spending(Decimal("99.999999")) == SpendingStatus.CRITICAL

    def test_zero_limit_is_fully_used(self):
        assert percent_of_limit(Decimal("0"), Decimal("0")) == Decimal("100")


class TestProjectLimits:
    """Test project spend evaluation and once-per-month budget alerts."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.projects = ProjectRepository(self.db_path)
        self.ledger = UsageRepository(self.db_path)
        self.alerts = AlertRepository(self.db_path)
        self.audit_repo = AuditRepository(self.db_path)
        self.audit = AuditLogger(self.audit_repo)

        self.project = self.projects.create_project(Project(
            id="proj-1", name="Alpha", owner_id="owner", spending_limit=Decimal("100"),
        ))

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _spend(self, amount: str, timestamp: datetime = NOW):
        self.ledger.append(UsageRecord(
            timestamp=timestamp,
            key_id="key-1",
            project_id=self.project.id,
            billing_user_id="owner",
            provider="openai",
            model="gpt-4-turbo",
            tokens_input=1,
            tokens_output=1,
            provider_cost=Decimal(amount),
            markup_amount=Decimal("0"),
            billed_cost=Decimal(amount),
        ))

    def _check(self, user_id: str = "owner", now: datetime = NOW):
        return check_project_limits(
            user_id, self.projects, self.ledger, self.alerts, self.audit, now=now
        )

    def test_evaluate_project_spend(self):
        self._spend("85")
        self._spend("40", NOW.replace(month=5))

        spend = evaluate_project_spend(self.project, self.ledger, NOW)

        assert spend.current_spend == Decimal("85")
        assert spend.percent_used == Decimal("85")
        assert spend.status == SpendingStatus.WARNING
        assert spend.remaining_budget == Decimal("15")

    def test_over_limit_remaining_clamps_at_zero(self):
        self._spend("120")

        spend = evaluate_project_spend(self.project, self.ledger, NOW)

        assert spend.status == SpendingStatus.EXCEEDED
        assert spend.remaining_budget == Decimal("0")

    def test_budget_alert_fires_once_per_month(self):
        self._spend("85")
        first = self._check()

        assert len(first.alerts_created) == 1
        assert first.projects_near_limit == 1

        self._spend("10")
        second = self._check()

        assert second.projects[0].current_spend == Decimal("95")
        assert second.alerts_created == []
        assert len(self.alerts.list_alerts(project_id=self.project.id)) == 1

    def test_alert_fires_again_next_month(self):
        self._spend("85")
        self._check()

        self._spend("90", NOW.replace(month=7, day=2))
        later = self._check(now=NOW.replace(month=7, day=3))

        assert len(later.alerts_created) == 1
        assert len(self.alerts.list_alerts(project_id=self.project.id)) == 2

    def test_first_check_over_limit_creates_alert(self):
        self._spend("130")

        result = self._check()

        assert result.projects_over_limit == 1
        assert len(result.alerts_created) == 1
        alert = result.alerts_created[0]
        assert alert.type == BUDGET_ALERT
        assert alert.threshold == Decimal("80")
        assert alert.triggered is True

    def test_below_threshold_creates_no_alert(self):
        self._spend("79.99")

        result = self._check()

        assert result.alerts_created == []
        assert result.projects[0].status == SpendingStatus.NORMAL

    def test_member_sees_limited_projects(self):
        self.projects.create_project(Project(id="proj-2", name="Unlimited", owner_id="owner"))

        result = self._check()

        assert [p.project_id for p in result.projects] == ["proj-1"]
        assert self._check(user_id="stranger").projects == []

    def test_check_is_audited(self):
        self._spend("85")
        self._check()

        checked = self.audit_repo.fetch(action=AuditAction.PROJECT_LIMITS_CHECKED)
        created = self.audit_repo.fetch(action=AuditAction.BUDGET_ALERT_CREATED)
        assert len(checked) == 1
        assert checked[0].details["alertsCreated"] == 1
        assert len(created) == 1
        assert created[0].resource_id == "proj-1"

    def test_storage_failure_is_audited_and_raised(self):
        projects = Mock()
        projects.list_projects_with_limits.side_effect = sqlite3.OperationalError("disk I/O error")

        with pytest.raises(sqlite3.OperationalError):
            check_project_limits("owner", projects, self.ledger, self.alerts, self.audit, now=NOW)

        failed = self.audit_repo.fetch(action=AuditAction.PROJECT_LIMITS_CHECK_FAILED)
        assert len(failed) == 1

    def test_to_dict_summary(self):
        self._spend("95")

        payload = self._check().to_dict()

        assert payload["summary"] == {
            "totalProjects": 1,
            "projectsNearLimit": 1,
            "projectsOverLimit": 0,
            "alertsCreated": 1,
        }
        assert payload["projects"][0]["status"] == "critical"
