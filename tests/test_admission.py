"""
Unit tests for the completion admission gate.

Every request must produce exactly one audit entry; usage records are
written only for resolved models.
"""

import json
import os
import random
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import httpx

from quota_guard.audit.actions import AuditAction
from quota_guard.audit.cache import TTLCache
from quota_guard.audit.geo import UNKNOWN_LOCATION, GeoLocator
from quota_guard.audit.logger import ANONYMOUS, AuditLogger, RequestContext
from quota_guard.gateway.admission import AdmissionGate
from quota_guard.gateway.simulator import ProviderSimulator
from quota_guard.storage.audit import AuditRepository
from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.models import Project, UsageRecord
from quota_guard.storage.projects import ProjectRepository
from quota_guard.storage.repository import UsageRepository, initialize_schema

BODY = {"model": "gpt-4-turbo", "messages": [{"role": "user", "content": "Hello there!"}]}


class TestAdmissionGate:
    """Test each admission branch end to end against a temporary database."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.keys = ApiKeyRepository(self.db_path)
        self.projects = ProjectRepository(self.db_path)
        self.ledger = UsageRepository(self.db_path)
        self.audit_repo = AuditRepository(self.db_path)
        self.audit = AuditLogger(self.audit_repo)
        self.context = RequestContext(ip_address="10.0.0.1", user_agent="pytest", method="POST")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _gate(self, failure_rate: float = 0.0, **overrides) -> AdmissionGate:
        collaborators = dict(
            keys=self.keys,
            projects=self.projects,
            ledger=self.ledger,
            audit=self.audit,
            simulator=ProviderSimulator(failure_rate, 0.0, random.Random(7)),
            markup_percent=Decimal("20"),
        )
        collaborators.update(overrides)
        return AdmissionGate(**collaborators)

    def _handle(self, raw_key, body=None, gate=None):
        header = f"Bearer {raw_key}" if raw_key is not None else None
        return (gate or self._gate()).handle(header, BODY if body is None else body, self.context)

    def _audit_actions(self):
        return [entry.action for entry in self.audit_repo.fetch()]

    def _spend(self, key, amount: str):
        self.ledger.append(UsageRecord(
            timestamp=datetime.now(),
            key_id=key.id,
            project_id=key.project_id,
            billing_user_id=key.user_id,
            provider="openai",
            model="gpt-4-turbo",
            tokens_input=1,
            tokens_output=1,
            provider_cost=Decimal(amount),
            markup_amount=Decimal("0"),
            billed_cost=Decimal(amount),
        ))

    def test_missing_bearer_token(self):
        response = self._gate().handle(None, BODY, self.context)

        assert response.status_code == 401
        assert response.payload["error"]["type"] == "authentication_error"
        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.API_REQUEST_UNAUTHORIZED]
        assert entries[0].user_id == ANONYMOUS

    def test_malformed_authorization_header(self):
        response = self._gate().handle("Basic abc", BODY, self.context)
        assert response.status_code == 401

    def test_unknown_key(self):
        response = self._handle("uni_does_not_exist")

        assert response.status_code == 403
        assert response.payload["error"]["type"] == "authentication_error"
        assert self._audit_actions() == [AuditAction.API_REQUEST_INVALID_KEY]

    def test_inactive_key(self):
        key, raw_key = self.keys.create_key("user-a", "k")
        self.keys.set_active(key.id, False)

        response = self._handle(raw_key)

        assert response.status_code == 403
        assert "inactive" in response.payload["error"]["message"]
        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.API_REQUEST_INVALID_KEY]
        assert entries[0].user_id == "user-a"

    def test_revoked_key(self):
        key, raw_key = self.keys.create_key("user-a", "k")
        self.keys.revoke(key.id)

        response = self._handle(raw_key)

        assert response.status_code == 403
        assert "revoked" in response.payload["error"]["message"]

    def test_expired_key_is_forbidden(self):
        _, raw_key = self.keys.create_key("user-a", "k", expires=datetime.now() - timedelta(days=1))

        response = self._handle(raw_key)

        assert response.status_code == 403
        assert response.payload["error"]["message"] == "API Key has expired"
        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.COMPLETION_RATE_LIMITED]
        assert entries[0].details["reason"] == "rate_limit"

    def test_monthly_limit_exceeded(self):
        key, raw_key = self.keys.create_key("user-a", "k", monthly_usage_limit=Decimal("5.00"))
        for _ in range(3):
            self._spend(key, "2")

        response = self._handle(raw_key)

        assert response.status_code == 429
        error = response.payload["error"]
        assert error["type"] == "authentication_error"
        assert "usage limit exceeded" in error["message"]
        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.COMPLETION_QUOTA_EXCEEDED]
        assert entries[0].details["reason"] == "quota_exceeded"
        assert len(self.ledger.fetch_recent()) == 3

    def test_invalid_json(self):
        _, raw_key = self.keys.create_key("user-a", "k")

        response = self._handle(raw_key, body=b"{not json")

        assert response.status_code == 400
        assert response.payload["error"]["type"] == "invalid_request_error"
        assert self._audit_actions() == [AuditAction.COMPLETION_FAILED]
        assert self.ledger.fetch_recent() == []

    def test_invalid_payload_shape(self):
        _, raw_key = self.keys.create_key("user-a", "k")

        response = self._handle(raw_key, body={"model": "gpt-4-turbo", "messages": []})

        assert response.status_code == 400
        assert response.payload["error"]["details"]["errors"]
        entries = self.audit_repo.fetch()
        assert entries[0].details["model"] == "gpt-4-turbo"
        assert entries[0].details["reason"] == "invalid_request"

    def test_invalid_role(self):
        _, raw_key = self.keys.create_key("user-a", "k")
        body = {"model": "gpt-4-turbo", "messages": [{"role": "robot", "content": "hi"}]}

        assert self._handle(raw_key, body=body).status_code == 400

    def test_unknown_model(self):
        _, raw_key = self.keys.create_key("user-a", "k")

        response = self._handle(raw_key, body={**BODY, "model": "gpt-9"})

        assert response.status_code == 404
        assert self._audit_actions() == [AuditAction.COMPLETION_FAILED]
        assert self.ledger.fetch_recent() == []

    def test_key_without_billable_user(self):
        self.projects.create_project(Project(id="p", name="P", owner_id="owner"))
        _, raw_key = self.keys.create_key("owner", "k", project_id="p")
        projects = Mock()
        projects.get_project.return_value = None

        response = self._handle(raw_key, gate=self._gate(projects=projects))

        assert response.status_code == 500
        assert response.payload["error"]["type"] == "api_error"
        assert self._audit_actions() == [AuditAction.COMPLETION_FAILED]
        assert self.ledger.fetch_recent() == []

    def test_provider_failure_records_zero_cost_usage(self):
        key, raw_key = self.keys.create_key("user-a", "k")

        response = self._handle(raw_key, gate=self._gate(failure_rate=1.0))

        assert response.status_code == 500
        assert response.payload["error"]["type"] == "server_error"
        assert response.payload["error"]["code"] == "openai_error"
        records = self.ledger.fetch_recent()
        assert len(records) == 1
        assert records[0].success is False
        assert records[0].billed_cost == Decimal("0")
        assert records[0].tokens_input == 0
        assert records[0].metadata["error"] == "server_error"
        assert records[0].key_id == key.id
        assert self._audit_actions() == [AuditAction.COMPLETION_FAILED]

    def test_provider_failure_status_per_provider(self):
        _, raw_key = self.keys.create_key("user-a", "k")
        gate = self._gate(failure_rate=1.0)

        anthropic = self._handle(raw_key, body={**BODY, "model": "claude-3.5-haiku"}, gate=gate)
        google = self._handle(raw_key, body={**BODY, "model": "gemini-2.0-flash"}, gate=gate)

        assert anthropic.status_code == 529
        assert anthropic.payload["error"]["type"] == "overloaded_error"
        assert google.status_code == 503
        assert google.payload["error"]["type"] == "unavailable_error"

    def test_successful_completion_is_billed(self):
        key, raw_key = self.keys.create_key("user-a", "k")

        response = self._handle(raw_key)

        assert response.status_code == 200
        payload = response.payload
        assert payload["object"] == "chat.completion"
        assert payload["model"] == "gpt-4-turbo"
        assert payload["choices"][0]["message"]["role"] == "assistant"
        assert "Hello there!" in payload["choices"][0]["message"]["content"]
        assert payload["usage"] == {"prompt_tokens": 3, "completion_tokens": 6, "total_tokens": 9}

        records = self.ledger.fetch_recent()
        assert len(records) == 1
        record = records[0]
        assert record.success is True
        assert record.billing_user_id == "user-a"
        assert record.provider_cost == Decimal("0.00021")
        assert record.markup_amount == Decimal("0.000042")
        assert record.billed_cost == Decimal("0.000252")
        assert record.metadata["keyType"] == "user"
        assert record.metadata["markupPercentApplied"] == "20"

        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.COMPLETION_SUCCESS]
        assert entries[0].details["cost"] == 0.000252
        assert self.keys.get_key(key.id).last_used is not None

    def test_raw_json_body(self):
        _, raw_key = self.keys.create_key("user-a", "k")

        response = self._handle(raw_key, body=json.dumps(BODY).encode("utf-8"))

        assert response.status_code == 200

    def test_project_key_bills_project_owner(self):
        self.projects.create_project(Project(id="p", name="P", owner_id="owner"))
        _, raw_key = self.keys.create_key("member", "k", project_id="p")

        response = self._handle(raw_key)

        assert response.status_code == 200
        record = self.ledger.fetch_recent()[0]
        assert record.billing_user_id == "owner"
        assert record.project_id == "p"
        assert record.metadata["keyType"] == "project"
        assert self.audit_repo.fetch()[0].user_id == "owner"

    def test_limit_reached_after_successful_calls(self):
        key, raw_key = self.keys.create_key("user-a", "k", total_usage_limit=Decimal("0.0005"))
        gate = self._gate()

        statuses = [self._handle(raw_key, gate=gate).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]

    def test_ledger_failure_is_internal_error(self):
        key, raw_key = self.keys.create_key("user-a", "k")
        ledger = Mock()
        ledger.sum_billed_cost.return_value = Decimal("0")
        ledger.append.side_effect = sqlite3.OperationalError("database is locked")

        response = self._handle(raw_key, gate=self._gate(ledger=ledger))

        assert response.status_code == 500
        assert response.payload == {"error": {"message": "Internal Server Error", "type": "api_error"}}
        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.COMPLETION_FAILED]
        assert entries[0].details["reason"] == "server_error"

    def test_malformed_geolocation_payload_still_audits_success(self):
        _, raw_key = self.keys.create_key("user-a", "k")
        client = Mock()
        client.get.return_value = httpx.Response(
            200, json=["x"], request=httpx.Request("GET", "https://ipinfo.io")
        )
        audit = AuditLogger(self.audit_repo, GeoLocator(TTLCache(60), client=client))
        gate = self._gate(audit=audit)
        public = RequestContext(ip_address="8.8.8.8", user_agent="pytest", method="POST")

        response = gate.handle(f"Bearer {raw_key}", BODY, public)

        assert response.status_code == 200
        assert len(self.ledger.fetch_recent()) == 1
        entries = self.audit_repo.fetch()
        assert [e.action for e in entries] == [AuditAction.COMPLETION_SUCCESS]
        assert entries[0].geo_location == UNKNOWN_LOCATION

    def test_audit_failure_during_error_handling_is_internal_error(self):
        _, raw_key = self.keys.create_key("user-a", "k")
        audit = Mock()
        audit.log_completion_success.side_effect = RuntimeError("audit down")
        audit.log_completion_failure.side_effect = RuntimeError("audit down")

        response = self._handle(raw_key, gate=self._gate(audit=audit))

        assert response.status_code == 500
        assert response.payload["error"]["type"] == "api_error"
        audit.log_completion_failure.assert_called_once()
