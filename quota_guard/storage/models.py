"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from quota_guard.audit.actions import AuditAction, AuditResource
from quota_guard.core.permissions import Permission, ProjectRole


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one completion attempt for billing.

    Append-only events that create an auditable ledger of billed spend.
    Once written, these records must never be modified. Failed and cached
    calls are recorded too and count towards spend.
    """
    timestamp: datetime
    key_id: str
    billing_user_id: str
    provider: str
    model: str
    tokens_input: int
    tokens_output: int
    provider_cost: Decimal
    markup_amount: Decimal
    billed_cost: Decimal
    success: bool = True
    project_id: Optional[str] = None
    cached: bool = False
    cache_hit: bool = False
    request_id: Optional[str] = None
    endpoint: str = "/v1/chat/completions"
    latency_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output


@dataclass(frozen=True)
class ApiKey:
    """Stored API key configuration. Only the hash of the raw key is kept."""
    id: str
    user_id: str
    name: str
    hashed_key: str
    key_prefix: str
    project_id: Optional[str] = None
    active: bool = True
    revoked_at: Optional[datetime] = None
    expires: Optional[datetime] = None
    daily_usage_limit: Optional[Decimal] = None
    monthly_usage_limit: Optional[Decimal] = None
    total_usage_limit: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None


@dataclass(frozen=True)
class User:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Project:
    """A project groups keys and members under one monthly spending limit."""
    id: str
    name: str
    owner_id: str
    spending_limit: Optional[Decimal] = None


@dataclass(frozen=True)
class ProjectMember:
    """Membership of a user in a project.

    ``permissions`` holds explicit per-member overrides that take precedence
    over the defaults of ``role``.
    """
    project_id: str
    user_id: str
    role: ProjectRole
    permissions: Dict[Permission, bool] = field(default_factory=dict)
    id: Optional[int] = None


@dataclass(frozen=True)
class Alert:
    """Budget alert record. Existence within a month suppresses re-firing."""
    user_id: str
    type: str
    threshold: Decimal
    message: str
    project_id: Optional[str] = None
    triggered: bool = False
    created_at: Optional[datetime] = None
    id: Optional[int] = None


class CostAlertType(Enum):
    """Spend window a cost alert watches."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    THRESHOLD = "threshold"


@dataclass(frozen=True)
class CostAlert:
    """User-defined spend alert delivered by email and/or webhook."""
    id: str
    user_id: str
    name: str
    type: CostAlertType
    threshold: Decimal
    active: bool = True
    email_alert: bool = False
    webhook_url: Optional[str] = None
    current_spend: Decimal = Decimal("0")
    last_triggered: Optional[datetime] = None


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit trail entry."""
    user_id: str
    action: AuditAction
    resource: AuditResource
    timestamp: datetime
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geo_location: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None
    request_type: Optional[str] = None
