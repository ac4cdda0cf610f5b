"""
Key usage quota evaluation.

Classifies an API key against its daily, monthly and total spend limits.

Evaluation Order:
1. Key lookup - unknown keys report not_found
2. Kill switch - inactive keys short-circuit before any aggregation
3. Expiry - expired keys short-circuit before any aggregation
4. Limits - billed spend per window compared inclusively to each set limit
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.models import ApiKey
from quota_guard.storage.repository import UsageRepository

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class KeyStatus(Enum):
    """Outcome of evaluating a key. All values are regular results."""
    OK = "ok"
    LIMIT_EXCEEDED = "limit_exceeded"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class UsageWindows:
    """Billed spend per window."""
    daily: Decimal = ZERO
    monthly: Decimal = ZERO
    total: Decimal = ZERO


@dataclass(frozen=True)
class UsageLimits:
    """Configured limits; None means unlimited."""
    daily: Optional[Decimal] = None
    monthly: Optional[Decimal] = None
    total: Optional[Decimal] = None

    @classmethod
    def from_key(cls, key: ApiKey) -> "UsageLimits":
        return cls(
            daily=key.daily_usage_limit,
            monthly=key.monthly_usage_limit,
            total=key.total_usage_limit,
        )


@dataclass(frozen=True)
class LimitFlags:
    daily: bool = False
    monthly: bool = False
    total: bool = False

    @property
    def any(self) -> bool:
        return self.daily or self.monthly or self.total


@dataclass(frozen=True)
class KeyUsageStatus:
    """Derived quota state of a key. Never persisted."""
    key_id: str
    usage: UsageWindows
    limits: UsageLimits
    limit_exceeded: LimitFlags
    status: KeyStatus

    def to_dict(self) -> Dict[str, Any]:
        def _money(value: Optional[Decimal]) -> Optional[float]:
            return float(value) if value is not None else None

        return {
            "keyId": self.key_id,
            "usage": {
                "daily": _money(self.usage.daily),
                "monthly": _money(self.usage.monthly),
                "total": _money(self.usage.total),
            },
            "limits": {
                "daily": _money(self.limits.daily),
                "monthly": _money(self.limits.monthly),
                "total": _money(self.limits.total),
            },
            "limitExceeded": {
                "daily": self.limit_exceeded.daily,
                "monthly": self.limit_exceeded.monthly,
                "total": self.limit_exceeded.total,
                "any": self.limit_exceeded.any,
            },
            "status": self.status.value,
        }


def start_of_day(now: datetime) -> datetime:
    """Local midnight of the evaluation day."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(now: datetime) -> datetime:
    """Local midnight on the first of the current calendar month."""
    return start_of_day(now).replace(day=1)


def _is_exceeded(usage: Decimal, limit: Optional[Decimal]) -> bool:
    # Reaching the limit exactly counts as exceeded
    return limit is not None and usage >= limit


def _terminal(key: ApiKey, status: KeyStatus) -> KeyUsageStatus:
    return KeyUsageStatus(
        key_id=key.id,
        usage=UsageWindows(),
        limits=UsageLimits.from_key(key),
        limit_exceeded=LimitFlags(),
        status=status,
    )


def get_key_usage_status(
    key_id: str,
    keys: ApiKeyRepository,
    ledger: UsageRepository,
    now: Optional[datetime] = None,
) -> KeyUsageStatus:
    """Evaluate a key's spend against its limits.

    Inactive and expired keys take precedence over limit checks and report
    zero usage without touching the ledger.

    Args:
        key_id: Key to evaluate
        keys: Key configuration store
        ledger: Usage ledger to aggregate
        now: Evaluation time, defaults to the current local time

    Returns:
        KeyUsageStatus; status is not_found for unknown keys

    Raises:
        sqlite3.Error: If the key store or ledger cannot be read
    """
    now = now or datetime.now()

    key = keys.get_key(key_id)
    if key is None:
        return KeyUsageStatus(
            key_id=key_id,
            usage=UsageWindows(),
            limits=UsageLimits(),
            limit_exceeded=LimitFlags(),
            status=KeyStatus.NOT_FOUND,
        )

    if not key.active:
        return _terminal(key, KeyStatus.INACTIVE)

    if key.expires is not None and key.expires < now:
        return _terminal(key, KeyStatus.EXPIRED)

    usage = UsageWindows(
        daily=ledger.sum_billed_cost(key_id=key.id, since=start_of_day(now)),
        monthly=ledger.sum_billed_cost(key_id=key.id, since=start_of_month(now)),
        total=ledger.sum_billed_cost(key_id=key.id),
    )
    limits = UsageLimits.from_key(key)
    flags = LimitFlags(
        daily=_is_exceeded(usage.daily, limits.daily),
        monthly=_is_exceeded(usage.monthly, limits.monthly),
        total=_is_exceeded(usage.total, limits.total),
    )
    status = KeyStatus.LIMIT_EXCEEDED if flags.any else KeyStatus.OK

    if flags.any:
        logger.info(
            "key_limit_exceeded",
            key_id=key.id,
            daily=flags.daily,
            monthly=flags.monthly,
            total=flags.total,
        )

    return KeyUsageStatus(
        key_id=key.id,
        usage=usage,
        limits=limits,
        limit_exceeded=flags,
        status=status,
    )


def remaining_budget(limit: Optional[Decimal], spent: Decimal) -> Optional[Decimal]:
    """Display-only remaining budget, clamped at zero. None when unlimited."""
    if limit is None:
        return None
    return max(ZERO, limit - spent)
