"""
API key storage.

Raw keys are shown once at creation; only their SHA-256 hash is stored and
presented keys are resolved by hash.
"""

import hashlib
import re
import secrets
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import ApiKey

DEFAULT_PERSONAL_PREFIX = "uni_"
DEFAULT_PROJECT_PREFIX = "uni_proj_"

_KEY_COLUMNS = """
    id, user_id, project_id, name, hashed_key, key_prefix, active, revoked_at,
    expires, daily_usage_limit, monthly_usage_limit, total_usage_limit,
    created_at, last_used
"""


def hash_api_key(raw_key: str) -> str:
    """Return the hex SHA-256 digest used to look up a presented key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(prefix: str = DEFAULT_PERSONAL_PREFIX) -> str:
    """Generate a new raw key with a sanitised prefix."""
    clean_prefix = re.sub(r"[^a-zA-Z0-9_]", "", prefix)
    return f"{clean_prefix}{secrets.token_urlsafe(24)}"


def _decimal_or_none(value) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _text_or_none(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _datetime_or_none(value) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_key(row) -> ApiKey:
    return ApiKey(
        id=row[0],
        user_id=row[1],
        project_id=row[2],
        name=row[3],
        hashed_key=row[4],
        key_prefix=row[5],
        active=bool(row[6]),
        revoked_at=_datetime_or_none(row[7]),
        expires=_datetime_or_none(row[8]),
        daily_usage_limit=_decimal_or_none(row[9]),
        monthly_usage_limit=_decimal_or_none(row[10]),
        total_usage_limit=_decimal_or_none(row[11]),
        created_at=_datetime_or_none(row[12]),
        last_used=_datetime_or_none(row[13]),
    )


class ApiKeyRepository:
    """Repository for API key configuration."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_key(
        self,
        user_id: str,
        name: str,
        project_id: Optional[str] = None,
        daily_usage_limit: Optional[Decimal] = None,
        monthly_usage_limit: Optional[Decimal] = None,
        total_usage_limit: Optional[Decimal] = None,
        expires: Optional[datetime] = None,
        key_prefix: Optional[str] = None,
    ) -> Tuple[ApiKey, str]:
        """Create a key and return it together with the raw secret.

        Raises:
            ValueError: If name is empty or a limit is negative
        """
        if not name or not name.strip():
            raise ValueError("API key name is required")
        for label, limit in (
            ("daily_usage_limit", daily_usage_limit),
            ("monthly_usage_limit", monthly_usage_limit),
            ("total_usage_limit", total_usage_limit),
        ):
            if limit is not None and limit < 0:
                raise ValueError(f"{label} must be >= 0")

        prefix = key_prefix or (DEFAULT_PROJECT_PREFIX if project_id else DEFAULT_PERSONAL_PREFIX)
        raw_key = generate_api_key(prefix)
        key = ApiKey(
            id=uuid.uuid4().hex,
            user_id=user_id,
            project_id=project_id,
            name=name,
            hashed_key=hash_api_key(raw_key),
            key_prefix=prefix,
            expires=expires,
            daily_usage_limit=daily_usage_limit,
            monthly_usage_limit=monthly_usage_limit,
            total_usage_limit=total_usage_limit,
            created_at=datetime.now(),
        )

        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO api_key ({_KEY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                key.id,
                key.user_id,
                key.project_id,
                key.name,
                key.hashed_key,
                key.key_prefix,
                int(key.active),
                None,
                key.expires.isoformat() if key.expires else None,
                _text_or_none(key.daily_usage_limit),
                _text_or_none(key.monthly_usage_limit),
                _text_or_none(key.total_usage_limit),
                key.created_at.isoformat(),
                None,
            ))
            conn.commit()
        finally:
            conn.close()
        return key, raw_key

    def get_key(self, key_id: str) -> Optional[ApiKey]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_key WHERE id = ?", (key_id,)
            ).fetchone()
            return _row_to_key(row) if row else None
        finally:
            conn.close()

    def get_key_by_raw(self, raw_key: str) -> Optional[ApiKey]:
        """Resolve a presented raw key through its hash."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_key WHERE hashed_key = ?",
                (hash_api_key(raw_key),)
            ).fetchone()
            return _row_to_key(row) if row else None
        finally:
            conn.close()

    def touch_last_used(self, key_id: str, when: Optional[datetime] = None) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE api_key SET last_used = ? WHERE id = ?",
                ((when or datetime.now()).isoformat(), key_id)
            )
            conn.commit()
        finally:
            conn.close()

    def set_active(self, key_id: str, active: bool) -> bool:
        """Toggle the kill switch. Returns False if the key doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE api_key SET active = ? WHERE id = ?", (int(active), key_id)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def revoke(self, key_id: str, when: Optional[datetime] = None) -> bool:
        """Permanently revoke a key. Returns False if the key doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE api_key SET active = 0, revoked_at = ? WHERE id = ?",
                ((when or datetime.now()).isoformat(), key_id)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def update_limits(
        self,
        key_id: str,
        daily_usage_limit: Optional[Decimal] = None,
        monthly_usage_limit: Optional[Decimal] = None,
        total_usage_limit: Optional[Decimal] = None,
    ) -> bool:
        """Replace all three limits; None clears a limit.

        Raises:
            ValueError: If a limit is negative
        """
        for limit in (daily_usage_limit, monthly_usage_limit, total_usage_limit):
            if limit is not None and limit < 0:
                raise ValueError("usage limits must be >= 0")
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE api_key
                SET daily_usage_limit = ?, monthly_usage_limit = ?, total_usage_limit = ?
                WHERE id = ?
            """, (
                _text_or_none(daily_usage_limit),
                _text_or_none(monthly_usage_limit),
                _text_or_none(total_usage_limit),
                key_id,
            ))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
