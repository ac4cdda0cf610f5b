"""
Repository pattern for data access.

Handles the schema and the append-only usage ledger.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageRecord


SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT,
        name TEXT
    );

    CREATE TABLE IF NOT EXISTS project (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        spending_limit TEXT
    );

    CREATE TABLE IF NOT EXISTS project_member (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id TEXT NOT NULL REFERENCES project(id),
        user_id TEXT NOT NULL,
        role TEXT NOT NULL,
        permissions TEXT NOT NULL DEFAULT '{}',
        UNIQUE (project_id, user_id)
    );

    CREATE TABLE IF NOT EXISTS api_key (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        project_id TEXT REFERENCES project(id),
        name TEXT NOT NULL,
        hashed_key TEXT NOT NULL UNIQUE,
        key_prefix TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        revoked_at TEXT,
        expires TEXT,
        daily_usage_limit TEXT,
        monthly_usage_limit TEXT,
        total_usage_limit TEXT,
        created_at TEXT NOT NULL,
        last_used TEXT
    );

    CREATE TABLE IF NOT EXISTS usage_record (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        key_id TEXT NOT NULL,
        project_id TEXT,
        billing_user_id TEXT NOT NULL,
        provider TEXT NOT NULL,
        model TEXT NOT NULL,
        tokens_input INTEGER NOT NULL,
        tokens_output INTEGER NOT NULL,
        provider_cost TEXT NOT NULL,
        markup_amount TEXT NOT NULL,
        billed_cost TEXT NOT NULL,
        success INTEGER NOT NULL,
        cached INTEGER NOT NULL DEFAULT 0,
        cache_hit INTEGER NOT NULL DEFAULT 0,
        request_id TEXT,
        endpoint TEXT NOT NULL,
        latency_ms INTEGER NOT NULL DEFAULT 0,
        metadata TEXT NOT NULL DEFAULT '{}'
    );

    CREATE INDEX IF NOT EXISTS idx_usage_key_time ON usage_record (key_id, timestamp);
    CREATE INDEX IF NOT EXISTS idx_usage_project_time ON usage_record (project_id, timestamp);
    CREATE INDEX IF NOT EXISTS idx_usage_user_time ON usage_record (billing_user_id, timestamp);

    CREATE TABLE IF NOT EXISTS alert (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        project_id TEXT,
        type TEXT NOT NULL,
        threshold TEXT NOT NULL,
        message TEXT NOT NULL,
        triggered INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS cost_alert (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        threshold TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        email_alert INTEGER NOT NULL DEFAULT 0,
        webhook_url TEXT,
        current_spend TEXT NOT NULL DEFAULT '0',
        last_triggered TEXT
    );

    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        action TEXT NOT NULL,
        resource TEXT NOT NULL,
        resource_id TEXT,
        details TEXT NOT NULL DEFAULT '{}',
        ip_address TEXT,
        user_agent TEXT,
        geo_location TEXT,
        request_id TEXT,
        request_type TEXT,
        timestamp TEXT NOT NULL
    );
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create every table if it doesn't exist.

    The usage_record table is an append-only ledger. No UPDATE or DELETE
    operations are ever performed on it by this package.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


def _row_to_record(row) -> UsageRecord:
    return UsageRecord(
        timestamp=datetime.fromisoformat(row[0]),
        key_id=row[1],
        project_id=row[2],
        billing_user_id=row[3],
        provider=row[4],
        model=row[5],
        tokens_input=row[6],
        tokens_output=row[7],
        provider_cost=Decimal(row[8]),
        markup_amount=Decimal(row[9]),
        billed_cost=Decimal(row[10]),
        success=bool(row[11]),
        cached=bool(row[12]),
        cache_hit=bool(row[13]),
        request_id=row[14],
        endpoint=row[15],
        latency_ms=row[16],
        metadata=json.loads(row[17]),
    )


class UsageRepository:
    """Usage ledger: append records and aggregate billed spend.

    Append and windowed sum are the only primitives quota evaluation
    relies on.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def append(self, record: UsageRecord) -> None:
        """Append a single usage record to the ledger.

        Args:
            record: The usage record to persist
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO usage_record
                (timestamp, key_id, project_id, billing_user_id, provider, model,
                 tokens_input, tokens_output, provider_cost, markup_amount,
                 billed_cost, success, cached, cache_hit, request_id, endpoint,
                 latency_ms, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.timestamp.isoformat(),
                record.key_id,
                record.project_id,
                record.billing_user_id,
                record.provider,
                record.model,
                record.tokens_input,
                record.tokens_output,
                str(record.provider_cost),
                str(record.markup_amount),
                str(record.billed_cost),
                int(record.success),
                int(record.cached),
                int(record.cache_hit),
                record.request_id,
                record.endpoint,
                record.latency_ms,
                json.dumps(record.metadata),
            ))
            conn.commit()
        finally:
            conn.close()

    def sum_billed_cost(
        self,
        key_id: Optional[str] = None,
        project_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Decimal:
        """Sum billed cost over the ledger.

        Args:
            key_id: Optional filter for a specific API key
            project_id: Optional filter for a specific project
            user_id: Optional filter for a billing user
            since: Inclusive lower bound on timestamp
            until: Exclusive upper bound on timestamp

        Returns:
            Total billed cost, zero when nothing matches
        """
        conditions = []
        params: list = []
        if key_id is not None:
            conditions.append("key_id = ?")
            params.append(key_id)
        if project_id is not None:
            conditions.append("project_id = ?")
            params.append(project_id)
        if user_id is not None:
            conditions.append("billing_user_id = ?")
            params.append(user_id)
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(since.isoformat())
        if until is not None:
            conditions.append("timestamp < ?")
            params.append(until.isoformat())

        query = "SELECT decimal_sum(billed_cost) FROM usage_record"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        conn = get_connection(self.db_path)
        try:
            row = conn.execute(query, params).fetchone()
            return Decimal(row[0]) if row and row[0] is not None else Decimal("0")
        finally:
            conn.close()

    def fetch_recent(
        self,
        key_id: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[UsageRecord]:
        """Fetch recent usage records, newest first.

        Args:
            key_id: Optional filter for a specific API key
            project_id: Optional filter for a specific project
            limit: Maximum number of records to return
        """
        query = """
            SELECT timestamp, key_id, project_id, billing_user_id, provider, model,
                   tokens_input, tokens_output, provider_cost, markup_amount,
                   billed_cost, success, cached, cache_hit, request_id, endpoint,
                   latency_ms, metadata
            FROM usage_record
        """
        conditions = []
        params: list = []
        if key_id is not None:
            conditions.append("key_id = ?")
            params.append(key_id)
        if project_id is not None:
            conditions.append("project_id = ?")
            params.append(project_id)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            return [_row_to_record(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()
