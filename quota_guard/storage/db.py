"""
Database connection management.

Provides SQLite connections for the usage ledger and key configuration.
"""

import sqlite3
from decimal import Decimal
from pathlib import Path

DEFAULT_DB_PATH = "quota_guard.db"


class DecimalSum:
    """SQLite aggregate summing decimal TEXT columns without float rounding."""

    def __init__(self):
        self.total = Decimal("0")

    def step(self, value):
        if value is not None:
            self.total += Decimal(str(value))

    def finalize(self):
        return str(self.total)


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    The connection registers a ``decimal_sum`` aggregate so money columns
    can be summed in SQL while keeping full decimal precision.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    conn.create_aggregate("decimal_sum", 1, DecimalSum)
    return conn
