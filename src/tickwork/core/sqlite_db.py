# src/tickwork/core/sqlite_db.py

"""
Shared SQLite helpers for the registry, checkpoint store and idempotency guard.

All three live in one database file so that their writes share one journal.
Each operation opens its own short-lived connection; nothing is cached across
a quantum boundary.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    with contextlib.suppress(sqlite3.Error):
        conn.execute("PRAGMA journal_mode=WAL")
    # A commit must be on disk before control returns to the host.
    conn.execute("PRAGMA synchronous=FULL")
    return conn


def add_missing_columns(
    cur: sqlite3.Cursor, table: str, columns: Mapping[str, str]
) -> None:
    """Additive migration: ALTER TABLE only for columns an older DB lacks."""
    cur.execute(f"PRAGMA table_info({table})")
    present = {row["name"] for row in cur.fetchall()}
    for name, decl in columns.items():
        if name in present:
            continue
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
        logger.info("%s migration: added column %s", table, name)
