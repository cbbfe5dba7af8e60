# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/storage.py
"""
Key-value storage backends for alert state.

The stores only need three primitives (get/set/remove on string values),
so any backend that implements ``Storage`` can be injected.
"""
from __future__ import annotations
import sqlite3
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol, Union
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; the default for tests and dry runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class SqliteStorage:
    """
    SQLite-backed storage.

    Uses a single table:
    - kv_store: one row per key with its serialized value
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize the storage.

        Args:
            db_path: Path to SQLite database file (default: data/state/feed_alerts.db)
        """
        if db_path is None:
            db_path = Path("data/state/feed_alerts.db")

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key         TEXT    PRIMARY KEY,
                    value       TEXT    NOT NULL,
                    updated_at  TEXT    NOT NULL
                )
            """)

    def get(self, key: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,)
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, value, datetime.now(timezone.utc).isoformat()))
        logger.debug(f"Wrote {len(value)} bytes to {key}")

    def remove(self, key: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
