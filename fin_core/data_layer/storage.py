# =============================================================================
# fin_core/data_layer/storage.py
# Durable key-value storage backed by SQLite
# =============================================================================
"""
LocalStorage - SQLite-backed string key/value store.

This is the durable layer everything offline relies on: locally created
resources, the pending-operation queue and optional cache snapshots.

Features:
- Automatic schema creation
- JSON helpers
- Single shared connection guarded by a lock (safe for the background
  sync and cleanup threads)
"""

from __future__ import annotations
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union
import logging

logger = logging.getLogger(__name__)


class LocalStorage:
    """
    Durable string key/value store.

    Usage:
        storage = LocalStorage(Path("local_data/fin_core.db"))
        storage.set_json("pending-operations", [])
        storage.get_json("pending-operations", default=[])
    """

    MEMORY = ":memory:"

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(self, db_path: Union[str, Path] = MEMORY):
        """
        Initialize storage.

        Args:
            db_path: Path to the SQLite file, or ":memory:"
        """
        self.db_path = str(db_path)
        if self.db_path != self.MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
        )
        self._connection.execute(self.SCHEMA)
        self._connection.commit()
        logger.debug(f"Local storage opened at: {self.db_path}")

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("LocalStorage is closed")
        return self._connection

    # =========================================================================
    # STRING API
    # =========================================================================

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string for key, or None."""
        with self._lock:
            row = self._conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""
        with self._lock:
            conn = self._conn()
            conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                (key, value, datetime.now().isoformat()),
            )
            conn.commit()

    def remove_item(self, key: str) -> None:
        """Delete key if present."""
        with self._lock:
            conn = self._conn()
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()

    def keys(self) -> List[str]:
        with self._lock:
            rows = self._conn().execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row[0] for row in rows]

    def clear(self) -> None:
        with self._lock:
            conn = self._conn()
            conn.execute("DELETE FROM kv_store")
            conn.commit()

    # =========================================================================
    # JSON HELPERS
    # =========================================================================

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Decode the JSON stored under key.

        Raises:
            ValueError: if the stored value is not valid JSON
        """
        raw = self.get_item(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, default=str))

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
