"""SQLite implementation of the state store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .store import StateStore


class SQLiteStateStore(StateStore):
    """Persist values in a single SQLite table."""

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, timeout=timeout, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    # ------------------------------------------------------------------
    # Store API
    async def get(self, key: str) -> str | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT value FROM kv_store WHERE key = ?", key
        )
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            key,
            value,
            datetime.now(timezone.utc).isoformat(),
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)
