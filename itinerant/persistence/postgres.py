"""PostgreSQL implementation of the state store."""

from __future__ import annotations

import asyncpg

from .store import StateStore


class PostgresStateStore(StateStore):
    """Persist values using PostgreSQL."""

    def __init__(self, dsn: str, timeout: float = 5.0):
        self._dsn = dsn
        self._timeout = timeout
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(
            self._dsn, timeout=self._timeout, command_timeout=self._timeout
        )
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )

    # ------------------------------------------------------------------
    async def get(self, key: str) -> str | None:
        conn = await self._connect()
        try:
            return await conn.fetchval("SELECT value FROM kv_store WHERE key = $1", key)
        finally:
            await conn.close()

    async def set(self, key: str, value: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES ($1, $2, now())
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                """,
                key,
                value,
            )
        finally:
            await conn.close()

    async def close(self) -> None:
        pass
