"""In-memory implementation of the state store."""

from __future__ import annotations

import asyncio
from typing import Dict

from .store import StateStore


class InMemoryStateStore(StateStore):
    """Store values in local memory.

    Useful for tests or when no store is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._values[key] = value

    async def close(self) -> None:
        pass

    def keys(self) -> list[str]:
        return list(self._values)
