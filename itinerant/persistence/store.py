"""Key-value store abstraction for workflow checkpoints."""

from __future__ import annotations

from typing import Protocol


class StateStore(Protocol):
    """Protocol for state store backends.

    Values are opaque JSON strings; writes to the same key are
    last-write-wins.
    """

    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or ``None``."""

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    async def close(self) -> None:
        """Release connections held by the store."""
