"""State store backends for itinerant workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ItinerantConfig, load_config
from .inmemory import InMemoryStateStore
from .sqlite import SQLiteStateStore
from .store import StateStore

_store_instance: StateStore | None = None


def get_store(
    url: Optional[str] = None, config: Optional[ItinerantConfig] = None
) -> StateStore:
    """Factory function to obtain a state store.

    The backend is selected based on ``url`` which can be provided
    explicitly, via environment variable ``ITINERANT_STORE_URL``, or from
    loaded configuration. When no store is configured, a process-wide
    in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and url is None and config is None:
        return _store_instance

    config = config or load_config()
    url = url or os.getenv("ITINERANT_STORE_URL") or config.store.url
    timeout = config.store.timeout

    if not url:
        _store_instance = InMemoryStateStore()
        return _store_instance

    if url.startswith("sqlite://"):
        path = url.replace("sqlite://", "", 1)
        _store_instance = SQLiteStateStore(path, timeout=timeout)
    elif url.startswith(("redis://", "rediss://")):
        from .redis import RedisStateStore

        _store_instance = RedisStateStore(
            url, timeout=timeout, ttl_seconds=config.store.ttl_seconds
        )
    elif url.startswith(("postgres://", "postgresql://")):
        from .postgres import PostgresStateStore

        _store_instance = PostgresStateStore(url, timeout=timeout)
    else:
        raise ValueError(f"Unsupported state store backend: {url}")

    return _store_instance


__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "SQLiteStateStore",
    "get_store",
]
