"""Redis implementation of the state store."""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis.asyncio as redis

from .store import StateStore

logger = logging.getLogger(__name__)


class RedisStateStore(StateStore):
    """Persist values in Redis, optionally expiring them after ``ttl_seconds``."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.ttl_seconds = ttl_seconds
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=self.timeout,
            socket_timeout=self.timeout,
        )
        await self._redis.ping()
        logger.info("Redis state store connected")

    async def get(self, key: str) -> str | None:
        if not self._redis:
            await self.connect()
        return await self._redis.get(key)

    async def set(self, key: str, value: str) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.set(key, value, ex=self.ttl_seconds)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
