"""Redis transport for cross-process job delivery."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import JobMessage
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Redis list used as a FIFO queue per topic."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        queue_prefix: str = "itinerant",
        block_timeout: int = 1,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.queue_prefix = queue_prefix
        self.block_timeout = block_timeout
        self._redis: Optional[redis.Redis] = None

    def queue_name(self, topic: str) -> str:
        return f"{self.queue_prefix}:{topic}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: JobMessage) -> None:
        """Push message onto the topic's list."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.queue_name(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, JobMessage]]:
        if not self._redis:
            await self.connect()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None
        queue_name = self.queue_name(topic)

        while deadline is None or loop.time() < deadline:
            result = await self._redis.brpop(queue_name, timeout=self.block_timeout)
            if not result:
                continue
            _, message_json = result
            try:
                message = JobMessage.from_json(message_json)
            except ValidationError as e:
                logger.error(f"Dropping malformed message on {queue_name}: {e}")
                continue
            yield message_json, message

    async def ack(self, raw_message: str) -> None:
        """No-op acknowledgment; BRPOP already removed the message."""
        pass
