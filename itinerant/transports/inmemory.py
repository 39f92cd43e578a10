"""In-memory transport for tests and single-process runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import JobMessage
from .base import BaseTransport

RawJob = Tuple[str, JobMessage]


class InMemoryTransport(BaseTransport[RawJob]):
    """In-process queues keyed by topic."""

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._queues: Dict[str, Deque[RawJob]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    async def publish(self, topic: str, message: JobMessage) -> None:
        """Publish message to in-memory queue."""
        raw = (message.to_json(), message)
        async with self._lock:
            self._queues[topic].append(raw)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawJob, JobMessage]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            raw_message = None
            async with self._lock:
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue
            await asyncio.sleep(self._poll_interval)

    async def ack(self, raw_message: RawJob) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass
