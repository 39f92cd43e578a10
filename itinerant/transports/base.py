"""Base transport interface for job messages."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import JobMessage

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract base transport for message brokers."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: JobMessage) -> None:
        """Send a message to a topic/queue."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, JobMessage]]:
        """Yield raw transport message and JobMessage pairs.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Acknowledge successful processing."""
        raise NotImplementedError
