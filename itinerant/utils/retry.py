from __future__ import annotations

import asyncio
import random
from typing import Literal

from pydantic import BaseModel, Field

from ..constants import DEFAULT_MAX_ATTEMPTS


class RetryPolicy(BaseModel):
    """How many times a step is attempted and how long to wait in between."""

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    strategy: Literal["exponential", "fixed"] = "exponential"
    base: float = Field(default=1.5, ge=0)
    jitter: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.strategy == "fixed":
            delay = self.base + random.uniform(0, self.jitter)
        else:
            delay = compute_backoff(attempt, base=self.base, jitter=self.jitter)
        return min(delay, self.max_delay)


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, policy: RetryPolicy | None = None) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = (policy or RetryPolicy()).delay_for(attempt)
    if delay > 0:
        await asyncio.sleep(delay)
