"""Client side of the status polling protocol.

A client that triggered a job polls the status read interface until the job
reaches a terminal state or the client gives up::

    poller = StatusPoller(StateStatusSource(state), interval=2, max_wait=300)
    result = await poller.wait(workflow_id)

Giving up (``timed_out``) says nothing about the job itself, which may still
complete later. A workflow id that is unknown right after the trigger is
treated as not-yet-visible for ``not_found_grace`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

import httpx
from pydantic import BaseModel

from .constants import DEFAULT_NOT_FOUND_GRACE, DEFAULT_POLL_INTERVAL, DEFAULT_POLL_MAX_WAIT
from .contracts import StatusView, WorkflowError, WorkflowStatus
from .models import Document
from .state import WorkflowStateMachine

logger = logging.getLogger(__name__)


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    NOT_FOUND = "not_found"


class PollResult(BaseModel):
    workflow_id: str
    outcome: PollOutcome
    document: Optional[Document] = None
    error: Optional[WorkflowError] = None
    polls: int = 0
    elapsed: float = 0.0
    last_status: Optional[WorkflowStatus] = None


class StatusSource(Protocol):
    async def __call__(self, workflow_id: str) -> Optional[StatusView]:
        """Return the current status, or None if the workflow is unknown."""


class StateStatusSource:
    """Read status straight from the state store."""

    def __init__(self, state: WorkflowStateMachine) -> None:
        self._state = state

    async def __call__(self, workflow_id: str) -> Optional[StatusView]:
        return await self._state.read_status(workflow_id)


class HttpStatusSource:
    """Read status from ``GET {base_url}/status/{workflow_id}``."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    def url_for(self, workflow_id: str) -> str:
        return f"{self.base_url}/status/{workflow_id}"

    async def __call__(self, workflow_id: str) -> Optional[StatusView]:
        if self._client is not None:
            return await self._fetch(self._client, workflow_id)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._fetch(client, workflow_id)

    async def _fetch(self, client: httpx.AsyncClient, workflow_id: str) -> Optional[StatusView]:
        response = await client.get(self.url_for(workflow_id))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return StatusView.model_validate(response.json())


class StatusPoller:
    def __init__(
        self,
        source: StatusSource,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_POLL_MAX_WAIT,
        not_found_grace: float = DEFAULT_NOT_FOUND_GRACE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if max_wait <= 0:
            raise ValueError("max_wait must be positive")
        self.source = source
        self.interval = interval
        self.max_wait = max_wait
        self.not_found_grace = not_found_grace
        self._sleep = sleep
        self._clock = clock

    async def wait(self, workflow_id: str) -> PollResult:
        """Poll until the workflow is terminal, unknown past the grace window, or time runs out."""
        started = self._clock()
        deadline = started + self.max_wait
        polls = 0
        last_status: Optional[WorkflowStatus] = None

        while True:
            polls += 1
            view: Optional[StatusView] = None
            seen = False
            try:
                view = await self.source(workflow_id)
                seen = True
            except Exception as e:
                logger.warning(f"Status read for {workflow_id} failed: {e}")

            now = self._clock()
            elapsed = now - started
            if view is not None:
                last_status = view.status
                if view.status == WorkflowStatus.COMPLETED:
                    return PollResult(
                        workflow_id=workflow_id,
                        outcome=PollOutcome.COMPLETED,
                        document=view.document,
                        polls=polls,
                        elapsed=elapsed,
                        last_status=last_status,
                    )
                if view.status == WorkflowStatus.FAILED:
                    return PollResult(
                        workflow_id=workflow_id,
                        outcome=PollOutcome.FAILED,
                        error=view.error,
                        polls=polls,
                        elapsed=elapsed,
                        last_status=last_status,
                    )
            elif seen and last_status is None and elapsed >= self.not_found_grace:
                return PollResult(
                    workflow_id=workflow_id,
                    outcome=PollOutcome.NOT_FOUND,
                    polls=polls,
                    elapsed=elapsed,
                )

            remaining = deadline - now
            if remaining <= 0:
                logger.info(f"Gave up waiting for {workflow_id} after {elapsed:.1f}s")
                return PollResult(
                    workflow_id=workflow_id,
                    outcome=PollOutcome.TIMED_OUT,
                    polls=polls,
                    elapsed=elapsed,
                    last_status=last_status,
                )
            await self._sleep(min(self.interval, remaining))
