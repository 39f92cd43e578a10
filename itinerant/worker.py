"""Job worker: consumes job messages and runs the itinerary pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .constants import GENERATE_TOPIC
from .contracts import JobMessage, WorkflowNotFoundError
from .execute import PipelineRunner
from .pipeline import ItineraryPipeline
from .state import WorkflowStateMachine
from .steps import JobContext, PipelineResult
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class JobWorker:
    """Executes itinerary jobs by listening to transport messages."""

    def __init__(
        self,
        transport: BaseTransport,
        runner: PipelineRunner,
        pipeline: ItineraryPipeline,
        state: WorkflowStateMachine,
        topic: str = GENERATE_TOPIC,
    ) -> None:
        self._transport = transport
        self._runner = runner
        self._pipeline = pipeline
        self._state = state
        self._topic = topic
        self.handled = 0
        # Clear while a job is being handled, including trailing best-effort steps.
        self.idle = asyncio.Event()
        self.idle.set()

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start listening for job messages on the worker's topic."""
        logger.info(f"Worker listening on {self._topic}")
        async for raw_message, message in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            self.idle.clear()
            try:
                await self.handle(message)
            except Exception:
                logger.exception(f"Failed to handle job for workflow {message.workflow_id}")
            finally:
                self.idle.set()
            await self._transport.ack(raw_message)
            self.handled += 1

    async def handle(self, message: JobMessage) -> PipelineResult:
        """Rebuild the job context from the stored record and run the pipeline."""
        record = await self._state.get_status(message.workflow_id)
        if record is None:
            raise WorkflowNotFoundError(message.workflow_id)

        context = JobContext(
            workflow_id=record.workflow_id,
            session_id=record.session_id,
            parameters=record.input_parameters,
        )
        result = await self._runner.run(self._pipeline.steps(), context)
        logger.info(
            f"Workflow {result.workflow_id} finished as {result.status.value} "
            f"(executed={result.executed}, reused={result.reused})"
        )
        return result
