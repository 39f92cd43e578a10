"""Trigger interface: accept a request and hand it to the workers."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

from .constants import GENERATE_TOPIC
from .contracts import (
    DispatchError,
    ErrorKind,
    JobMessage,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowStatus,
)
from .models import TripParameters
from .state import WorkflowStateMachine
from .transports import BaseTransport

logger = logging.getLogger(__name__)


def new_workflow_id() -> str:
    return f"workflow_{uuid.uuid4().hex}"


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


class TriggerReceipt(BaseModel):
    """Returned to the caller as soon as the job is accepted."""

    workflow_id: str
    session_id: str
    status: WorkflowStatus
    status_locator: str
    created: bool = True


class ItineraryDispatcher:
    """Service responsible for dispatching itinerary jobs."""

    def __init__(
        self,
        transport: BaseTransport,
        state: WorkflowStateMachine,
        status_base_url: Optional[str] = None,
        topic: str = GENERATE_TOPIC,
    ) -> None:
        self.transport = transport
        self.state = state
        self.status_base_url = status_base_url.rstrip("/") if status_base_url else None
        self.topic = topic

    def status_locator(self, workflow_id: str) -> str:
        if self.status_base_url:
            return f"{self.status_base_url}/status/{workflow_id}"
        return self.state.key_for(workflow_id)

    async def dispatch(
        self,
        parameters: Union[TripParameters, Dict[str, Any]],
        session_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
    ) -> TriggerReceipt:
        """Checkpoint a new job and publish it without waiting for the result.

        Re-triggering a finished workflow id returns its existing state and
        publishes nothing.

        Raises:
            DuplicateWorkflowError: The workflow id is already running.
            DispatchError: The job could not be published; the record is
                marked failed.
        """
        if parameters is None:
            raise TypeError("parameters must not be None")
        if not isinstance(parameters, TripParameters):
            parameters = TripParameters.model_validate(parameters)

        workflow_id = workflow_id or new_workflow_id()
        session_id = session_id or new_session_id()
        record = await self.state.create(workflow_id, session_id, parameters)
        receipt = TriggerReceipt(
            workflow_id=record.workflow_id,
            session_id=record.session_id,
            status=record.status,
            status_locator=self.status_locator(record.workflow_id),
            created=not record.is_terminal,
        )
        if not receipt.created:
            return receipt

        message = JobMessage(workflow_id=workflow_id, session_id=session_id)
        await self._publish(message)
        return receipt

    async def resume(self, workflow_id: str) -> TriggerReceipt:
        """Publish a new job message for a workflow that has not finished.

        Steps already checkpointed for the workflow are reused by the worker,
        so resuming a job orphaned by a crashed worker repeats no finished
        work. A finished workflow is returned unchanged.

        Raises:
            WorkflowNotFoundError: No record exists for the workflow.
            DispatchError: The job could not be published; the record is
                marked failed.
        """
        record = await self.state.get_status(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        receipt = TriggerReceipt(
            workflow_id=record.workflow_id,
            session_id=record.session_id,
            status=record.status,
            status_locator=self.status_locator(record.workflow_id),
            created=False,
        )
        if record.is_terminal:
            logger.info(f"Workflow {workflow_id} already {record.status.value}; not resuming")
            return receipt

        await self._publish(
            JobMessage(workflow_id=record.workflow_id, session_id=record.session_id)
        )
        return receipt

    async def _publish(self, message: JobMessage) -> None:
        workflow_id = message.workflow_id
        try:
            await self.transport.publish(self.topic, message)
        except Exception as e:
            logger.error(f"Failed to publish job for {workflow_id}: {e}")
            try:
                await self.state.fail(
                    workflow_id,
                    WorkflowError(
                        kind=ErrorKind.INTERNAL,
                        message=f"could not enqueue job: {e}",
                        failed_step="dispatch",
                    ),
                )
            except Exception:
                logger.exception(f"Could not record dispatch failure for {workflow_id}")
            raise DispatchError(f"could not enqueue workflow {workflow_id}") from e

        logger.info(
            f"Dispatched workflow {workflow_id} to {self.topic} (message_id={message.message_id})"
        )
