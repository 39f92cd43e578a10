"""Workflow state machine backed by a key-value state store.

Every transition is a read-modify-write of the latest record under
``{key_prefix}:{workflow_id}``. Within one job only the executing worker
writes, so the store's last-write-wins semantics are sufficient.

States::

    processing -> completed
               -> failed

``completed`` and ``failed`` are terminal; no transition leaves them.
"""

from __future__ import annotations

import logging
from typing import Optional

from .constants import RECORD_KEY_PREFIX
from .contracts import (
    DuplicateWorkflowError,
    StatusView,
    StepRecord,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowRecord,
    WorkflowStatus,
    WorkflowTerminalError,
    utcnow,
)
from .models import Document, TripParameters
from .persistence import StateStore

logger = logging.getLogger(__name__)


class WorkflowStateMachine:
    """Owns the checkpoint record of each itinerary job."""

    def __init__(self, store: StateStore, key_prefix: str = RECORD_KEY_PREFIX) -> None:
        self._store = store
        self._key_prefix = key_prefix

    @property
    def store(self) -> StateStore:
        return self._store

    def key_for(self, workflow_id: str) -> str:
        return f"{self._key_prefix}:{workflow_id}"

    # ------------------------------------------------------------------
    # Read path
    async def get_status(self, workflow_id: str) -> WorkflowRecord | None:
        """Return the most recently written record, or ``None`` if unknown."""
        raw = await self._store.get(self.key_for(workflow_id))
        if raw is None:
            return None
        return WorkflowRecord.from_json(raw)

    async def read_status(self, workflow_id: str) -> StatusView | None:
        """Status read interface exposed to observers."""
        record = await self.get_status(workflow_id)
        return StatusView.from_record(record) if record else None

    # ------------------------------------------------------------------
    # Transitions
    async def create(
        self, workflow_id: str, session_id: str, parameters: TripParameters
    ) -> WorkflowRecord:
        """Write the initial ``processing`` checkpoint.

        Raises:
            DuplicateWorkflowError: A running workflow already uses the id.

        An existing terminal record is returned unchanged.
        """
        if parameters is None:
            raise TypeError("parameters must not be None")
        existing = await self.get_status(workflow_id)
        if existing is not None:
            if existing.is_terminal:
                logger.info(
                    f"Workflow {workflow_id} already {existing.status.value}; returning existing record"
                )
                return existing
            raise DuplicateWorkflowError(workflow_id)

        record = WorkflowRecord(
            workflow_id=workflow_id,
            session_id=session_id,
            status=WorkflowStatus.PROCESSING,
            input_parameters=parameters,
        )
        await self._write(record)
        logger.info(f"Workflow {workflow_id} created (session_id={session_id})")
        return record

    async def checkpoint_step(
        self,
        workflow_id: str,
        step: StepRecord,
        raw_output: Optional[str] = None,
    ) -> WorkflowRecord:
        """Record a successfully completed step in the execution log."""
        record = await self._load_active(workflow_id)
        record.steps[step.step_name] = step
        if raw_output is not None:
            record.raw_output = raw_output
        await self._write(record)
        logger.debug(f"Workflow {workflow_id} checkpointed step {step.step_name}")
        return record

    async def complete(
        self,
        workflow_id: str,
        document: Document,
        raw_output: Optional[str] = None,
    ) -> WorkflowRecord:
        """Transition to ``completed`` with the final document attached."""
        if document is None:
            raise ValueError("a completed workflow requires a document")
        record = await self._load_active(workflow_id)
        record.status = WorkflowStatus.COMPLETED
        record.document = document
        if raw_output is not None:
            record.raw_output = raw_output
        record = WorkflowRecord.model_validate(record.model_dump())
        await self._write(record)
        logger.info(f"Workflow {workflow_id} completed")
        return record

    async def fail(self, workflow_id: str, error: WorkflowError) -> WorkflowRecord:
        """Transition to ``failed`` with a structured error."""
        record = await self._load_active(workflow_id)
        record.status = WorkflowStatus.FAILED
        record.error = error
        record = WorkflowRecord.model_validate(record.model_dump())
        await self._write(record)
        logger.info(
            f"Workflow {workflow_id} failed at step {error.failed_step}: "
            f"{error.kind.value}: {error.message}"
        )
        return record

    # ------------------------------------------------------------------
    async def _load_active(self, workflow_id: str) -> WorkflowRecord:
        record = await self.get_status(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        if record.is_terminal:
            raise WorkflowTerminalError(workflow_id, record.status)
        return record

    async def _write(self, record: WorkflowRecord) -> None:
        record.updated_at = utcnow()
        await self._store.set(self.key_for(record.workflow_id), record.to_json())
