"""Core contracts for itinerant workflows: records, messages and errors."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from .models import Document, TripParameters


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItinerantError(Exception):
    """Base class for itinerant errors."""


class StepFailed(ItinerantError):
    """Raised by a step body to signal failure.

    ``retryable=False`` marks a permanent failure: the runner stops retrying
    the step immediately.
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class WorkflowNotFoundError(ItinerantError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class DuplicateWorkflowError(ItinerantError):
    """A non-terminal workflow with the same id already exists."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} already exists and is still running")
        self.workflow_id = workflow_id


class WorkflowTerminalError(ItinerantError):
    """A transition was attempted on a completed or failed workflow."""

    def __init__(self, workflow_id: str, status: "WorkflowStatus") -> None:
        super().__init__(f"Workflow {workflow_id} is already {status.value}")
        self.workflow_id = workflow_id
        self.status = status


class DispatchError(ItinerantError):
    """The job message could not be handed to a worker."""


class WorkflowStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class WorkflowError(BaseModel):
    """Structured failure description attached to failed workflows."""

    kind: ErrorKind
    message: str
    failed_step: Optional[str] = None


class StepRecord(BaseModel):
    """Record of a successfully checkpointed step."""

    step_name: str
    status: str = "completed"
    attempts: int = 1
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Any = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class WorkflowRecord(BaseModel):
    """Durable checkpoint for one itinerary job."""

    workflow_id: str
    session_id: str
    status: WorkflowStatus = WorkflowStatus.PROCESSING
    input_parameters: TripParameters
    document: Optional[Document] = None
    raw_output: Optional[str] = None
    error: Optional[WorkflowError] = None
    steps: Dict[str, StepRecord] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_terminal_payload(self) -> "WorkflowRecord":
        completed = self.status == WorkflowStatus.COMPLETED
        failed = self.status == WorkflowStatus.FAILED
        if (self.document is not None) != completed:
            raise ValueError("document must be present exactly when status is completed")
        if (self.error is not None) != failed:
            raise ValueError("error must be present exactly when status is failed")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowRecord":
        return cls.model_validate_json(data)


class StatusView(BaseModel):
    """What the status read interface exposes to observers."""

    workflow_id: str
    status: WorkflowStatus
    document: Optional[Document] = None
    error: Optional[WorkflowError] = None
    updated_at: datetime

    @classmethod
    def from_record(cls, record: WorkflowRecord) -> "StatusView":
        return cls(
            workflow_id=record.workflow_id,
            status=record.status,
            document=record.document,
            error=record.error,
            updated_at=record.updated_at,
        )


class JobMessage(BaseModel):
    """Envelope published by the trigger and consumed by workers."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    session_id: str
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "JobMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
