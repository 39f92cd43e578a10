"""Pipeline step definitions and per-run values."""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python

from .contracts import ErrorKind, WorkflowError, WorkflowRecord, WorkflowStatus
from .models import Document, TripParameters
from .utils.retry import RetryPolicy

# Context fields a step may replace; their changes are checkpointed so a
# memoized resume can restore them without re-running the step.
CONTEXT_STATE_FIELDS = ("raw_output", "document")


class Criticality(str, Enum):
    CRITICAL = "critical"
    BEST_EFFORT = "best-effort"


class StepSkipped(BaseModel):
    """Output marker for a best-effort step that gave up."""

    step_name: str
    reason: str


class JobContext(BaseModel):
    """Immutable job state threaded between steps."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    session_id: str
    parameters: TripParameters
    raw_output: Optional[str] = None
    document: Optional[Document] = None
    outputs: Dict[str, Any] = Field(default_factory=dict)

    def evolve(self, **changes: Any) -> "JobContext":
        """Return a copy with ``changes`` applied and re-validated.

        ``outputs`` are carried over as-is so typed markers such as
        ``StepSkipped`` survive.
        """
        outputs = changes.pop("outputs", self.outputs)
        data = self.model_dump(exclude={"outputs"})
        data.update(changes)
        return JobContext.model_validate(data).model_copy(update={"outputs": outputs})

    def with_output(self, step_name: str, output: Any) -> "JobContext":
        outputs = dict(self.outputs)
        outputs[step_name] = output
        return self.model_copy(update={"outputs": outputs})

    def state_changes(self, before: "JobContext") -> Dict[str, Any]:
        """JSON-compatible values of state fields that differ from ``before``."""
        changes: Dict[str, Any] = {}
        for name in CONTEXT_STATE_FIELDS:
            value = getattr(self, name)
            if value != getattr(before, name):
                changes[name] = to_jsonable_python(value)
        return changes


StepFn = Callable[[JobContext], Awaitable[Any]]


class PipelineStep(BaseModel):
    """A named unit of work in a pipeline.

    ``fn`` receives the current context and returns either
    ``(new_context, output)`` or a bare output, in which case the context is
    left unchanged.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    fn: StepFn
    criticality: Criticality = Criticality.CRITICAL
    retry: Optional[RetryPolicy] = None
    timeout: Optional[float] = None

    @property
    def is_critical(self) -> bool:
        return self.criticality == Criticality.CRITICAL

    async def invoke(self, context: JobContext) -> Tuple[JobContext, Any]:
        result = await self.fn(context)
        if (
            isinstance(result, tuple)
            and len(result) == 2
            and isinstance(result[0], JobContext)
        ):
            return result
        return context, result


def critical(name: str, fn: StepFn, **kwargs: Any) -> PipelineStep:
    return PipelineStep(name=name, fn=fn, criticality=Criticality.CRITICAL, **kwargs)


def best_effort(name: str, fn: StepFn, **kwargs: Any) -> PipelineStep:
    return PipelineStep(name=name, fn=fn, criticality=Criticality.BEST_EFFORT, **kwargs)


class Diagnostic(BaseModel):
    """Failure of a best-effort step, kept out of the workflow record."""

    step_name: str
    kind: ErrorKind
    message: str
    attempts: int


class PipelineResult(BaseModel):
    """Outcome of one runner invocation."""

    workflow_id: str
    status: WorkflowStatus
    document: Optional[Document] = None
    error: Optional[WorkflowError] = None
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    executed: List[str] = Field(default_factory=list)
    reused: List[str] = Field(default_factory=list)
    context: Optional[JobContext] = None

    @classmethod
    def from_record(cls, record: WorkflowRecord, **kwargs: Any) -> "PipelineResult":
        return cls(
            workflow_id=record.workflow_id,
            status=record.status,
            document=record.document,
            error=record.error,
            **kwargs,
        )
