"""Step execution engine for itinerant pipelines."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel
from pydantic_core import PydanticSerializationError, to_jsonable_python

from .contracts import (
    ErrorKind,
    StepFailed,
    StepRecord,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowRecord,
    WorkflowStatus,
    utcnow,
)
from .state import WorkflowStateMachine
from .steps import (
    Diagnostic,
    JobContext,
    PipelineResult,
    PipelineStep,
    StepSkipped,
)
from .utils import retry
from .utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


class StepOutcome(BaseModel):
    """Result of running one step through its retry budget."""

    step_name: str
    ok: bool
    attempts: int
    context: JobContext
    output: Any = None
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class PipelineRunner:
    """Executes pipeline steps in order, once per workflow.

    Successful steps that run before the record is completed, best-effort
    ones included, are checkpointed into the workflow record and skipped on
    later runs for the same workflow id. The record is completed
    as soon as the last critical step succeeds; trailing best-effort steps
    run afterwards and can no longer change the outcome.
    """

    def __init__(
        self,
        state: WorkflowStateMachine,
        retry_policy: RetryPolicy | None = None,
        step_timeout: float | None = None,
    ) -> None:
        self._state = state
        self._retry_policy = retry_policy or RetryPolicy()
        self._step_timeout = step_timeout

    async def run(
        self, steps: Sequence[PipelineStep], context: JobContext
    ) -> PipelineResult:
        """Run ``steps`` for the workflow in ``context``.

        Raises:
            ValueError: Step names are not unique.
            WorkflowNotFoundError: No checkpoint exists for the workflow.
        """
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in pipeline: {names}")

        workflow_id = context.workflow_id
        record = await self._state.get_status(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)
        if record.is_terminal:
            logger.info(
                f"Workflow {workflow_id} already {record.status.value}; nothing to run"
            )
            return PipelineResult.from_record(record, context=context)

        diagnostics: List[Diagnostic] = []
        executed: List[str] = []
        reused: List[str] = []
        last_critical = max(
            (i for i, step in enumerate(steps) if step.is_critical), default=-1
        )

        if last_critical < 0:
            record = await self._finish(context, None, diagnostics, executed, reused)
            if record.status == WorkflowStatus.FAILED:
                return PipelineResult.from_record(
                    record, diagnostics=diagnostics, context=context
                )

        for index, step in enumerate(steps):
            cached = record.steps.get(step.name)
            if cached is not None and cached.status == "completed":
                context = context.evolve(**cached.updates).with_output(
                    step.name, cached.output
                )
                reused.append(step.name)
                logger.info(f"Workflow {workflow_id}: reusing completed step {step.name}")
            else:
                executed.append(step.name)
                outcome = await self._execute(step, context)
                # Best-effort steps after the last critical one run once the
                # record is terminal and cannot be checkpointed.
                if outcome.ok and (step.is_critical or index < last_critical):
                    try:
                        record = await self._checkpoint(step, context, outcome)
                    except Exception as exc:
                        logger.exception(
                            f"Workflow {workflow_id}: checkpoint of step {step.name} failed"
                        )
                        if step.is_critical:
                            outcome = outcome.model_copy(
                                update={
                                    "ok": False,
                                    "kind": ErrorKind.INTERNAL,
                                    "message": f"checkpoint failed: {exc}",
                                }
                            )

                if outcome.ok:
                    context = outcome.context
                elif step.is_critical:
                    error = WorkflowError(
                        kind=outcome.kind or ErrorKind.INTERNAL,
                        message=outcome.message or "step failed",
                        failed_step=step.name,
                    )
                    return await self._abort(context, error, diagnostics, executed, reused)
                else:
                    diagnostics.append(
                        Diagnostic(
                            step_name=step.name,
                            kind=outcome.kind or ErrorKind.INTERNAL,
                            message=outcome.message or "step failed",
                            attempts=outcome.attempts,
                        )
                    )
                    context = context.with_output(
                        step.name,
                        StepSkipped(step_name=step.name, reason=outcome.message or ""),
                    )
                    logger.warning(
                        f"Workflow {workflow_id}: best-effort step {step.name} skipped "
                        f"after {outcome.attempts} attempt(s): {outcome.message}"
                    )

            if index == last_critical:
                record = await self._finish(
                    context, step.name, diagnostics, executed, reused
                )
                if record.status == WorkflowStatus.FAILED:
                    return PipelineResult.from_record(
                        record,
                        diagnostics=diagnostics,
                        executed=executed,
                        reused=reused,
                        context=context,
                    )

        return PipelineResult.from_record(
            record,
            diagnostics=diagnostics,
            executed=executed,
            reused=reused,
            context=context,
        )

    # ------------------------------------------------------------------
    async def _execute(self, step: PipelineStep, context: JobContext) -> StepOutcome:
        """Run one step, retrying on failure up to the policy's budget."""
        policy = step.retry or self._retry_policy
        timeout = step.timeout if step.timeout is not None else self._step_timeout
        workflow_id = context.workflow_id
        attempts = 0
        kind = ErrorKind.INTERNAL
        message = ""

        while attempts < policy.max_attempts:
            attempts += 1
            try:
                new_context, output = await asyncio.wait_for(
                    step.invoke(context), timeout
                )
                output = to_jsonable_python(output)
            except PydanticSerializationError as exc:
                kind = ErrorKind.PERMANENT
                message = f"step {step.name} returned an unserializable output: {exc}"
                break
            except StepFailed as exc:
                kind = ErrorKind.TRANSIENT if exc.retryable else ErrorKind.PERMANENT
                message = str(exc)
                if not exc.retryable:
                    logger.warning(
                        f"Workflow {workflow_id}: step {step.name} failed permanently: {message}"
                    )
                    break
            except asyncio.TimeoutError:
                kind = ErrorKind.TIMEOUT
                message = f"step {step.name} timed out after {timeout}s"
            except Exception as exc:
                kind = ErrorKind.TRANSIENT
                message = f"{type(exc).__name__}: {exc}"
            else:
                return StepOutcome(
                    step_name=step.name,
                    ok=True,
                    attempts=attempts,
                    context=new_context.with_output(step.name, output),
                    output=output,
                )

            logger.warning(
                f"Workflow {workflow_id}: step {step.name} attempt "
                f"{attempts}/{policy.max_attempts} failed: {message}"
            )
            if attempts < policy.max_attempts:
                await retry.schedule_retry(attempts, policy)

        return StepOutcome(
            step_name=step.name,
            ok=False,
            attempts=attempts,
            context=context,
            kind=kind,
            message=message,
        )

    async def _checkpoint(
        self, step: PipelineStep, before: JobContext, outcome: StepOutcome
    ) -> WorkflowRecord:
        updates = outcome.context.state_changes(before)
        step_record = StepRecord(
            step_name=step.name,
            attempts=outcome.attempts,
            completed_at=utcnow(),
            output=outcome.output,
            updates=updates,
        )
        return await self._state.checkpoint_step(
            before.workflow_id, step_record, raw_output=updates.get("raw_output")
        )

    async def _finish(
        self,
        context: JobContext,
        last_step: Optional[str],
        diagnostics: List[Diagnostic],
        executed: List[str],
        reused: List[str],
    ) -> WorkflowRecord:
        """Complete the workflow once every critical step has succeeded."""
        if context.document is None:
            error = WorkflowError(
                kind=ErrorKind.PERMANENT,
                message="critical steps finished without producing a document",
                failed_step=last_step,
            )
            result = await self._abort(context, error, diagnostics, executed, reused)
            return await self._record_or_fallback(context, result)
        try:
            return await self._state.complete(
                context.workflow_id, context.document, context.raw_output
            )
        except Exception as exc:
            logger.exception(f"Workflow {context.workflow_id}: completion write failed")
            error = WorkflowError(
                kind=ErrorKind.INTERNAL,
                message=f"completion write failed: {exc}",
                failed_step=last_step,
            )
            result = await self._abort(context, error, diagnostics, executed, reused)
            return await self._record_or_fallback(context, result)

    async def _abort(
        self,
        context: JobContext,
        error: WorkflowError,
        diagnostics: List[Diagnostic],
        executed: List[str],
        reused: List[str],
    ) -> PipelineResult:
        """Mark the workflow failed; never raises."""
        try:
            await self._state.fail(context.workflow_id, error)
        except Exception:
            logger.exception(
                f"Workflow {context.workflow_id}: could not record failure of step "
                f"{error.failed_step}"
            )
        return PipelineResult(
            workflow_id=context.workflow_id,
            status=WorkflowStatus.FAILED,
            error=error,
            diagnostics=diagnostics,
            executed=executed,
            reused=reused,
            context=context,
        )

    async def _record_or_fallback(
        self, context: JobContext, result: PipelineResult
    ) -> WorkflowRecord:
        """Latest record after an abort, or an unsaved failed record if unreadable."""
        try:
            record = await self._state.get_status(context.workflow_id)
        except Exception:
            logger.exception(f"Workflow {context.workflow_id}: could not re-read record")
            record = None
        if record is not None and record.status == WorkflowStatus.FAILED:
            return record
        return WorkflowRecord(
            workflow_id=context.workflow_id,
            session_id=context.session_id,
            status=WorkflowStatus.FAILED,
            input_parameters=context.parameters,
            raw_output=context.raw_output,
            error=result.error,
        )
