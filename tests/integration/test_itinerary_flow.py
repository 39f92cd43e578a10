"""End-to-end flows: trigger, worker, state store and polling client."""

import asyncio

import pytest

from itinerant.config import PipelineConfig
from itinerant.contracts import ErrorKind, WorkflowStatus, utcnow
from itinerant.dispatch import ItineraryDispatcher
from itinerant.execute import PipelineRunner
from itinerant.models import TripParameters
from itinerant.persistence import SQLiteStateStore
from itinerant.pipeline import ItineraryPipeline
from itinerant.polling import PollOutcome, StateStatusSource, StatusPoller
from itinerant.search import ItineraryIndex
from itinerant.state import WorkflowStateMachine
from itinerant.transports import InMemoryTransport
from itinerant.worker import JobWorker


async def _run_job(state, backend, parameters, no_wait, pipeline_config=None, poll_interval=0.05):
    transport = InMemoryTransport(poll_interval=0.01)
    dispatcher = ItineraryDispatcher(transport, state)
    pipeline = ItineraryPipeline(
        backend, index=ItineraryIndex(state.store), config=pipeline_config
    )
    worker = JobWorker(transport, PipelineRunner(state, retry_policy=no_wait), pipeline, state)

    receipt = await dispatcher.dispatch(parameters)
    assert (await state.read_status(receipt.workflow_id)).status == WorkflowStatus.PROCESSING

    worker_task = asyncio.create_task(worker.start())
    try:
        poller = StatusPoller(
            StateStatusSource(state), interval=poll_interval, max_wait=10, not_found_grace=1
        )
        result = await poller.wait(receipt.workflow_id)
        returned_at = utcnow()
    finally:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    return receipt, result, returned_at


@pytest.mark.asyncio
async def test_lisbon_two_day_answer_is_padded_to_three(
    state, scripted_backend, lisbon_output, no_wait
):
    parameters = TripParameters(destination="Lisbon", duration_days=3)
    backend = scripted_backend(lisbon_output)

    receipt, result, _ = await _run_job(state, backend, parameters, no_wait)

    assert result.outcome == PollOutcome.COMPLETED
    days = result.document.days
    assert len(days) == 3
    assert [d.low_confidence for d in days] == [False, False, True]
    assert days[2].title == "Day 3: Open exploration"

    record = await state.get_status(receipt.workflow_id)
    assert record.status == WorkflowStatus.COMPLETED
    assert record.document == result.document
    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_generation_that_always_times_out_fails_the_job(state, scripted_backend, no_wait):
    parameters = TripParameters(destination="Lisbon", duration_days=3)
    backend = scripted_backend("{}", delay=5)
    interval = 0.05

    receipt, result, returned_at = await _run_job(
        state,
        backend,
        parameters,
        no_wait,
        pipeline_config=PipelineConfig(generation_timeout=0.05),
        poll_interval=interval,
    )

    assert result.outcome == PollOutcome.FAILED
    assert result.error.failed_step == "generate"
    assert result.error.kind == ErrorKind.TIMEOUT
    assert len(backend.calls) == 3

    record = await state.get_status(receipt.workflow_id)
    assert record.status == WorkflowStatus.FAILED
    assert record.document is None
    # Seen within one poll interval of the failure write, plus scheduling slack.
    assert (returned_at - record.updated_at).total_seconds() <= interval + 0.25


@pytest.mark.asyncio
async def test_terminal_record_is_stable_across_reads(state, scripted_backend, lisbon_output, no_wait):
    parameters = TripParameters(destination="Lisbon", duration_days=3)
    receipt, result, _ = await _run_job(state, scripted_backend(lisbon_output), parameters, no_wait)

    views = [await state.read_status(receipt.workflow_id) for _ in range(3)]
    assert {v.status for v in views} == {WorkflowStatus.COMPLETED}
    assert all(v.document == result.document for v in views)
    assert len({v.updated_at for v in views}) == 1


@pytest.mark.asyncio
async def test_worker_and_client_in_separate_processes(tmp_path, scripted_backend, lisbon_output, no_wait):
    """Worker and poller only share the SQLite file, as separate processes would."""
    db_path = tmp_path / "state.db"
    worker_state = WorkflowStateMachine(SQLiteStateStore(db_path))
    client_state = WorkflowStateMachine(SQLiteStateStore(db_path))
    transport = InMemoryTransport(poll_interval=0.01)

    receipt = await ItineraryDispatcher(transport, client_state).dispatch(
        TripParameters(destination="Lisbon", duration_days=3)
    )
    worker = JobWorker(
        transport,
        PipelineRunner(worker_state, retry_policy=no_wait),
        ItineraryPipeline(scripted_backend(lisbon_output)),
        worker_state,
    )
    poller = StatusPoller(StateStatusSource(client_state), interval=0.05, max_wait=10)

    _, result = await asyncio.gather(worker.start(lifespan=0.5), poller.wait(receipt.workflow_id))

    assert result.outcome == PollOutcome.COMPLETED
    assert len(result.document.days) == 3


@pytest.mark.asyncio
async def test_client_gives_up_while_job_keeps_running(state, scripted_backend, no_wait):
    backend = scripted_backend("{}", delay=0.5)
    transport = InMemoryTransport(poll_interval=0.01)
    receipt = await ItineraryDispatcher(transport, state).dispatch(
        TripParameters(destination="Lisbon", duration_days=3)
    )
    worker = JobWorker(
        transport, PipelineRunner(state, retry_policy=no_wait), ItineraryPipeline(backend), state
    )
    worker_task = asyncio.create_task(worker.start(lifespan=1.0))

    poller = StatusPoller(StateStatusSource(state), interval=0.05, max_wait=0.2)
    result = await poller.wait(receipt.workflow_id)
    assert result.outcome == PollOutcome.TIMED_OUT
    assert result.last_status == WorkflowStatus.PROCESSING

    await worker_task
    assert (await state.get_status(receipt.workflow_id)).status == WorkflowStatus.COMPLETED
