"""Pipeline step runner tests."""

import asyncio
from collections import Counter

import pytest
import pytest_asyncio

from itinerant.contracts import (
    ErrorKind,
    StepFailed,
    WorkflowNotFoundError,
    WorkflowStatus,
)
from itinerant.execute import PipelineRunner
from itinerant.normalize import normalize
from itinerant.persistence import InMemoryStateStore
from itinerant.state import WorkflowStateMachine
from itinerant.steps import JobContext, StepSkipped, best_effort, critical
from itinerant.utils.retry import RetryPolicy


class Crash(BaseException):
    """Simulates the worker process dying mid-step."""


def make_context(parameters, workflow_id="wf-1"):
    return JobContext(workflow_id=workflow_id, session_id="session-1", parameters=parameters)


def pipeline(calls, fail_at=None, error=None):
    async def generate(ctx):
        calls["generate"] += 1
        if fail_at == "generate":
            raise error
        return ctx.evolve(raw_output='{"title": "Lisbon"}'), {"chars": 19}

    async def normalize_step(ctx):
        calls["normalize"] += 1
        if fail_at == "normalize":
            raise error
        return ctx.evolve(document=normalize(ctx.raw_output, ctx.parameters)), "ok"

    async def publish(ctx):
        calls["publish"] += 1
        if fail_at == "publish":
            raise error
        return {"published": ctx.document.title}

    return [
        critical("generate", generate),
        critical("normalize", normalize_step),
        best_effort("publish", publish),
    ]


@pytest_asyncio.fixture
async def started(state, lisbon):
    await state.create("wf-1", "session-1", lisbon)
    return state


@pytest.mark.asyncio
async def test_runs_all_steps_and_completes(started, runner, lisbon):
    calls = Counter()
    result = await runner.run(pipeline(calls), make_context(lisbon))

    assert result.status == WorkflowStatus.COMPLETED
    assert result.document.title == "Lisbon"
    assert len(result.document.days) == 3
    assert result.executed == ["generate", "normalize", "publish"]
    assert result.diagnostics == []
    assert result.context.outputs["publish"] == {"published": "Lisbon"}

    record = await started.get_status("wf-1")
    assert record.status == WorkflowStatus.COMPLETED
    assert record.raw_output == '{"title": "Lisbon"}'
    assert set(record.steps) == {"generate", "normalize"}
    assert record.steps["generate"].output == {"chars": 19}


@pytest.mark.asyncio
async def test_transient_failures_are_retried(started, runner, lisbon):
    attempts = Counter()

    async def flaky(ctx):
        attempts["flaky"] += 1
        if attempts["flaky"] < 3:
            raise StepFailed("rate limited")
        return ctx.evolve(document=normalize(None, ctx.parameters)), None

    result = await runner.run([critical("flaky", flaky)], make_context(lisbon))

    assert result.status == WorkflowStatus.COMPLETED
    assert attempts["flaky"] == 3
    record = await started.get_status("wf-1")
    assert record.steps["flaky"].attempts == 3


@pytest.mark.asyncio
async def test_critical_step_exhausting_retries_fails_workflow(started, runner, lisbon):
    calls = Counter()
    steps = pipeline(calls, fail_at="generate", error=RuntimeError("upstream down"))

    result = await runner.run(steps, make_context(lisbon))

    assert result.status == WorkflowStatus.FAILED
    assert result.error.failed_step == "generate"
    assert result.error.kind == ErrorKind.TRANSIENT
    assert "upstream down" in result.error.message
    assert calls == Counter({"generate": 3})

    record = await started.get_status("wf-1")
    assert record.status == WorkflowStatus.FAILED
    assert record.error.failed_step == "generate"
    assert record.document is None


@pytest.mark.asyncio
async def test_permanent_failure_skips_remaining_attempts(started, runner, lisbon):
    calls = Counter()
    steps = pipeline(calls, fail_at="normalize", error=StepFailed("bad input", retryable=False))

    result = await runner.run(steps, make_context(lisbon))

    assert result.status == WorkflowStatus.FAILED
    assert result.error.kind == ErrorKind.PERMANENT
    assert result.error.failed_step == "normalize"
    assert calls == Counter({"generate": 1, "normalize": 1})


@pytest.mark.asyncio
async def test_step_timeout_is_reported(started, state, lisbon):
    async def slow(ctx):
        await asyncio.sleep(1)

    runner = PipelineRunner(state, retry_policy=RetryPolicy(max_attempts=2, base=0, jitter=0))
    result = await runner.run([critical("slow", slow, timeout=0.01)], make_context(lisbon))

    assert result.status == WorkflowStatus.FAILED
    assert result.error.kind == ErrorKind.TIMEOUT
    assert result.error.failed_step == "slow"


@pytest.mark.asyncio
async def test_best_effort_failure_only_reaches_diagnostics(started, runner, lisbon):
    calls = Counter()
    steps = pipeline(calls, fail_at="publish", error=RuntimeError("search index offline"))

    result = await runner.run(steps, make_context(lisbon))

    assert result.status == WorkflowStatus.COMPLETED
    assert result.document.title == "Lisbon"
    assert result.error is None
    assert calls["publish"] == 3
    [diagnostic] = result.diagnostics
    assert diagnostic.step_name == "publish"
    assert diagnostic.attempts == 3
    assert "search index offline" in diagnostic.message
    assert isinstance(result.context.outputs["publish"], StepSkipped)

    record = await started.get_status("wf-1")
    assert record.status == WorkflowStatus.COMPLETED
    assert record.error is None
    assert "publish" not in record.steps


@pytest.mark.asyncio
async def test_workflow_completes_before_trailing_best_effort_steps(started, runner, lisbon):
    seen = []

    async def make_document(ctx):
        return ctx.evolve(document=normalize(None, ctx.parameters)), None

    async def observe(ctx):
        seen.append((await started.read_status(ctx.workflow_id)).status)

    await runner.run(
        [critical("document", make_document), best_effort("observe", observe)],
        make_context(lisbon),
    )
    assert seen == [WorkflowStatus.COMPLETED]


@pytest.mark.asyncio
async def test_completed_steps_are_not_rerun(started, runner, lisbon):
    calls = Counter()

    async def crash(ctx):
        calls["crash"] += 1
        raise Crash()

    async def finish(ctx):
        calls["finish"] += 1
        return ctx.evolve(document=normalize(ctx.raw_output, ctx.parameters)), None

    first, second, _ = pipeline(calls)
    with pytest.raises(Crash):
        await runner.run([first, second, critical("third", crash)], make_context(lisbon))
    assert calls == Counter({"generate": 1, "normalize": 1, "crash": 1})
    assert (await started.get_status("wf-1")).status == WorkflowStatus.PROCESSING

    result = await runner.run([first, second, critical("third", finish)], make_context(lisbon))

    assert result.status == WorkflowStatus.COMPLETED
    assert result.reused == ["generate", "normalize"]
    assert result.executed == ["third"]
    assert calls == Counter({"generate": 1, "normalize": 1, "crash": 1, "finish": 1})
    assert result.context.raw_output == '{"title": "Lisbon"}'
    assert result.context.outputs["generate"] == {"chars": 19}


@pytest.mark.asyncio
async def test_terminal_workflow_is_not_rerun(started, runner, lisbon):
    calls = Counter()
    first = await runner.run(pipeline(calls), make_context(lisbon))
    again = await runner.run(pipeline(calls), make_context(lisbon))

    assert again.status == first.status == WorkflowStatus.COMPLETED
    assert again.document == first.document
    assert again.executed == []
    assert calls == Counter({"generate": 1, "normalize": 1, "publish": 1})


@pytest.mark.asyncio
async def test_missing_document_fails_workflow(started, runner, lisbon):
    async def noop(ctx):
        return "nothing"

    result = await runner.run([critical("noop", noop)], make_context(lisbon))

    assert result.status == WorkflowStatus.FAILED
    assert result.error.kind == ErrorKind.PERMANENT
    assert result.error.failed_step == "noop"


@pytest.mark.asyncio
async def test_unserializable_output_is_permanent(started, runner, lisbon):
    calls = Counter()

    async def opaque(ctx):
        calls["opaque"] += 1
        return object()

    result = await runner.run([critical("opaque", opaque)], make_context(lisbon))

    assert result.status == WorkflowStatus.FAILED
    assert result.error.kind == ErrorKind.PERMANENT
    assert calls["opaque"] == 1


@pytest.mark.asyncio
async def test_duplicate_step_names_are_rejected(started, runner, lisbon):
    calls = Counter()
    steps = pipeline(calls)
    with pytest.raises(ValueError):
        await runner.run(steps + steps[:1], make_context(lisbon))
    assert calls == Counter()


@pytest.mark.asyncio
async def test_unknown_workflow_raises(runner, lisbon):
    with pytest.raises(WorkflowNotFoundError):
        await runner.run(pipeline(Counter()), make_context(lisbon, "missing"))


class BrokenStore(InMemoryStateStore):
    def __init__(self):
        super().__init__()
        self.broken = False

    async def set(self, key, value):
        if self.broken:
            raise ConnectionError("store unavailable")
        await super().set(key, value)


@pytest.mark.asyncio
async def test_checkpoint_failure_fails_without_raising(lisbon, no_wait):
    store = BrokenStore()
    state = WorkflowStateMachine(store)
    await state.create("wf-1", "session-1", lisbon)
    store.broken = True

    runner = PipelineRunner(state, retry_policy=no_wait)
    result = await runner.run(pipeline(Counter()), make_context(lisbon))

    assert result.status == WorkflowStatus.FAILED
    assert result.error.kind == ErrorKind.INTERNAL
    assert result.error.failed_step == "generate"


@pytest.mark.asyncio
async def test_skipped_marker_survives_later_context_changes(started, runner, lisbon):
    async def enrich(ctx):
        raise RuntimeError("down")

    async def make_document(ctx):
        return ctx.evolve(document=normalize(None, ctx.parameters)), None

    result = await runner.run(
        [best_effort("enrich", enrich), critical("document", make_document)],
        make_context(lisbon),
    )

    assert result.status == WorkflowStatus.COMPLETED
    skipped = result.context.outputs["enrich"]
    assert isinstance(skipped, StepSkipped)
    assert skipped.reason == "RuntimeError: down"


@pytest.mark.asyncio
async def test_best_effort_step_before_last_critical_is_not_rerun(started, runner, lisbon):
    calls = Counter()

    async def generate(ctx):
        calls["generate"] += 1
        return ctx.evolve(raw_output="{}"), None

    async def notify(ctx):
        calls["notify"] += 1
        return {"notified": True}

    async def crash(ctx):
        raise Crash()

    async def finish(ctx):
        calls["finish"] += 1
        return ctx.evolve(document=normalize(ctx.raw_output, ctx.parameters)), None

    head = [critical("generate", generate), best_effort("notify", notify)]
    with pytest.raises(Crash):
        await runner.run(head + [critical("last", crash)], make_context(lisbon))
    assert set((await started.get_status("wf-1")).steps) == {"generate", "notify"}

    result = await runner.run(head + [critical("last", finish)], make_context(lisbon))

    assert result.status == WorkflowStatus.COMPLETED
    assert result.reused == ["generate", "notify"]
    assert result.executed == ["last"]
    assert calls == Counter({"generate": 1, "notify": 1, "finish": 1})
    assert result.context.outputs["notify"] == {"notified": True}


@pytest.mark.asyncio
async def test_skipped_best_effort_step_is_retried_on_resume(started, runner, lisbon):
    calls = Counter()

    async def notify(ctx):
        calls["notify"] += 1
        raise RuntimeError("mail relay down")

    async def crash(ctx):
        raise Crash()

    with pytest.raises(Crash):
        await runner.run(
            [best_effort("notify", notify), critical("last", crash)], make_context(lisbon)
        )
    assert "notify" not in (await started.get_status("wf-1")).steps

    async def finish(ctx):
        return ctx.evolve(document=normalize(None, ctx.parameters)), None

    result = await runner.run(
        [best_effort("notify", notify), critical("last", finish)], make_context(lisbon)
    )

    assert result.status == WorkflowStatus.COMPLETED
    assert result.executed == ["notify", "last"]
    assert calls["notify"] == 6
