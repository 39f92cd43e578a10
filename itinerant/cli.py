"""Command line interface for itinerant."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import date
from typing import List, Optional

import typer

from .config import ItinerantConfig, load_config
from .contracts import DispatchError, WorkflowNotFoundError
from .dispatch import ItineraryDispatcher, TriggerReceipt
from .execute import PipelineRunner
from .generation import get_backend
from .models import TripParameters
from .persistence import get_store
from .pipeline import ItineraryPipeline
from .polling import HttpStatusSource, PollOutcome, PollResult, StateStatusSource, StatusPoller
from .search import ItineraryIndex
from .state import WorkflowStateMachine
from .transports import InMemoryTransport, get_transport
from .worker import JobWorker

app = typer.Typer(help="CLI for itinerant itinerary jobs")

worker_app = typer.Typer(help="Commands for running job workers")
workflow_app = typer.Typer(help="Commands for inspecting workflows")

app.add_typer(worker_app, name="worker")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """itinerant CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _state(config: ItinerantConfig) -> WorkflowStateMachine:
    store = get_store(config=config)
    return WorkflowStateMachine(store, key_prefix=config.store.key_prefix)


def _worker(config: ItinerantConfig, transport, state: WorkflowStateMachine) -> JobWorker:
    runner = PipelineRunner(
        state,
        retry_policy=config.pipeline.retry,
        step_timeout=config.pipeline.step_timeout,
    )
    pipeline = ItineraryPipeline(
        get_backend(config),
        index=ItineraryIndex(state.store),
        config=config.pipeline,
    )
    return JobWorker(transport, runner, pipeline, state)


def _echo_result(result: PollResult) -> None:
    if result.outcome == PollOutcome.COMPLETED:
        typer.secho(f"Workflow {result.workflow_id} completed", fg=typer.colors.GREEN)
        typer.echo(result.document.model_dump_json(indent=2))
        return
    if result.outcome == PollOutcome.FAILED:
        typer.secho(
            f"Workflow {result.workflow_id} failed at {result.error.failed_step}: "
            f"{result.error.message}",
            fg=typer.colors.RED,
        )
    elif result.outcome == PollOutcome.TIMED_OUT:
        typer.secho(
            f"Gave up after {result.elapsed:.0f}s; workflow {result.workflow_id} "
            f"is still {result.last_status.value if result.last_status else 'unknown'}",
            fg=typer.colors.YELLOW,
        )
    else:
        typer.secho(f"Workflow {result.workflow_id} not found", fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command("generate")
def generate(
    destination: str,
    days: Optional[int] = typer.Option(None, help="Trip length in days"),
    depart: Optional[str] = typer.Option(None, help="Departure date (YYYY-MM-DD)"),
    return_date: Optional[str] = typer.Option(
        None, "--return", help="Return date (YYYY-MM-DD)"
    ),
    interest: List[str] = typer.Option([], help="Interest; repeat for several"),
    session_id: Optional[str] = typer.Option(None, help="Client session id"),
    wait: bool = typer.Option(True, help="Poll until the job finishes"),
    max_wait: Optional[float] = typer.Option(None, help="Seconds to wait for a result"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Trigger an itinerary job and optionally wait for the document.

    With the in-memory transport a worker runs inside this process;
    otherwise start one with ``itinerant worker start``.

    Example:
        itinerant generate Lisbon --days 3 --interest food --interest history
    """
    config = load_config(config_path)
    try:
        parameters = TripParameters(
            destination=destination,
            duration_days=days,
            depart_date=date.fromisoformat(depart) if depart else None,
            return_date=date.fromisoformat(return_date) if return_date else None,
            interests=interest,
        )
    except ValueError as e:
        typer.secho(f"Invalid trip parameters: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _run() -> Optional[PollResult]:
        state = _state(config)
        transport = get_transport(config=config)
        dispatcher = ItineraryDispatcher(
            transport, state, status_base_url=config.polling.status_base_url
        )
        try:
            receipt = await dispatcher.dispatch(parameters, session_id=session_id)
        except DispatchError as e:
            typer.secho(str(e), fg=typer.colors.RED)
            raise typer.Exit(code=1)
        typer.echo(f"Workflow {receipt.workflow_id} {receipt.status.value}")
        typer.echo(f"Status: {receipt.status_locator}")
        if not wait:
            await transport.disconnect()
            return None

        worker = worker_task = None
        if isinstance(transport, InMemoryTransport):
            worker = _worker(config, transport, state)
            worker_task = asyncio.create_task(worker.start())
        try:
            poller = StatusPoller(
                StateStatusSource(state),
                interval=config.polling.interval,
                max_wait=max_wait or config.polling.max_wait,
                not_found_grace=config.polling.not_found_grace,
            )
            result = await poller.wait(receipt.workflow_id)
            if worker is not None and result.outcome != PollOutcome.TIMED_OUT:
                await worker.idle.wait()
            return result
        finally:
            if worker_task is not None:
                worker_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await worker_task
            await transport.disconnect()
            await state.store.close()

    result = asyncio.run(_run())
    if result is not None:
        _echo_result(result)


@worker_app.command("start")
def worker_start(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker lifetime in seconds (default: run indefinitely)"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Run a worker that consumes itinerary jobs.

    Example:
        itinerant worker start --lifespan 300
    """
    config = load_config(config_path)

    async def _run() -> int:
        state = _state(config)
        transport = get_transport(config=config)
        worker = _worker(config, transport, state)
        try:
            await worker.start(lifespan=lifespan)
        finally:
            await transport.disconnect()
            await state.store.close()
        return worker.handled

    typer.echo(f"Starting worker ({config.transport.backend} transport)")
    handled = asyncio.run(_run())
    typer.echo(f"Worker stopped after {handled} job(s)")


@workflow_app.command("status")
def workflow_status(
    workflow_id: str,
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Print the status view of a workflow as JSON."""
    config = load_config(config_path)
    view = asyncio.run(_state(config).read_status(workflow_id))
    if view is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(view.model_dump_json(indent=2))


@workflow_app.command("show")
def workflow_show(
    workflow_id: str,
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Show a workflow's status and checkpointed steps.

    Example:
        itinerant workflow show workflow_3f2a...
        # Output: Workflow workflow_3f2a...: completed
        #         - generate: completed after 2 attempt(s)
        #         - normalize: completed after 1 attempt(s)
    """
    config = load_config(config_path)
    record = asyncio.run(_state(config).get_status(workflow_id))
    if record is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    typer.echo(f"Workflow {record.workflow_id}: {record.status.value}")
    typer.echo(f"Session: {record.session_id}")
    typer.echo(f"Parameters: {record.input_parameters.model_dump_json(exclude_none=True)}")
    for step in record.steps.values():
        typer.echo(f"- {step.step_name}: {step.status} after {step.attempts} attempt(s)")
    if record.error:
        typer.echo(
            f"Error ({record.error.kind.value}) at {record.error.failed_step}: "
            f"{record.error.message}"
        )


@workflow_app.command("resume")
def workflow_resume(
    workflow_id: str,
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Re-publish the job of an unfinished workflow, e.g. after a worker crash.

    Steps the workflow already checkpointed are reused, not run again.

    Example:
        itinerant workflow resume workflow_3f2a...
    """
    config = load_config(config_path)

    async def _run() -> TriggerReceipt:
        state = _state(config)
        transport = get_transport(config=config)
        dispatcher = ItineraryDispatcher(
            transport, state, status_base_url=config.polling.status_base_url
        )
        try:
            return await dispatcher.resume(workflow_id)
        finally:
            await transport.disconnect()
            await state.store.close()

    try:
        receipt = asyncio.run(_run())
    except WorkflowNotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    except DispatchError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if receipt.status.is_terminal:
        typer.echo(f"Workflow {receipt.workflow_id} already {receipt.status.value}")
        return
    typer.echo(f"Workflow {receipt.workflow_id} resumed")
    typer.echo(f"Status: {receipt.status_locator}")


@workflow_app.command("poll")
def workflow_poll(
    workflow_id: str,
    interval: Optional[float] = typer.Option(None, help="Seconds between polls"),
    max_wait: Optional[float] = typer.Option(None, help="Seconds before giving up"),
    url: Optional[str] = typer.Option(
        None, help="Status service base URL; reads the state store when unset"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Poll a workflow until it finishes or the wait runs out."""
    config = load_config(config_path)
    base_url = url or config.polling.status_base_url

    async def _run() -> PollResult:
        source = (
            HttpStatusSource(base_url) if base_url else StateStatusSource(_state(config))
        )
        poller = StatusPoller(
            source,
            interval=interval or config.polling.interval,
            max_wait=max_wait or config.polling.max_wait,
            not_found_grace=config.polling.not_found_grace,
        )
        return await poller.wait(workflow_id)

    _echo_result(asyncio.run(_run()))


@app.command("search")
def search(
    destination: str,
    limit: int = typer.Option(10, help="Maximum number of results"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """List itineraries previously generated for a destination."""
    config = load_config(config_path)
    entries = asyncio.run(ItineraryIndex(get_store(config=config)).search(destination, limit))
    if not entries:
        typer.echo("No itineraries found")
        return
    for entry in entries:
        typer.echo(
            json.dumps(
                {
                    "workflow_id": entry.workflow_id,
                    "title": entry.title,
                    "days": entry.duration_days,
                }
            )
        )


if __name__ == "__main__":
    app()
