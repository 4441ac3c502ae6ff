"""Command line interface for operating pipewright jobs and flows."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import typer

from .errors import JobNotFound, JobStateError, PipewrightError
from .logs import configure_logging
from .runtime import Runtime, build_runtime

app = typer.Typer(help="CLI for pipewright workflows")

# Command groups
jobs_app = typer.Typer(help="Commands for inspecting and recovering jobs")
flows_app = typer.Typer(help="Commands for running and scheduling flows")

app.add_typer(jobs_app, name="jobs")
app.add_typer(flows_app, name="flows")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Log level for pipewright loggers"),
) -> None:
    """pipewright CLI entry point."""
    configure_logging(log_level)


def _runtime() -> Runtime:
    return build_runtime()


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@jobs_app.command("list")
def jobs_list(
    status: Optional[str] = typer.Option(None, help="Filter by base status, e.g. failed"),
    flow_id: Optional[int] = typer.Option(None, help="Only jobs of this flow"),
    limit: int = typer.Option(50, help="Maximum number of jobs to show"),
) -> None:
    """
    List jobs, newest first.

    Example:
        pipewright jobs list --status failed
        # Output: 12    flow=3    failed - timeout
    """
    runtime = _runtime()
    jobs = asyncio.run(runtime.repository.list_jobs(status=status, flow_id=flow_id, limit=limit))
    if not jobs:
        typer.echo("No jobs found")
        return
    for job in jobs:
        typer.echo(f"{job.job_id}\tflow={job.flow_id}\t{job.status}")


@jobs_app.command("show")
def jobs_show(job_id: int) -> None:
    """Show a job with its engine data."""
    runtime = _runtime()
    job = asyncio.run(runtime.repository.get_job(job_id))
    if job is None:
        _fail("Job not found")
    typer.echo(f"Job {job.job_id}: {job.status}")
    typer.echo(f"Flow: {job.flow_id}  Pipeline: {job.pipeline_id}  Source: {job.source}")
    typer.echo(f"Created: {job.created_at}  Completed: {job.completed_at or '-'}")
    if job.engine_data:
        typer.echo(json.dumps(job.engine_data, indent=2, default=str))


@jobs_app.command("fail")
def jobs_fail(
    job_id: int,
    reason: str = typer.Option("manual", help="Reason recorded in the status"),
) -> None:
    """Mark a processing job as failed."""
    runtime = _runtime()
    try:
        result = asyncio.run(runtime.recovery.fail_job(job_id, reason))
    except (JobNotFound, JobStateError) as e:
        _fail(str(e))
    typer.echo(result.message)


@jobs_app.command("retry")
def jobs_retry(
    job_id: int,
    force: bool = typer.Option(False, help="Retry jobs that did not fail"),
) -> None:
    """Mark a job for retry and requeue its prompt."""
    runtime = _runtime()
    try:
        result = asyncio.run(runtime.recovery.retry_job(job_id, force=force))
    except (JobNotFound, JobStateError) as e:
        _fail(str(e))
    typer.echo(result.message)


@jobs_app.command("recover")
def jobs_recover(
    dry_run: bool = typer.Option(False, help="Report without changing anything"),
    flow_id: Optional[int] = typer.Option(None, help="Only jobs of this flow"),
    timeout_hours: Optional[int] = typer.Option(None, help="Hours before a job counts as stuck"),
) -> None:
    """
    Finalize stuck processing jobs.

    Applies pending status overrides and fails jobs older than the timeout.

    Example:
        pipewright jobs recover --dry-run
    """
    runtime = _runtime()
    timeout = timeout_hours or runtime.config.settings.stuck_job_timeout_hours
    report = asyncio.run(
        runtime.recovery.recover_stuck_jobs(dry_run=dry_run, flow_id=flow_id, timeout_hours=timeout)
    )
    typer.echo(report.message)
    for entry in report.jobs:
        typer.echo(f"- {entry.job_id}: {entry.status} -> {entry.target_status or '-'} {entry.reason or ''}".rstrip())


@flows_app.command("list")
def flows_list(
    pipeline_id: Optional[int] = typer.Option(None, help="Only flows of this pipeline"),
) -> None:
    """List flows with their schedule and last run."""
    runtime = _runtime()
    flows = asyncio.run(runtime.repository.list_flows(pipeline_id))
    if not flows:
        typer.echo("No flows found")
        return
    for flow in flows:
        interval = flow.scheduling_config.get("interval", "manual")
        typer.echo(f"{flow.flow_id}\t{flow.name}\t{interval}\t{flow.last_run_at or '-'}")


async def _run_flow(runtime: Runtime, flow_id: int, drain: bool) -> int:
    started = await runtime.engine.run_flow_now(flow_id)
    if not started:
        return -1
    return await runtime.worker.drain() if drain else 0


@flows_app.command("run")
def flows_run(
    flow_id: int,
    drain: bool = typer.Option(True, help="Execute the queued steps in this process"),
) -> None:
    """Start a job for a flow now."""
    runtime = _runtime()
    ran = asyncio.run(_run_flow(runtime, flow_id, drain))
    if ran < 0:
        _fail(f"Flow {flow_id} could not be started")
    typer.echo(f"Flow {flow_id} started ({ran} actions executed)")


@flows_app.command("schedule")
def flows_schedule(flow_id: int, when: str) -> None:
    """
    Set a flow's trigger.

    WHEN is 'manual', a unix timestamp or a named interval such as 'hourly'.
    """
    runtime = _runtime()
    try:
        plan = asyncio.run(runtime.engine.run_flow_later(flow_id, when))
    except PipewrightError as e:
        _fail(str(e))
    typer.echo(f"Flow {flow_id} scheduled: {json.dumps(plan)}")


@flows_app.command("queue-add")
def flows_queue_add(flow_id: int, flow_step_id: str, prompt: str) -> None:
    """Append a prompt to an AI step's queue."""
    runtime = _runtime()
    try:
        added = asyncio.run(runtime.prompt_queue.add(flow_id, flow_step_id, prompt))
    except PipewrightError as e:
        _fail(str(e))
    if not added:
        _fail(f"Prompt not added to flow {flow_id} step {flow_step_id}")
    typer.echo(f"Prompt queued for flow {flow_id} step {flow_step_id}")


@app.command("worker")
def worker(
    lifespan: Optional[float] = typer.Option(None, help="Seconds to run (default: forever)"),
) -> None:
    """
    Run a worker draining scheduled flow runs and steps.

    Example:
        pipewright worker --lifespan 300
    """
    runtime = _runtime()
    typer.echo(f"Starting worker ({runtime.config.scheduler.backend} scheduler)")
    asyncio.run(runtime.worker.start(lifespan=lifespan))
    typer.echo(f"Worker stopped after {runtime.worker.processed} actions")
