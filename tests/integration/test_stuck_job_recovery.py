"""Recovery of jobs left in processing by an interrupted worker."""

from datetime import timedelta

import pytest

from pipewright.contracts import utcnow
from pipewright.engine_data import EngineData


async def _stuck_job(harness, flow, hours_ago, prompt=None):
    """Bootstrap a job the way the engine does, then abandon it mid-step."""
    runtime = harness.runtime
    job = await runtime.jobs.create_job(
        flow.pipeline_id, flow.flow_id, created_at=utcnow() - timedelta(hours=hours_ago)
    )
    await runtime.jobs.start_job(job.job_id)
    pipeline = await runtime.repository.get_pipeline(flow.pipeline_id)
    await runtime.repository.store_engine_data(
        job.job_id,
        EngineData.snapshot(job, flow.flow_config, pipeline.pipeline_config, flow, pipeline),
    )
    if prompt is not None:
        queued = await runtime.prompt_queue.pop(flow.flow_id, "ai_1")
        assert queued.prompt == prompt
        engine = await EngineData.load(runtime.repository, job.job_id)
        await engine.set_prompt_backup("ai_1", queued.prompt, queued.added_at.isoformat())
    return job


@pytest.mark.asyncio
async def test_three_hour_stuck_job_fails_and_requeues_prompt_once(make_harness):
    harness = make_harness()
    runtime = harness.runtime
    _, flow = await harness.create_flow(user_message=None)
    await runtime.prompt_queue.add(flow.flow_id, "ai_1", "Summarize today's news")
    job = await _stuck_job(harness, flow, hours_ago=3, prompt="Summarize today's news")
    assert await runtime.prompt_queue.list(flow.flow_id, "ai_1") == []

    report = await runtime.recovery.recover_stuck_jobs(timeout_hours=2)

    assert report.timed_out == 1
    assert report.requeued == 1
    assert report.recovered == 0
    assert report.message == "Recovery complete. Recovered: 0, Timed out: 1, Requeued: 1"
    failed = await runtime.repository.get_job(job.job_id)
    assert failed.status == "failed - timeout"
    assert failed.completed_at is not None
    assert "queued_prompt_backup" not in failed.engine_data

    # a second pass finds nothing and does not requeue again
    again = await runtime.recovery.recover_stuck_jobs(timeout_hours=2)
    assert again.timed_out == 0
    queue = await runtime.prompt_queue.list(flow.flow_id, "ai_1")
    assert [q.prompt for q in queue] == ["Summarize today's news"]


@pytest.mark.asyncio
async def test_recent_jobs_are_left_alone(make_harness):
    harness = make_harness()
    _, flow = await harness.create_flow()
    job = await _stuck_job(harness, flow, hours_ago=1)

    report = await harness.runtime.recovery.recover_stuck_jobs(timeout_hours=2)

    assert report.timed_out == 0
    assert (await harness.repository.get_job(job.job_id)).status == "processing"


@pytest.mark.asyncio
async def test_dry_run_reports_without_changes(make_harness):
    harness = make_harness()
    _, flow = await harness.create_flow()
    job = await _stuck_job(harness, flow, hours_ago=5)

    report = await harness.runtime.recovery.recover_stuck_jobs(dry_run=True)

    assert report.dry_run
    assert report.timed_out == 1
    assert report.jobs[0].status == "would_timeout"
    assert report.message == "Dry run complete. Would recover 0 jobs, timeout 1 jobs."
    assert (await harness.repository.get_job(job.job_id)).status == "processing"


@pytest.mark.asyncio
async def test_override_pass_applies_final_status(make_harness):
    harness = make_harness()
    runtime = harness.runtime
    _, flow = await harness.create_flow()
    job = await _stuck_job(harness, flow, hours_ago=5)
    engine = await EngineData.load(runtime.repository, job.job_id)
    await engine.set_status_override("agent_skipped - duplicate")

    report = await runtime.recovery.recover_stuck_jobs()

    assert report.recovered == 1
    assert report.timed_out == 0
    assert report.jobs[0].target_status == "agent_skipped - duplicate"
    assert (await runtime.repository.get_job(job.job_id)).status == "agent_skipped - duplicate"


@pytest.mark.asyncio
async def test_override_pass_skips_non_final_status(make_harness):
    harness = make_harness()
    runtime = harness.runtime
    _, flow = await harness.create_flow()
    job = await _stuck_job(harness, flow, hours_ago=5)
    await runtime.repository.merge_engine_data(job.job_id, {"job_status": "processing"})

    report = await runtime.recovery.recover_stuck_jobs()

    assert report.skipped == 1
    assert report.timed_out == 0
    assert report.jobs[0].reason == "Invalid or non-final status: processing"
    assert (await runtime.repository.get_job(job.job_id)).status == "processing"
