import pytest

from pipewright.health import FlowHealthTracker
from pipewright.persistence import InMemoryJobRepository


async def _finish(repo, flow_id, status):
    job = await repo.create_job(1, flow_id)
    await repo.start_job(job.job_id)
    if status != "processing":
        await repo.complete_job(job.job_id, status)
    return job


@pytest.mark.asyncio
async def test_streaks_count_from_newest_final_job():
    repo = InMemoryJobRepository()
    for status in ["failed - x", "completed", "completed_no_items", "failed - y", "failed - z", "processing"]:
        await _finish(repo, 1, status)
    tracker = FlowHealthTracker(repo)

    health = await tracker.refresh(1)

    assert health.consecutive_failures == 2
    assert health.consecutive_no_items == 0
    assert health.latest_status == "processing"


@pytest.mark.asyncio
async def test_no_items_streak_and_problem_flows():
    repo = InMemoryJobRepository()
    for _ in range(3):
        await _finish(repo, 1, "completed_no_items")
    await _finish(repo, 2, "completed")
    tracker = FlowHealthTracker(repo)

    await tracker.refresh(1)
    await tracker.refresh(2)

    assert tracker.get(1).consecutive_no_items == 3
    assert [h.flow_id for h in tracker.problem_flows()] == [1]
    assert tracker.problem_flows(threshold=4) == []
    assert tracker.get(3) is None


@pytest.mark.asyncio
async def test_completion_listener_ignores_direct_jobs():
    repo = InMemoryJobRepository()
    tracker = FlowHealthTracker(repo)
    direct = await repo.create_job("direct", "direct", source="direct")
    flow_job = await _finish(repo, 5, "failed - boom")

    await tracker.on_job_complete(direct)
    await tracker.on_job_complete(await repo.get_job(flow_job.job_id))

    assert tracker.get(5).consecutive_failures == 1
    assert list(tracker._cache) == [5]
