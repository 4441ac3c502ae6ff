from datetime import timedelta

import pytest

from pipewright.config import PipewrightConfig, RedisConfig, SchedulerConfig
from pipewright.contracts import utcnow
from pipewright.scheduling import InMemoryScheduler, get_scheduler
from pipewright.scheduling.redis import RedisScheduler


@pytest.mark.asyncio
async def test_due_returns_only_ready_actions_in_order():
    scheduler = InMemoryScheduler()
    now = utcnow()
    later = await scheduler.schedule_once(now + timedelta(minutes=5), "execute_step", {"job_id": 1})
    second = await scheduler.schedule_once(now - timedelta(seconds=1), "execute_step", {"job_id": 2})
    first = await scheduler.schedule_once(now - timedelta(seconds=5), "execute_step", {"job_id": 3})

    due = await scheduler.due(now)

    assert [a.action_id for a in due] == [first.action_id, second.action_id]
    assert [a.action_id for a in await scheduler.pending()] == [later.action_id]
    assert await scheduler.due(now) == []


@pytest.mark.asyncio
async def test_cancel_matches_action_and_args():
    scheduler = InMemoryScheduler()
    await scheduler.schedule_once(None, "run_flow_now", {"flow_id": 1})
    await scheduler.schedule_once(None, "run_flow_now", {"flow_id": 2})
    await scheduler.schedule_once(None, "execute_step", {"job_id": 1, "flow_step_id": "a"})

    assert await scheduler.cancel("run_flow_now", {"flow_id": 1}) == 1
    assert [a.args for a in await scheduler.pending("run_flow_now")] == [{"flow_id": 2}]
    assert await scheduler.cancel("execute_step") == 1


@pytest.mark.asyncio
async def test_recurring_actions_are_rearmed():
    scheduler = InMemoryScheduler()
    start = utcnow() - timedelta(seconds=1)
    await scheduler.schedule_recurring(start, 60, "run_flow_now", {"flow_id": 1})

    (claimed,) = await scheduler.due()
    (next_run,) = await scheduler.pending()
    assert claimed.run_at == start
    assert next_run.run_at == start + timedelta(seconds=60)
    assert next_run.interval_seconds == 60


@pytest.mark.asyncio
async def test_subscribe_stops_after_lifespan():
    scheduler = InMemoryScheduler()
    scheduler.poll_interval = 0.01
    await scheduler.schedule_once(None, "execute_step", {"job_id": 1})

    seen = [action async for _, action in scheduler.subscribe(lifespan=0.05)]

    assert [a.args for a in seen] == [{"job_id": 1}]


def test_get_scheduler_from_config(monkeypatch):
    monkeypatch.delenv("PIPEWRIGHT_SCHEDULER", raising=False)
    config = PipewrightConfig(
        scheduler=SchedulerConfig(backend="redis", redis=RedisConfig(host="cache", port=6380))
    )
    scheduler = get_scheduler(config=config)
    assert isinstance(scheduler, RedisScheduler)
    assert (scheduler.host, scheduler.port) == ("cache", 6380)

    assert isinstance(get_scheduler("inmemory", config), InMemoryScheduler)
    with pytest.raises(ValueError):
        get_scheduler("kafka", config)
