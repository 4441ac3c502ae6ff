"""Flow execution engine: schedule, bootstrap, execute step, schedule next."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from .constants import DEFAULT_INTERVALS, DIRECT, EXECUTE_STEP, RUN_FLOW_NOW
from .contracts import DataPacket, Flow, Job, Pipeline, utcnow
from .engine_data import EngineData
from .errors import FlowNotFound, InvalidScheduleError, StepTypeNotFound
from .jobs import JobManager
from .navigator import FlowNavigator
from .packets import PacketStore
from .persistence.repository import JobRepository
from .scheduling.base import BaseScheduler
from .status import COMPLETED, COMPLETED_NO_ITEMS, is_status_final
from .steps.base import StepPayload
from .steps.registry import StepTypeRegistry

logger = logging.getLogger(__name__)

ScheduleWhen = Union[str, int, float, datetime]


class FlowEngine:
    """Drive jobs through their flow one step at a time.

    Each step ends by enqueuing the next one on the scheduler, so steps of
    a job never overlap and a process can stop between any two steps.
    """

    def __init__(
        self,
        repository: JobRepository,
        scheduler: BaseScheduler,
        packets: PacketStore,
        steps: StepTypeRegistry,
        jobs: JobManager,
        intervals: Optional[Dict[str, int]] = None,
    ) -> None:
        self.repository = repository
        self.scheduler = scheduler
        self.packets = packets
        self.steps = steps
        self.jobs = jobs
        self.intervals = intervals if intervals is not None else dict(DEFAULT_INTERVALS)

    # ------------------------------------------------------------------
    # Scheduling
    def _schedule_plan(self, when: ScheduleWhen) -> Dict[str, Any]:
        if when == "manual":
            return {"interval": "manual"}
        if isinstance(when, datetime):
            return {"interval": "one_time", "timestamp": int(when.timestamp())}
        if isinstance(when, (int, float)) and not isinstance(when, bool):
            return {"interval": "one_time", "timestamp": int(when)}
        if isinstance(when, str) and when.isdigit():
            return {"interval": "one_time", "timestamp": int(when)}
        if isinstance(when, str) and when in self.intervals:
            return {"interval": when, "interval_seconds": self.intervals[when]}
        raise InvalidScheduleError(
            f"Unknown schedule '{when}'. Use 'manual', a unix timestamp or one of: "
            f"{', '.join(sorted(self.intervals))}"
        )

    async def run_flow_later(self, flow_id: int, when: ScheduleWhen) -> Dict[str, Any]:
        """Replace the flow's trigger and persist the scheduling config."""
        plan = self._schedule_plan(when)
        flow = await self.repository.get_flow(flow_id)
        if flow is None:
            raise FlowNotFound(flow_id)

        args = {"flow_id": flow_id}
        await self.scheduler.cancel(RUN_FLOW_NOW, args)

        if plan["interval"] == "one_time":
            run_at = datetime.fromtimestamp(plan["timestamp"], tz=timezone.utc)
            await self.scheduler.schedule_once(run_at, RUN_FLOW_NOW, args)
            plan["scheduled_time"] = run_at.isoformat()
        elif plan["interval"] != "manual":
            first_run = utcnow() + timedelta(seconds=plan["interval_seconds"])
            await self.scheduler.schedule_recurring(
                first_run, plan["interval_seconds"], RUN_FLOW_NOW, args
            )
            plan["first_run"] = first_run.isoformat()

        await self.repository.update_flow_scheduling(flow_id, plan)
        logger.info(f"Flow scheduled flow_id={flow_id} interval={plan['interval']}")
        return plan

    # ------------------------------------------------------------------
    # Bootstrap
    async def run_flow_now(self, flow_id: int, job_id: Optional[int] = None) -> bool:
        """Start a job for a saved flow and queue its first step."""
        flow = await self.repository.get_flow(flow_id)
        if flow is None:
            logger.error(f"Cannot run missing flow flow_id={flow_id}")
            return False
        pipeline = await self.repository.get_pipeline(flow.pipeline_id)
        if pipeline is None:
            logger.error(f"Flow references missing pipeline flow_id={flow_id} pipeline_id={flow.pipeline_id}")
            return False

        if job_id is None:
            job = await self.jobs.create_job(flow.pipeline_id, flow.flow_id, source="flow")
        else:
            job = await self.repository.get_job(job_id)
            if job is None:
                logger.error(f"Cannot run flow for missing job job_id={job_id} flow_id={flow_id}")
                return False

        flow_config = {
            step_id: {"flow_id": flow.flow_id, "pipeline_id": flow.pipeline_id, **step}
            for step_id, step in flow.flow_config.items()
        }
        started = await self._bootstrap(job, flow_config, pipeline.pipeline_config, flow, pipeline)
        await self.repository.mark_flow_run(flow_id, utcnow())
        return started

    async def run_direct(
        self,
        flow_config: Dict[str, Dict[str, Any]],
        pipeline_config: Dict[str, Dict[str, Any]],
        source: str = DIRECT,
        label: Optional[str] = None,
    ) -> Job:
        """Run inline configs as an ephemeral ``direct`` job."""
        job = await self.jobs.create_job(DIRECT, DIRECT, source=source, label=label)
        flow_config = {
            step_id: {"flow_id": DIRECT, "pipeline_id": DIRECT, **step}
            for step_id, step in flow_config.items()
        }
        await self._bootstrap(job, flow_config, pipeline_config)
        return job

    async def _bootstrap(
        self,
        job: Job,
        flow_config: Dict[str, Dict[str, Any]],
        pipeline_config: Dict[str, Dict[str, Any]],
        flow: Optional[Flow] = None,
        pipeline: Optional[Pipeline] = None,
    ) -> bool:
        if not await self.jobs.start_job(job.job_id):
            return False
        await self.repository.store_engine_data(
            job.job_id, EngineData.snapshot(job, flow_config, pipeline_config, flow, pipeline)
        )
        first_step = FlowNavigator(flow_config).first_step()
        if first_step is None:
            await self.jobs.fail_job(job.job_id, "no_first_step", {"flow_id": job.flow_id})
            return False
        logger.info(f"Job bootstrapped job_id={job.job_id} flow_id={job.flow_id} first_step={first_step}")
        return await self.schedule_next_step(job.job_id, first_step, [])

    # ------------------------------------------------------------------
    # Step chaining
    async def schedule_next_step(
        self, job_id: int, flow_step_id: str, packets: List[DataPacket]
    ) -> bool:
        """Stage ``packets`` for the job and enqueue ``execute_step``."""
        try:
            if packets:
                job = await self.repository.get_job(job_id)
                flow_id = job.flow_id if job else DIRECT
                await self.packets.store(job_id, packets, flow_id)
            await self.scheduler.schedule_once(
                None, EXECUTE_STEP, {"job_id": job_id, "flow_step_id": flow_step_id}
            )
        except Exception:
            logger.exception(f"Failed to schedule step job_id={job_id} flow_step_id={flow_step_id}")
            return False
        logger.debug(f"Scheduled step job_id={job_id} flow_step_id={flow_step_id}")
        return True

    async def execute_step(self, job_id: int, flow_step_id: str) -> bool:
        """Run one step and either chain the next step or finalize the job."""
        job = await self.repository.get_job(job_id)
        if job is None:
            logger.error(f"execute_step for missing job job_id={job_id} flow_step_id={flow_step_id}")
            return False
        if is_status_final(job.status):
            logger.info(
                f"Ignoring step for finished job job_id={job_id} flow_step_id={flow_step_id} status={job.status}"
            )
            return False

        try:
            return await self._execute(job, flow_step_id)
        except Exception as e:
            logger.exception(f"Step execution raised job_id={job_id} flow_step_id={flow_step_id}")
            await self.jobs.fail_job(
                job_id,
                "exception_in_step_execution",
                {"flow_step_id": flow_step_id, "exception": f"{type(e).__name__}: {e}"},
            )
            return False

    async def _resolve_step_config(
        self, job: Job, engine: EngineData, flow_step_id: str
    ) -> Dict[str, Any]:
        step_config = engine.flow_step_config(flow_step_id)
        if step_config or job.is_direct:
            return step_config
        flow = await self.repository.get_flow(job.flow_id)
        step_config = flow.flow_config.get(flow_step_id, {}) if flow else {}
        if step_config:
            step_config = {"flow_id": flow.flow_id, "pipeline_id": flow.pipeline_id, **step_config}
            logger.warning(
                f"Step config missing from engine data, loaded from flow job_id={job.job_id} "
                f"flow_step_id={flow_step_id}"
            )
            await engine.merge({"flow_config": {flow_step_id: step_config}})
        return step_config

    async def _execute(self, job: Job, flow_step_id: str) -> bool:
        job_id = job.job_id
        context = {"flow_step_id": flow_step_id, "flow_id": job.flow_id}
        engine = await EngineData.load(self.repository, job_id)

        step_config = await self._resolve_step_config(job, engine, flow_step_id)
        if not step_config:
            return await self._fail(job_id, "missing_step_config", context)
        if not step_config.get("flow_id"):
            return await self._fail(job_id, "missing_flow_id_in_step_config", context)
        step_type = step_config.get("step_type")
        if not step_type:
            return await self._fail(job_id, "missing_step_type_in_flow_step_config", context)

        data = await self.packets.retrieve_by_job(job_id)
        try:
            step = self.steps.resolve(step_type)
        except StepTypeNotFound:
            return await self._fail(job_id, "step_type_not_found", {**context, "step_type": step_type})

        logger.info(f"Executing step job_id={job_id} flow_step_id={flow_step_id} step_type={step_type}")
        result = await step.execute(
            StepPayload(job_id=job_id, flow_step_id=flow_step_id, data=data, engine=engine)
        )
        if not isinstance(result, list) or not all(isinstance(p, DataPacket) for p in result):
            return await self._fail(
                job_id, "non_list_payload_returned", {**context, "returned": type(result).__name__}
            )

        await engine.refresh()
        override = engine.status_override
        if override:
            if not is_status_final(override):
                logger.error(f"Ignoring non-final status override job_id={job_id} status={override}")
                return await self._fail(job_id, "invalid_status_override", {**context, "status": override})
            logger.info(f"Applying status override job_id={job_id} status={override}")
            await self.jobs.complete_job(job_id, override)
            return True

        failure = next((p for p in result if p.is_failure), None)
        if result and failure is None:
            next_step = FlowNavigator(engine.flow_config()).next_step(flow_step_id)
            if next_step:
                return await self.schedule_next_step(job_id, next_step, result)
            await self.jobs.complete_job(job_id, COMPLETED)
            return True

        if step_type == "fetch" and await self.repository.has_processed_items(flow_step_id):
            await self.jobs.complete_job(job_id, COMPLETED_NO_ITEMS)
            return True

        if failure is not None:
            reason = failure.metadata.get("error") or "step_failed"
            return await self._fail(job_id, reason, {**context, **failure.metadata})
        return await self._fail(job_id, "empty_data_packet_returned", context)

    async def _fail(self, job_id: int, reason: str, context: Dict[str, Any]) -> bool:
        await self.jobs.fail_job(job_id, reason, context)
        return False

    async def fail_job(
        self, job_id: int, reason: str, context: Optional[Dict[str, Any]] = None
    ) -> bool:
        return await self.jobs.fail_job(job_id, reason, context)
