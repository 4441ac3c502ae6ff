"""In-memory implementation of the job repository."""

from __future__ import annotations

import asyncio
import copy
import itertools
from datetime import datetime
from typing import Any, Dict, List

from ..contracts import EntityId, Flow, Job, Pipeline, ProcessedItem, utcnow
from ..status import PENDING, PROCESSING, is_status_final
from ..utils.merge import deep_merge
from ._rows import status_matches
from .repository import JobRepository


class InMemoryJobRepository(JobRepository):
    """Store jobs, flows and pipelines in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._jobs: Dict[int, Job] = {}
        self._pipelines: Dict[int, Pipeline] = {}
        self._flows: Dict[int, Flow] = {}
        self._processed: List[ProcessedItem] = []
        self._job_ids = itertools.count(1)
        self._pipeline_ids = itertools.count(1)
        self._flow_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_job(
        self,
        pipeline_id: EntityId,
        flow_id: EntityId,
        source: str = "flow",
        label: str | None = None,
        created_at: datetime | None = None,
    ) -> Job:
        job = Job(
            job_id=next(self._job_ids),
            pipeline_id=pipeline_id,
            flow_id=flow_id,
            source=source,
            label=label,
            status=PENDING,
            created_at=created_at or utcnow(),
        )
        self._jobs[job.job_id] = job
        return job.model_copy(deep=True)

    async def get_job(self, job_id: int) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def delete_job(self, job_id: int) -> bool:
        return self._jobs.pop(job_id, None) is not None

    async def start_job(self, job_id: int) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job or job.status != PENDING:
                return False
            job.status = PROCESSING
            return True

    async def complete_job(self, job_id: int, status: str) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job or is_status_final(job.status):
                return False
            job.status = status
            job.completed_at = utcnow()
            return True

    async def set_job_status(
        self, job_id: int, status: str, completed: bool = False
    ) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return False
            job.status = status
            if completed:
                job.completed_at = utcnow()
            return True

    def _filter(
        self,
        status: str | None,
        flow_id: EntityId | None,
        pipeline_id: EntityId | None,
    ) -> list[Job]:
        jobs = [
            j
            for j in self._jobs.values()
            if (status is None or status_matches(j.status, status))
            and (flow_id is None or j.flow_id == flow_id)
            and (pipeline_id is None or j.pipeline_id == pipeline_id)
        ]
        return sorted(jobs, key=lambda j: j.job_id, reverse=True)

    async def list_jobs(
        self,
        status: str | None = None,
        flow_id: EntityId | None = None,
        pipeline_id: EntityId | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        jobs = self._filter(status, flow_id, pipeline_id)[offset : offset + limit]
        return [j.model_copy(deep=True) for j in jobs]

    async def count_jobs(
        self,
        status: str | None = None,
        flow_id: EntityId | None = None,
        pipeline_id: EntityId | None = None,
    ) -> int:
        return len(self._filter(status, flow_id, pipeline_id))

    # ------------------------------------------------------------------
    async def store_engine_data(self, job_id: int, data: dict[str, Any]) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return False
            job.engine_data = copy.deepcopy(data)
            return True

    async def retrieve_engine_data(self, job_id: int) -> dict[str, Any]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job.engine_data) if job else {}

    async def merge_engine_data(
        self, job_id: int, updates: dict[str, Any]
    ) -> dict[str, Any]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return {}
            job.engine_data = deep_merge(job.engine_data, updates)
            return copy.deepcopy(job.engine_data)

    async def remove_engine_data_keys(self, job_id: int, *keys: str) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return False
            for key in keys:
                job.engine_data.pop(key, None)
            return True

    # ------------------------------------------------------------------
    async def create_pipeline(
        self,
        name: str,
        pipeline_config: dict[str, Any] | None = None,
        description: str = "",
    ) -> Pipeline:
        pipeline = Pipeline(
            pipeline_id=next(self._pipeline_ids),
            name=name,
            description=description,
            pipeline_config=copy.deepcopy(pipeline_config or {}),
        )
        self._pipelines[pipeline.pipeline_id] = pipeline
        return pipeline.model_copy(deep=True)

    async def get_pipeline(self, pipeline_id: int) -> Pipeline | None:
        pipeline = self._pipelines.get(pipeline_id)
        return pipeline.model_copy(deep=True) if pipeline else None

    async def update_pipeline_config(
        self, pipeline_id: int, pipeline_config: dict[str, Any]
    ) -> bool:
        pipeline = self._pipelines.get(pipeline_id)
        if not pipeline:
            return False
        pipeline.pipeline_config = copy.deepcopy(pipeline_config)
        return True

    # ------------------------------------------------------------------
    async def create_flow(
        self,
        pipeline_id: int,
        name: str,
        flow_config: dict[str, Any] | None = None,
        scheduling_config: dict[str, Any] | None = None,
        description: str = "",
    ) -> Flow:
        flow = Flow(
            flow_id=next(self._flow_ids),
            pipeline_id=pipeline_id,
            name=name,
            description=description,
            flow_config=copy.deepcopy(flow_config or {}),
            scheduling_config=copy.deepcopy(scheduling_config or {"interval": "manual"}),
        )
        self._flows[flow.flow_id] = flow
        return flow.model_copy(deep=True)

    async def get_flow(self, flow_id: int) -> Flow | None:
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def list_flows(self, pipeline_id: int | None = None) -> list[Flow]:
        return [
            f.model_copy(deep=True)
            for f in sorted(self._flows.values(), key=lambda f: f.flow_id)
            if pipeline_id is None or f.pipeline_id == pipeline_id
        ]

    async def update_flow_config(
        self, flow_id: int, flow_config: dict[str, Any]
    ) -> bool:
        flow = self._flows.get(flow_id)
        if not flow:
            return False
        flow.flow_config = copy.deepcopy(flow_config)
        return True

    async def update_flow_scheduling(
        self, flow_id: int, scheduling_config: dict[str, Any]
    ) -> bool:
        flow = self._flows.get(flow_id)
        if not flow:
            return False
        flow.scheduling_config = copy.deepcopy(scheduling_config)
        return True

    async def mark_flow_run(self, flow_id: int, when: datetime) -> bool:
        flow = self._flows.get(flow_id)
        if not flow:
            return False
        flow.last_run_at = when
        return True

    # ------------------------------------------------------------------
    async def add_processed_item(
        self,
        flow_step_id: str,
        source_type: str,
        item_identifier: str,
        job_id: int,
    ) -> bool:
        if await self.is_item_processed(flow_step_id, source_type, item_identifier):
            return False
        self._processed.append(
            ProcessedItem(
                flow_step_id=flow_step_id,
                source_type=source_type,
                item_identifier=item_identifier,
                job_id=job_id,
            )
        )
        return True

    async def is_item_processed(
        self, flow_step_id: str, source_type: str, item_identifier: str
    ) -> bool:
        return any(
            p.flow_step_id == flow_step_id
            and p.source_type == source_type
            and p.item_identifier == item_identifier
            for p in self._processed
        )

    async def has_processed_items(self, flow_step_id: str) -> bool:
        return any(p.flow_step_id == flow_step_id for p in self._processed)

    async def delete_processed_items(self, job_id: int) -> int:
        before = len(self._processed)
        self._processed = [p for p in self._processed if p.job_id != job_id]
        return before - len(self._processed)
