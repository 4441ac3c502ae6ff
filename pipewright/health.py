"""Flow health bookkeeping driven by job completion."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from .constants import DEFAULT_HEALTH_WINDOW, DEFAULT_PROBLEM_THRESHOLD
from .contracts import Job, utcnow
from .persistence.repository import JobRepository
from .status import COMPLETED_NO_ITEMS, JobStatus

logger = logging.getLogger(__name__)


class FlowHealth(BaseModel):
    flow_id: int
    consecutive_failures: int = 0
    consecutive_no_items: int = 0
    latest_status: Optional[str] = None
    updated_at: datetime


class FlowHealthTracker:
    """Cache per-flow streaks of failed and empty runs."""

    def __init__(
        self, repository: JobRepository, window: int = DEFAULT_HEALTH_WINDOW
    ) -> None:
        self._repository = repository
        self._window = window
        self._cache: Dict[int, FlowHealth] = {}

    async def on_job_complete(self, job: Job) -> None:
        if job.is_direct:
            return
        await self.refresh(job.flow_id)

    async def refresh(self, flow_id: int) -> FlowHealth:
        jobs = await self._repository.list_jobs(flow_id=flow_id, limit=self._window)
        failures = no_items = 0
        counting_failures = counting_no_items = True
        for job in jobs:
            status = JobStatus.parse(job.status)
            if not status.is_final:
                continue
            if counting_failures and status.is_failure:
                failures += 1
            else:
                counting_failures = False
            if counting_no_items and status.base == COMPLETED_NO_ITEMS:
                no_items += 1
            else:
                counting_no_items = False

        health = FlowHealth(
            flow_id=flow_id,
            consecutive_failures=failures,
            consecutive_no_items=no_items,
            latest_status=jobs[0].status if jobs else None,
            updated_at=utcnow(),
        )
        self._cache[flow_id] = health
        return health

    def get(self, flow_id: int) -> Optional[FlowHealth]:
        return self._cache.get(flow_id)

    def problem_flows(self, threshold: int = DEFAULT_PROBLEM_THRESHOLD) -> List[FlowHealth]:
        return [
            h
            for h in self._cache.values()
            if h.consecutive_failures >= threshold or h.consecutive_no_items >= threshold
        ]
