"""Repository abstraction for job, flow and pipeline persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import EntityId, Flow, Job, Pipeline


class JobRepository(Protocol):
    """Protocol for pipewright persistence backends."""

    # Jobs -------------------------------------------------------------
    async def create_job(
        self,
        pipeline_id: EntityId,
        flow_id: EntityId,
        source: str = "flow",
        label: str | None = None,
        created_at: datetime | None = None,
    ) -> Job:
        """Insert a new ``pending`` job and return it."""

    async def get_job(self, job_id: int) -> Job | None:
        """Retrieve a job by id."""

    async def delete_job(self, job_id: int) -> bool:
        """Delete a job together with its engine data."""

    async def start_job(self, job_id: int) -> bool:
        """Move a ``pending`` job to ``processing``.

        Returns ``False`` when the job is missing or not pending.
        """

    async def complete_job(self, job_id: int, status: str) -> bool:
        """Set a terminal status unless the job already holds one."""

    async def set_job_status(
        self, job_id: int, status: str, completed: bool = False
    ) -> bool:
        """Unconditionally rewrite the status (manual recovery only)."""

    async def list_jobs(
        self,
        status: str | None = None,
        flow_id: EntityId | None = None,
        pipeline_id: EntityId | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        """Return jobs newest first, filtered by base status and ids."""

    async def count_jobs(
        self,
        status: str | None = None,
        flow_id: EntityId | None = None,
        pipeline_id: EntityId | None = None,
    ) -> int:
        """Count jobs matching the same filters as ``list_jobs``."""

    # Engine data ------------------------------------------------------
    async def store_engine_data(self, job_id: int, data: dict[str, Any]) -> bool:
        """Replace the engine data snapshot (bootstrap only)."""

    async def retrieve_engine_data(self, job_id: int) -> dict[str, Any]:
        """Return the engine data of a job, ``{}`` when unknown."""

    async def merge_engine_data(
        self, job_id: int, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """Atomically deep-merge ``updates`` and return the merged data."""

    async def remove_engine_data_keys(self, job_id: int, *keys: str) -> bool:
        """Atomically drop top-level keys from the engine data."""

    # Pipelines --------------------------------------------------------
    async def create_pipeline(
        self,
        name: str,
        pipeline_config: dict[str, Any] | None = None,
        description: str = "",
    ) -> Pipeline:
        """Persist a pipeline template."""

    async def get_pipeline(self, pipeline_id: int) -> Pipeline | None:
        """Retrieve a pipeline by id."""

    async def update_pipeline_config(
        self, pipeline_id: int, pipeline_config: dict[str, Any]
    ) -> bool:
        """Replace the pipeline step configuration."""

    # Flows ------------------------------------------------------------
    async def create_flow(
        self,
        pipeline_id: int,
        name: str,
        flow_config: dict[str, Any] | None = None,
        scheduling_config: dict[str, Any] | None = None,
        description: str = "",
    ) -> Flow:
        """Persist a flow."""

    async def get_flow(self, flow_id: int) -> Flow | None:
        """Retrieve a flow by id."""

    async def list_flows(self, pipeline_id: int | None = None) -> list[Flow]:
        """Return flows, optionally limited to one pipeline."""

    async def update_flow_config(
        self, flow_id: int, flow_config: dict[str, Any]
    ) -> bool:
        """Replace the flow step configuration."""

    async def update_flow_scheduling(
        self, flow_id: int, scheduling_config: dict[str, Any]
    ) -> bool:
        """Replace the scheduling configuration."""

    async def mark_flow_run(self, flow_id: int, when: datetime) -> bool:
        """Record the last run time of a flow."""

    # Processed items --------------------------------------------------
    async def add_processed_item(
        self,
        flow_step_id: str,
        source_type: str,
        item_identifier: str,
        job_id: int,
    ) -> bool:
        """Record that an item was handled by a flow step."""

    async def is_item_processed(
        self, flow_step_id: str, source_type: str, item_identifier: str
    ) -> bool:
        """Check whether an item was already handled by a flow step."""

    async def has_processed_items(self, flow_step_id: str) -> bool:
        """Return whether the flow step has any processed-item history."""

    async def delete_processed_items(self, job_id: int) -> int:
        """Delete the markers recorded by a job and return how many."""
