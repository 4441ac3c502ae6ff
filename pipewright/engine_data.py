"""Typed accessor over a job's engine data blob."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Optional

from .constants import PROMPT_BACKUP_KEY, STATUS_OVERRIDE_KEY
from .contracts import Flow, Job, Pipeline
from .persistence.repository import JobRepository

logger = logging.getLogger(__name__)


class EngineData:
    """Per-job context shared by every step of a job.

    Writes always go through the repository's atomic merge so keys recorded
    by one caller (for example a status override written by a tool) survive
    later unrelated updates.
    """

    def __init__(
        self,
        job_id: int,
        data: Optional[Dict[str, Any]] = None,
        repository: Optional[JobRepository] = None,
    ) -> None:
        self.job_id = job_id
        self.data: Dict[str, Any] = data or {}
        self._repository = repository

    @classmethod
    async def load(cls, repository: JobRepository, job_id: int) -> "EngineData":
        data = await repository.retrieve_engine_data(job_id)
        return cls(job_id, data, repository)

    @staticmethod
    def snapshot(
        job: Job,
        flow_config: Dict[str, Any],
        pipeline_config: Dict[str, Any],
        flow: Optional[Flow] = None,
        pipeline: Optional[Pipeline] = None,
    ) -> Dict[str, Any]:
        """Build the initial engine data written at bootstrap."""
        return {
            "job": {
                "job_id": job.job_id,
                "flow_id": job.flow_id,
                "pipeline_id": job.pipeline_id,
                "source": job.source,
                "label": job.label,
                "created_at": job.created_at.isoformat(),
            },
            "flow": {
                "flow_id": flow.flow_id if flow else job.flow_id,
                "name": flow.name if flow else "",
                "scheduling_config": flow.scheduling_config if flow else {},
            },
            "pipeline": {
                "pipeline_id": pipeline.pipeline_id if pipeline else job.pipeline_id,
                "name": pipeline.name if pipeline else "",
            },
            "flow_config": copy.deepcopy(flow_config),
            "pipeline_config": copy.deepcopy(pipeline_config),
        }

    # ------------------------------------------------------------------
    # Read accessors
    def get(self, key: str, default: Any = None) -> Any:
        """Return a top-level key, falling back to ``metadata``."""
        if key in self.data:
            return self.data[key]
        metadata = self.data.get("metadata")
        if isinstance(metadata, dict) and key in metadata:
            return metadata[key]
        return default

    def job_context(self) -> Dict[str, Any]:
        return self.data.get("job", {})

    @property
    def flow_id(self) -> Any:
        return self.job_context().get("flow_id")

    @property
    def pipeline_id(self) -> Any:
        return self.job_context().get("pipeline_id")

    def flow_config(self) -> Dict[str, Any]:
        return self.data.get("flow_config", {})

    def flow_step_config(self, flow_step_id: str) -> Dict[str, Any]:
        return self.flow_config().get(flow_step_id, {})

    def pipeline_config(self) -> Dict[str, Any]:
        return self.data.get("pipeline_config", {})

    def pipeline_step_config(self, pipeline_step_id: str) -> Dict[str, Any]:
        return self.pipeline_config().get(pipeline_step_id, {})

    @property
    def status_override(self) -> Optional[str]:
        value = self.data.get(STATUS_OVERRIDE_KEY)
        return value if isinstance(value, str) and value else None

    @property
    def prompt_backup(self) -> Optional[Dict[str, Any]]:
        return self.data.get(PROMPT_BACKUP_KEY)

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    # ------------------------------------------------------------------
    # Writes
    def _require_repository(self) -> JobRepository:
        if self._repository is None:
            raise RuntimeError("EngineData is detached from a repository")
        return self._repository

    async def refresh(self) -> "EngineData":
        self.data = await self._require_repository().retrieve_engine_data(self.job_id)
        return self

    async def merge(self, updates: Dict[str, Any]) -> "EngineData":
        """Deep-merge ``updates`` into the stored engine data."""
        self.data = await self._require_repository().merge_engine_data(
            self.job_id, updates
        )
        return self

    async def remove(self, *keys: str) -> bool:
        removed = await self._require_repository().remove_engine_data_keys(
            self.job_id, *keys
        )
        if removed:
            for key in keys:
                self.data.pop(key, None)
        return removed

    async def set_status_override(self, status: str) -> "EngineData":
        """Record the status the job should finish with."""
        logger.info(f"Status override set job_id={self.job_id} status={status}")
        return await self.merge({STATUS_OVERRIDE_KEY: status})

    async def set_prompt_backup(
        self, flow_step_id: str, prompt: str, added_at: Optional[str] = None
    ) -> "EngineData":
        return await self.merge(
            {
                PROMPT_BACKUP_KEY: {
                    "flow_step_id": flow_step_id,
                    "prompt": prompt,
                    "added_at": added_at,
                }
            }
        )
