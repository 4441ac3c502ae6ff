"""Job lifecycle operations shared by the engine and recovery."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import EngineSettings
from .constants import DIRECT, PROMPT_BACKUP_KEY
from .contracts import VALID_SOURCES, EntityId, Job
from .errors import FlowNotFound, InvalidJobData
from .packets import PacketStore
from .persistence.repository import JobRepository
from .queue import PromptQueue
from .status import JobStatus, is_status_failure, is_status_final

logger = logging.getLogger(__name__)

CompletionListener = Callable[[Job], Awaitable[None]]


def _is_numeric_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class JobManager:
    """Create, start and finalize jobs.

    Every terminal transition goes through ``complete_job`` or ``fail_job``
    so completion listeners (flow health) see each job exactly once.
    """

    def __init__(
        self,
        repository: JobRepository,
        packets: PacketStore,
        prompt_queue: Optional[PromptQueue] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._repository = repository
        self._packets = packets
        self._prompt_queue = prompt_queue or PromptQueue(repository)
        self._settings = settings or EngineSettings()
        self._listeners: List[CompletionListener] = []

    def on_complete(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    async def emit_completion(self, job_id: int) -> None:
        job = await self._repository.get_job(job_id)
        if job is None:
            return
        for listener in self._listeners:
            try:
                await listener(job)
            except Exception:
                logger.exception(f"Completion listener failed job_id={job_id}")

    # ------------------------------------------------------------------
    async def create_job(
        self,
        pipeline_id: EntityId,
        flow_id: EntityId,
        source: Optional[str] = None,
        label: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Job:
        """Validate identifiers and insert a ``pending`` job."""
        is_direct = pipeline_id == DIRECT and flow_id == DIRECT
        if not is_direct and not (_is_numeric_id(pipeline_id) and _is_numeric_id(flow_id)):
            raise InvalidJobData(
                "pipeline_id and flow_id must both be positive integers or both 'direct', "
                f"got pipeline_id={pipeline_id!r} flow_id={flow_id!r}"
            )
        if source is None:
            source = DIRECT if is_direct else "flow"
        elif source not in VALID_SOURCES:
            logger.warning(f"Unknown job source '{source}', using '{DIRECT}'")
            source = DIRECT

        job = await self._repository.create_job(
            pipeline_id, flow_id, source=source, label=label, created_at=created_at
        )
        logger.info(
            f"Created job job_id={job.job_id} flow_id={flow_id} pipeline_id={pipeline_id} source={source}"
        )
        return job

    async def start_job(self, job_id: int) -> bool:
        started = await self._repository.start_job(job_id)
        if not started:
            logger.warning(f"Job could not be started job_id={job_id}")
        return started

    async def complete_job(self, job_id: int, status: str) -> bool:
        """Finalize a job, clean its staged packets and notify listeners."""
        if not await self._repository.complete_job(job_id, status):
            logger.warning(
                f"Job already terminal or missing, ignoring status job_id={job_id} status={status}"
            )
            return False
        await self._packets.cleanup(job_id)
        logger.info(f"Job finished job_id={job_id} status={status}")
        await self.emit_completion(job_id)
        return True

    async def fail_job(
        self, job_id: int, reason: str, context: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Mark a job failed and release the work it held."""
        context = context or {}
        if not _is_numeric_id(job_id):
            logger.error(f"fail_job called with invalid job_id={job_id!r} reason={reason}")
            return False

        job = await self._repository.get_job(job_id)
        if job is None:
            logger.error(f"fail_job called for unknown job_id={job_id} reason={reason}")
            return False
        if is_status_failure(job.status):
            return True
        if is_status_final(job.status):
            logger.warning(
                f"Refusing to fail terminal job job_id={job_id} status={job.status} reason={reason}"
            )
            return False

        status = JobStatus.failed(context.get("reason") or reason).to_string()
        if not await self._repository.complete_job(job_id, status):
            return False

        await self.requeue_prompt_backup(job)
        await self._repository.delete_processed_items(job_id)
        if self._settings.cleanup_job_data_on_failure:
            await self._packets.cleanup(job_id)

        logger.error(
            f"Job failed job_id={job_id} flow_id={job.flow_id} reason={reason} context={context}"
        )
        await self.emit_completion(job_id)
        return True

    async def requeue_prompt_backup(self, job: Job) -> bool:
        """Re-append a popped prompt to the back of its flow step queue.

        The backup is removed from engine data only once the prompt is
        safely queued again.
        """
        engine_data = await self._repository.retrieve_engine_data(job.job_id)
        backup = engine_data.get(PROMPT_BACKUP_KEY)
        if not isinstance(backup, dict) or not backup.get("prompt"):
            return False
        flow_step_id = backup.get("flow_step_id")
        if job.is_direct or not flow_step_id:
            logger.error(
                f"Prompt backup cannot be requeued job_id={job.job_id} flow_id={job.flow_id}"
            )
            return False

        try:
            queued = await self._prompt_queue.add(
                job.flow_id, flow_step_id, backup["prompt"], backup.get("added_at")
            )
        except FlowNotFound:
            queued = False
        if not queued:
            logger.error(
                f"Failed to requeue prompt backup job_id={job.job_id} flow_id={job.flow_id} "
                f"flow_step_id={flow_step_id}"
            )
            return False

        await self._repository.remove_engine_data_keys(job.job_id, PROMPT_BACKUP_KEY)
        logger.info(
            f"Requeued prompt backup job_id={job.job_id} flow_id={job.flow_id} flow_step_id={flow_step_id}"
        )
        return True
