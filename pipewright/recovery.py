"""Reconciliation of stuck jobs and manual fail/retry primitives."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from pydantic import BaseModel, Field

from .constants import DEFAULT_TIMEOUT_HOURS, STATUS_OVERRIDE_KEY
from .contracts import EntityId, Job, utcnow
from .errors import JobNotFound, JobStateError
from .jobs import JobManager
from .packets import PacketStore
from .persistence.repository import JobRepository
from .status import PROCESSING, JobStatus, is_status_failure, is_status_final

logger = logging.getLogger(__name__)

_PAGE_SIZE = 200


class RecoveryEntry(BaseModel):
    job_id: int
    flow_id: EntityId
    status: str
    target_status: Optional[str] = None
    reason: Optional[str] = None


class RecoveryReport(BaseModel):
    success: bool = True
    recovered: int = 0
    skipped: int = 0
    timed_out: int = 0
    requeued: int = 0
    dry_run: bool = False
    jobs: List[RecoveryEntry] = Field(default_factory=list)
    message: str = ""


class FailResult(BaseModel):
    job_id: int
    previous_status: str
    new_status: str
    message: str


class RetryResult(BaseModel):
    job_id: int
    previous_status: str
    prompt_requeued: bool
    message: str


class JobRecovery:
    """Correct status drift left behind by interrupted executions."""

    def __init__(
        self,
        repository: JobRepository,
        jobs: JobManager,
        packets: PacketStore,
    ) -> None:
        self._repository = repository
        self._jobs = jobs
        self._packets = packets

    async def _processing_jobs(self, flow_id: Optional[int]) -> List[Job]:
        found: List[Job] = []
        offset = 0
        while True:
            page = await self._repository.list_jobs(
                status=PROCESSING, flow_id=flow_id, limit=_PAGE_SIZE, offset=offset
            )
            found.extend(j for j in page if j.status == PROCESSING)
            if len(page) < _PAGE_SIZE:
                return found
            offset += _PAGE_SIZE

    async def recover_stuck_jobs(
        self,
        dry_run: bool = False,
        flow_id: Optional[int] = None,
        timeout_hours: int = DEFAULT_TIMEOUT_HOURS,
    ) -> RecoveryReport:
        """Apply pending status overrides, then fail timed-out jobs."""
        timeout_hours = max(1, int(timeout_hours))
        report = RecoveryReport(dry_run=dry_run)
        processing = await self._processing_jobs(flow_id)

        with_override = [j for j in processing if STATUS_OVERRIDE_KEY in j.engine_data]
        for job in with_override:
            await self._recover_override(job, report)

        cutoff = utcnow() - timedelta(hours=timeout_hours)
        timed_out = [
            j
            for j in processing
            if STATUS_OVERRIDE_KEY not in j.engine_data and j.created_at < cutoff
        ]
        for job in timed_out:
            await self._fail_timed_out(job, report)

        if dry_run:
            report.message = (
                f"Dry run complete. Would recover {report.recovered} jobs, "
                f"timeout {report.timed_out} jobs."
            )
        else:
            report.message = (
                f"Recovery complete. Recovered: {report.recovered}, "
                f"Timed out: {report.timed_out}, Requeued: {report.requeued}"
            )
            if report.recovered or report.timed_out:
                logger.info(
                    f"Stuck jobs recovered flow_id={flow_id} recovered={report.recovered} "
                    f"timed_out={report.timed_out} requeued={report.requeued}"
                )
        return report

    async def _recover_override(self, job: Job, report: RecoveryReport) -> None:
        target = job.engine_data.get(STATUS_OVERRIDE_KEY)
        if not isinstance(target, str) or not is_status_final(target):
            report.skipped += 1
            report.jobs.append(
                RecoveryEntry(
                    job_id=job.job_id,
                    flow_id=job.flow_id,
                    status="skipped",
                    reason=f"Invalid or non-final status: {target}",
                )
            )
            logger.warning(
                f"Skipping job with non-final status override job_id={job.job_id} "
                f"flow_id={job.flow_id} override={target}"
            )
            return

        if report.dry_run:
            report.recovered += 1
            report.jobs.append(
                RecoveryEntry(
                    job_id=job.job_id,
                    flow_id=job.flow_id,
                    status="would_recover",
                    target_status=target,
                )
            )
            return

        if not await self._repository.set_job_status(job.job_id, target, completed=True):
            report.skipped += 1
            report.jobs.append(
                RecoveryEntry(
                    job_id=job.job_id,
                    flow_id=job.flow_id,
                    status="skipped",
                    reason="Database update failed",
                )
            )
            return

        await self._packets.cleanup(job.job_id)
        await self._jobs.emit_completion(job.job_id)
        report.recovered += 1
        report.jobs.append(
            RecoveryEntry(
                job_id=job.job_id,
                flow_id=job.flow_id,
                status="recovered",
                target_status=target,
            )
        )

    async def _fail_timed_out(self, job: Job, report: RecoveryReport) -> None:
        if report.dry_run:
            report.timed_out += 1
            report.jobs.append(
                RecoveryEntry(job_id=job.job_id, flow_id=job.flow_id, status="would_timeout")
            )
            return

        status = JobStatus.failed("timeout").to_string()
        if not await self._repository.complete_job(job.job_id, status):
            report.jobs.append(
                RecoveryEntry(
                    job_id=job.job_id,
                    flow_id=job.flow_id,
                    status="skipped",
                    reason="Database update failed for timeout",
                )
            )
            return

        report.timed_out += 1
        report.jobs.append(
            RecoveryEntry(
                job_id=job.job_id,
                flow_id=job.flow_id,
                status="timed_out",
                target_status=status,
            )
        )
        logger.warning(f"Job timed out job_id={job.job_id} flow_id={job.flow_id}")
        await self._jobs.emit_completion(job.job_id)
        if await self._jobs.requeue_prompt_backup(job):
            report.requeued += 1

    # ------------------------------------------------------------------
    async def fail_job(self, job_id: int, reason: str = "manual") -> FailResult:
        """Fail a ``processing`` job on operator request."""
        job = await self._repository.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)

        if is_status_failure(job.status):
            return FailResult(
                job_id=job_id,
                previous_status=job.status,
                new_status=job.status,
                message=f"Job {job_id} is already failed.",
            )
        if job.status != PROCESSING:
            raise JobStateError(
                f'Job {job_id} has status "{job.status}", only processing jobs can be failed.'
            )

        await self._jobs.fail_job(job_id, reason)
        updated = await self._repository.get_job(job_id)
        new_status = updated.status if updated else job.status
        logger.info(
            f"Job manually failed job_id={job_id} previous_status={job.status} new_status={new_status}"
        )
        return FailResult(
            job_id=job_id,
            previous_status=job.status,
            new_status=new_status,
            message=f'Job {job_id} marked as "{new_status}".',
        )

    async def retry_job(self, job_id: int, force: bool = False) -> RetryResult:
        """Mark a job failed-for-retry and give its prompt back to the queue."""
        job = await self._repository.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if not force and not (is_status_failure(job.status) or job.status == PROCESSING):
            raise JobStateError(
                f'Job {job_id} has status "{job.status}", use force to retry non-failed jobs.'
            )

        await self._repository.set_job_status(
            job_id, JobStatus.failed("manual_retry").to_string(), completed=True
        )
        await self._jobs.emit_completion(job_id)
        prompt_requeued = await self._jobs.requeue_prompt_backup(job)
        logger.info(
            f"Job retried job_id={job_id} previous_status={job.status} prompt_requeued={prompt_requeued}"
        )
        message = (
            f"Job {job_id} marked as failed and prompt requeued."
            if prompt_requeued
            else f"Job {job_id} marked as failed (no prompt backup to requeue)."
        )
        return RetryResult(
            job_id=job_id,
            previous_status=job.status,
            prompt_requeued=prompt_requeued,
            message=message,
        )
