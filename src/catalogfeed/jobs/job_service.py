from datetime import timedelta
from typing import Mapping
from uuid import UUID

from catalogfeed.database.tables.base_class import utcnow
from catalogfeed.jobs.job_models import (
    ACTIVE_STATUSES,
    Job,
    JobFilter,
    JobPayload,
    JobStatus,
    JobType,
    statuses_before,
)
from catalogfeed.jobs.job_repo import MUTABLE_FIELDS, JobRepository
from catalogfeed.jobs.queue_cache import QueueCache
from catalogfeed.main.exceptions import (
    InvalidJobTransitionException,
    JobAlreadyActiveException,
    NotFoundException,
    UniqueException,
)
from catalogfeed.main.logging import get_logger

logger = get_logger(__name__)

MAX_FAILURE_REASON_LENGTH = 512


class JobService:
    """Job lifecycle: queued -> processing -> completed | failed.

    Every operation that changes queue membership clears the queue cache
    for the job's type. Progress-only updates leave it alone unless the
    caller asks otherwise.
    """

    def __init__(self, job_repo: JobRepository, queue_caches: Mapping[JobType, QueueCache]):
        self.job_repo = job_repo
        self.queue_caches = dict(queue_caches)

    def queue_cache(self, job_type: JobType) -> QueueCache:
        return self.queue_caches[job_type]

    async def create_job(self, payload: JobPayload) -> Job:
        """Queue a new job for ``payload``.

        Raises:
            JobAlreadyActiveException: another job with the same concurrency
                key is queued or processing. Carries that job.
        """
        existing = await self.job_repo.get_active(payload.concurrency_key)
        if existing is not None:
            self._log_invariant_violation(
                "Rejected second active job", existing.id, concurrency_key=payload.concurrency_key
            )
            raise JobAlreadyActiveException(
                f"Job {existing.id} is already {existing.status.value} for {payload.concurrency_key}",
                existing_job=existing,
            )

        try:
            job = await self.job_repo.create(payload)
        except UniqueException as e:
            # Lost the race between the check above and the insert
            winner = await self.job_repo.get_active(payload.concurrency_key)
            self._log_invariant_violation(
                "Rejected concurrent job creation",
                winner.id if winner else None,
                concurrency_key=payload.concurrency_key,
            )
            raise JobAlreadyActiveException(str(e), existing_job=winner) from e

        await self._invalidate(job)
        logger.info(
            f"Created {job.job_type.value} job",
            extra={"job_id": str(job.id), "status": job.status.value, "concurrency_key": job.concurrency_key},
        )
        return job

    async def update_job(self, job: Job, invalidate_cache: bool = False) -> Job:
        """Persist field changes on ``job``, typically progress.

        A status change is accepted only if it moves forward from the
        stored status.
        """
        expected = [job.status, *statuses_before(job.status)]
        updated = await self.job_repo.transition(
            job.id, job.status, expected, **self._field_values(job)
        )
        if updated is None:
            await self._raise_rejected_transition(job.id, job.status)

        if invalidate_cache:
            await self._invalidate(updated)
        return updated

    async def start_job(self, job: Job) -> Job:
        updated = await self.job_repo.transition(
            job.id,
            JobStatus.PROCESSING,
            [JobStatus.QUEUED],
            started_at=utcnow(),
        )
        if updated is None:
            await self._raise_rejected_transition(job.id, JobStatus.PROCESSING)

        await self._invalidate(updated)
        self._log_status(updated)
        return updated

    async def complete_job(self, job: Job) -> Job:
        values = self._field_values(job)
        values.update(failure_reason=None, finished_at=utcnow())

        updated = await self.job_repo.transition(
            job.id, JobStatus.COMPLETED, ACTIVE_STATUSES, **values
        )
        if updated is None:
            await self._raise_rejected_transition(job.id, JobStatus.COMPLETED)

        await self._invalidate(updated)
        self._log_status(updated)
        return updated

    async def fail_job(self, job: Job, reason: str | None) -> Job:
        message = (reason or "").strip()
        values = self._field_values(job)
        values.update(
            failure_reason=message[:MAX_FAILURE_REASON_LENGTH] or "Unknown error",
            finished_at=utcnow(),
        )

        updated = await self.job_repo.transition(
            job.id, JobStatus.FAILED, ACTIVE_STATUSES, **values
        )
        if updated is None:
            await self._raise_rejected_transition(job.id, JobStatus.FAILED)

        await self._invalidate(updated)
        logger.info(
            f"Job {updated.id} failed: {updated.failure_reason}",
            extra={"job_id": str(updated.id), "status": updated.status.value, "event": "job_failed"},
        )
        return updated

    async def delete_job(self, job: Job) -> None:
        await self.job_repo.delete(job.id)
        await self._invalidate(job)
        logger.info("Deleted job", extra={"job_id": str(job.id), "status": job.status.value})

    async def touch_job(self, job: Job) -> bool:
        """Heartbeat for long runs. Leaves the cache alone."""
        return await self.job_repo.touch(job.id)

    async def get_job(self, id: UUID) -> Job:
        return await self.job_repo.get(id)

    async def get_jobs(self, job_filter: JobFilter | None = None) -> list[Job]:
        return await self.job_repo.query(job_filter or JobFilter())

    async def get_active_job(self, payload: JobPayload) -> Job | None:
        return await self.job_repo.get_active(payload.concurrency_key)

    async def has_completed_within(self, payload: JobPayload, window: timedelta) -> bool:
        return await self.job_repo.has_finished_since(
            payload.concurrency_key, JobStatus.COMPLETED, utcnow() - window
        )

    async def reap_stale_jobs(
        self,
        threshold: timedelta,
        concurrency_key: str | None = None,
    ) -> list[Job]:
        """Fail active jobs that have made no forward progress within ``threshold``."""
        cutoff = utcnow() - threshold
        reaped = []
        for stale in await self.job_repo.get_stale(cutoff, concurrency_key=concurrency_key):
            try:
                reaped.append(
                    await self.fail_job(
                        stale,
                        f"No progress for {int(threshold.total_seconds())}s, marked as stale",
                    )
                )
            except (InvalidJobTransitionException, NotFoundException):
                # Finished or removed since the stale query
                continue

        if reaped:
            logger.warning(
                f"Reaped {len(reaped)} stale job(s)",
                extra={"event": "stale_jobs_reaped", "job_ids": [str(job.id) for job in reaped]},
            )
        return reaped

    async def purge_finished_jobs(self, older_than: timedelta) -> int:
        deleted = await self.job_repo.delete_finished_before(utcnow() - older_than)
        if deleted:
            for queue_cache in self.queue_caches.values():
                await queue_cache.invalidate()
            logger.info(f"Purged {deleted} finished job(s)", extra={"event": "jobs_purged"})
        return deleted

    async def _invalidate(self, job: Job) -> None:
        queue_cache = self.queue_caches.get(job.job_type)
        if queue_cache is not None:
            await queue_cache.invalidate()

    async def _raise_rejected_transition(self, id: UUID, target: JobStatus):
        # Raises NotFoundException when the record is gone
        current = await self.job_repo.get(id)
        self._log_invariant_violation(
            f"Rejected transition {current.status.value} -> {target.value}", id
        )
        raise InvalidJobTransitionException(
            f"Job {id} is {current.status.value} and cannot move to {target.value}"
        )

    @staticmethod
    def _field_values(job: Job) -> dict:
        return {field: getattr(job, field) for field in MUTABLE_FIELDS if field != "status"}

    @staticmethod
    def _log_status(job: Job) -> None:
        logger.info(
            f"Status for {job.id}: {job.status.value}",
            extra={"job_id": str(job.id), "status": job.status.value},
        )

    @staticmethod
    def _log_invariant_violation(message: str, id: UUID | None, **extra) -> None:
        logger.warning(
            message,
            extra={"event": "invariant_violation", "job_id": str(id) if id else None, **extra},
        )
