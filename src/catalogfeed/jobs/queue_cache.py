"""Memoized "is there work pending" answers for one job type."""

from enum import Enum

import redis.asyncio as aioredis

from catalogfeed.jobs.job_models import ACTIVE_STATUSES, JobStatus, JobType
from catalogfeed.jobs.job_repo import JobRepository
from catalogfeed.main.config import get_settings
from catalogfeed.main.logging import get_logger

logger = get_logger(__name__)

QUEUE_EMPTY = "empty"
QUEUE_NOT_EMPTY = "not_empty"
SYNC_NO_JOBS = "no_jobs"
SYNC_HAS_JOBS = "has_jobs"


class ExecutionContext(str, Enum):
    """Where a cache question is being asked from.

    Only admin and background callers pay for the existence query.
    """

    ADMIN = "admin"
    BACKGROUND = "background"
    PUBLIC = "public"

    @property
    def may_query(self) -> bool:
        return self in (ExecutionContext.ADMIN, ExecutionContext.BACKGROUND)


class QueueCache:
    """Two cache slots in Redis in front of JobRepository existence queries.

    Key pattern: {prefix}_{job_type}_queue_empty and {prefix}_{job_type}_sync_in_progress
    TTL: queue_cache_ttl_seconds

    A missing slot always falls back to the store. Redis failures degrade
    to the store query as well.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        job_repo: JobRepository,
        job_type: JobType,
        prefix: str | None = None,
        ttl_seconds: int | None = None,
    ):
        settings = get_settings()
        self.redis = redis
        self.job_repo = job_repo
        self.job_type = job_type
        self.identifier = f"{prefix or settings.queue_cache_prefix}_{job_type.value}"
        self.ttl_seconds = ttl_seconds or settings.queue_cache_ttl_seconds

    @property
    def queue_empty_key(self) -> str:
        return f"{self.identifier}_queue_empty"

    @property
    def sync_in_progress_key(self) -> str:
        return f"{self.identifier}_sync_in_progress"

    async def is_queue_empty(
        self,
        context: ExecutionContext = ExecutionContext.BACKGROUND,
        use_cache: bool = True,
    ) -> bool:
        """True if no job of this type is queued or processing.

        Outside admin/background contexts this returns False without
        querying anything.
        """
        if not context.may_query:
            return False

        if use_cache:
            cached = await self._read_slot(self.queue_empty_key)
            if cached is not None:
                return cached == QUEUE_EMPTY

        has_active = await self.job_repo.exists(ACTIVE_STATUSES, job_type=self.job_type.value)
        if use_cache:
            await self._write_slot(
                self.queue_empty_key, QUEUE_NOT_EMPTY if has_active else QUEUE_EMPTY
            )
        return not has_active

    async def has_jobs_in_status(
        self,
        status: JobStatus = JobStatus.PROCESSING,
        context: ExecutionContext = ExecutionContext.BACKGROUND,
        use_cache: bool = True,
    ) -> bool:
        """True if a job of this type is in ``status``.

        Only the processing question is memoized; other statuses always
        hit the store.
        """
        if not context.may_query:
            return False

        cacheable = use_cache and status == JobStatus.PROCESSING
        if cacheable:
            cached = await self._read_slot(self.sync_in_progress_key)
            if cached is not None:
                return cached == SYNC_HAS_JOBS

        has_jobs = await self.job_repo.exists([status], job_type=self.job_type.value)
        if cacheable:
            await self._write_slot(
                self.sync_in_progress_key, SYNC_HAS_JOBS if has_jobs else SYNC_NO_JOBS
            )
        return has_jobs

    async def invalidate(self) -> None:
        """Clear both slots. Safe to call when neither was ever set."""
        try:
            await self.redis.delete(self.queue_empty_key, self.sync_in_progress_key)
        except Exception as e:
            # Slots expire on their own within the TTL
            logger.warning(
                f"Failed to invalidate queue cache for {self.identifier}: {e}",
                extra={"cache_identifier": self.identifier},
            )

    async def _read_slot(self, key: str) -> str | None:
        try:
            value = await self.redis.get(key)
        except Exception as e:
            logger.warning(f"Redis cache unavailable for {key}, falling back to database: {e}")
            return None

        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def _write_slot(self, key: str, value: str) -> None:
        try:
            await self.redis.set(key, value, ex=self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Failed to cache queue state for {key}: {e}")


def build_queue_caches(redis: aioredis.Redis, job_repo: JobRepository) -> dict[JobType, QueueCache]:
    """One cache per job type so feed types never share slot names."""
    return {job_type: QueueCache(redis, job_repo, job_type) for job_type in JobType}
