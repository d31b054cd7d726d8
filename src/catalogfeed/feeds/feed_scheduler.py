import asyncio
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import AsyncIterator, Callable

from catalogfeed.feeds.catalog import ProductCatalog
from catalogfeed.feeds.feed_file_writer import (
    CatalogFeedWriter,
    CountryOverrideFeedWriter,
    FeedFileWriter,
    FeedWriteResult,
)
from catalogfeed.jobs.job_models import (
    CatalogFeedPayload,
    CountryOverrideFeedPayload,
    Job,
    JobPayload,
    JobStatus,
)
from catalogfeed.jobs.job_service import JobService
from catalogfeed.jobs.queue_cache import ExecutionContext
from catalogfeed.main.config import Settings, get_settings
from catalogfeed.main.exceptions import (
    InvariantViolationException,
    JobAlreadyActiveException,
    NotFoundException,
)
from catalogfeed.main.log_context import log_context
from catalogfeed.main.logging import get_logger
from catalogfeed.uploads.upload_client import CatalogApiClient

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"  # generation disabled
    DUE = "due"
    RUNNING = "running"
    COOLDOWN = "cooldown"  # last success is inside the interval


@dataclass
class TickResult:
    state: SchedulerState
    job: Job | None = None
    reaped_count: int = 0


WriterFactory = Callable[[JobPayload], FeedFileWriter]


class FeedScheduler:
    """Decides whether a feed is due and runs it under a job.

    The only place where a failed run is turned into a terminal job state.
    At most one run per concurrency key is active at a time: the queue
    cache answers the cheap question, the job store the authoritative one,
    and the unique index catches the race between the two.
    """

    def __init__(
        self,
        job_service: JobService,
        catalog: ProductCatalog,
        upload_client: CatalogApiClient | None = None,
        settings: Settings | None = None,
        writer_factory: WriterFactory | None = None,
    ):
        self.job_service = job_service
        self.catalog = catalog
        self.upload_client = upload_client
        self.settings = settings or get_settings()
        self.writer_factory = writer_factory or self._default_writer

    @property
    def run_budget_seconds(self) -> int:
        return self.settings.feed_generation_max_seconds

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(minutes=self.settings.feed_stale_job_threshold_minutes)

    async def evaluate(self, payload: JobPayload) -> SchedulerState:
        if not self.settings.feed_generation_enabled:
            return SchedulerState.IDLE

        queue_cache = self.job_service.queue_cache(payload.job_type)
        if not await queue_cache.is_queue_empty(ExecutionContext.BACKGROUND):
            # The cache covers the whole job type; confirm for this key
            if await self.job_service.get_active_job(payload) is not None:
                return SchedulerState.RUNNING

        interval = self.settings.feed_generation_interval_seconds
        if interval and await self.job_service.has_completed_within(
            payload, timedelta(seconds=interval)
        ):
            return SchedulerState.COOLDOWN

        return SchedulerState.DUE

    async def tick(self, payload: JobPayload | None = None) -> TickResult:
        """One scheduler pass for a single feed."""
        payload = payload or CatalogFeedPayload()

        with log_context(feed_type=payload.job_type.value, concurrency_key=payload.concurrency_key):
            reaped = await self.job_service.reap_stale_jobs(
                self.stale_threshold, concurrency_key=payload.concurrency_key
            )

            state = await self.evaluate(payload)
            if state != SchedulerState.DUE:
                logger.debug(f"Feed not due: {state.value}")
                return TickResult(state=state, reaped_count=len(reaped))

            try:
                job = await self.job_service.create_job(payload)
            except JobAlreadyActiveException as e:
                return TickResult(
                    state=SchedulerState.RUNNING, job=e.existing_job, reaped_count=len(reaped)
                )

            job = await self.run_job(job)
            state = SchedulerState.COOLDOWN if job.status == JobStatus.COMPLETED else SchedulerState.DUE
            return TickResult(state=state, job=job, reaped_count=len(reaped))

    async def run_job(self, job: Job) -> Job:
        """Generate the feed for a queued job and leave the job terminal."""
        with log_context(job_id=str(job.id), concurrency_key=job.concurrency_key):
            try:
                job = await self.job_service.start_job(job)
            except (InvariantViolationException, NotFoundException) as e:
                logger.warning(f"Job {job.id} could not be started: {e}", extra={"event": "invariant_violation"})
                return await self._current(job)

            current = job

            async def report_progress(rows_written: int, skipped_count: int) -> None:
                nonlocal current
                current = await self.job_service.update_job(
                    current.model_copy(update={"progress": rows_written, "skipped_count": skipped_count})
                )

            writer = None
            try:
                writer = self.writer_factory(job.payload)
                result = await asyncio.wait_for(
                    writer.write_feed_file(self._product_ids(job.payload), report_progress),
                    timeout=self.run_budget_seconds,
                )
            except asyncio.TimeoutError:
                if writer is not None:
                    await writer.discard()
                return await self._fail(
                    current, f"Feed generation exceeded {self.run_budget_seconds}s budget"
                )
            except asyncio.CancelledError:
                logger.warning("Feed generation cancelled", extra={"job_id": str(job.id)})
                if writer is not None:
                    await writer.discard()
                await self._fail(current, "Job cancelled")
                raise
            except Exception as e:
                logger.exception("Feed generation failed:")
                return await self._fail(current, str(e) or type(e).__name__)

            return await self._complete(current, writer, result)

    async def _complete(self, job: Job, writer: FeedFileWriter, result: FeedWriteResult) -> Job:
        job = job.model_copy(
            update={
                "progress": result.rows_written,
                "skipped_count": result.skipped_count,
                "total": result.rows_written + result.skipped_count,
                "result_location": result.file_path,
                "upload_reference": await self._request_upload(job, writer),
            }
        )

        try:
            return await self.job_service.complete_job(job)
        except (InvariantViolationException, NotFoundException) as e:
            logger.warning(f"Job {job.id} could not be completed: {e}", extra={"event": "invariant_violation"})
            return await self._current(job)
        except Exception as e:
            logger.exception("Failed to mark job as complete:")
            return await self._fail(job, str(e))

    async def _fail(self, job: Job, reason: str) -> Job:
        try:
            return await self.job_service.fail_job(job, reason)
        except (InvariantViolationException, NotFoundException) as e:
            # Already terminal or gone: nothing is left dangling
            logger.warning(f"Job {job.id} could not be failed: {e}", extra={"event": "invariant_violation"})
            return await self._current(job)

    async def _current(self, job: Job) -> Job:
        try:
            return await self.job_service.get_job(job.id)
        except NotFoundException:
            return job

    async def _request_upload(self, job: Job, writer: FeedFileWriter) -> str | None:
        if not (
            isinstance(job.payload, CatalogFeedPayload)
            and self.settings.catalog_upload_enabled
            and self.settings.feed_public_base_url
            and self.upload_client is not None
        ):
            return None

        feed_url = f"{self.settings.feed_public_base_url.rstrip('/')}/{writer.get_file_name()}"
        # Retries can outlast the progress reports; keep the job from looking stale
        await self.job_service.touch_job(job)
        try:
            return await self.upload_client.request_feed_upload(feed_url)
        except Exception as e:
            # The published file is still valid; the next run requests again
            logger.warning(
                f"Feed upload request failed: {e}",
                extra={"job_id": str(job.id), "feed_url": feed_url},
            )
            return None

    def _product_ids(self, payload: JobPayload) -> AsyncIterator[str]:
        if isinstance(payload, CountryOverrideFeedPayload):
            return self.catalog.list_country_product_ids(payload.country_code)
        return self.catalog.list_product_ids(payload.product_filter)

    def _default_writer(self, payload: JobPayload) -> FeedFileWriter:
        if isinstance(payload, CountryOverrideFeedPayload):
            return CountryOverrideFeedWriter(self.catalog, payload.country_code)
        return CatalogFeedWriter(self.catalog)
