from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from catalogfeed.database.database import DatabaseSessionManager
from catalogfeed.database.tables.base_class import utcnow
from catalogfeed.database.tables.job_table import FeedJobs
from catalogfeed.jobs.job_models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Job,
    JobFilter,
    JobPayload,
    JobStatus,
)
from catalogfeed.main.exceptions import NotFoundException, UniqueException

# Fields a caller may change through update(); id, type, key and payload are fixed at creation
MUTABLE_FIELDS = (
    "status",
    "progress",
    "total",
    "skipped_count",
    "failure_reason",
    "result_location",
    "upload_reference",
    "started_at",
    "finished_at",
)


class JobRepository:
    """Job records in the ``feed_jobs`` table.

    Every call runs in its own short transaction so that a long feed run
    never holds a database session open between status writes.
    """

    def __init__(self, sessionmanager: DatabaseSessionManager):
        self.sessionmanager = sessionmanager

    async def create(self, payload: JobPayload) -> Job:
        now = utcnow()
        record = FeedJobs(
            job_type=payload.job_type.value,
            concurrency_key=payload.concurrency_key,
            status=JobStatus.QUEUED.value,
            payload=payload.model_dump(mode="json"),
            progress=0,
            skipped_count=0,
            created_at=now,
            updated_at=now,
        )

        try:
            async with self.sessionmanager.session() as session, session.begin():
                session.add(record)
                await session.flush()
                return Job.model_validate(record)
        except IntegrityError as e:
            raise UniqueException(
                f"An active job already exists for {payload.concurrency_key}"
            ) from e

    async def get(self, id: UUID) -> Job:
        async with self.sessionmanager.session() as session, session.begin():
            record = await session.get(FeedJobs, id)
            if record is None:
                raise NotFoundException(f"Job {id} not found")
            return Job.model_validate(record)

    async def update(self, job: Job) -> Job:
        """Persist the mutable fields of ``job``.

        Raises:
            NotFoundException: if no record has this id. Nothing is created.
        """
        values = {field: getattr(job, field) for field in MUTABLE_FIELDS}
        values["status"] = job.status.value

        updated = await self._update_where(job.id, values)
        if updated is None:
            raise NotFoundException(f"Job {job.id} not found")
        return updated

    async def transition(
        self,
        id: UUID,
        target: JobStatus,
        expected: Sequence[JobStatus],
        **values: Any,
    ) -> Job | None:
        """Compare-and-swap the status of a job.

        The write only happens if the stored status is one of ``expected``,
        so a stale in-memory job can never move a record backwards or out of
        a terminal state.

        Returns:
            The updated job, or None if the record is missing or its stored
            status did not match.
        """
        values["status"] = target.value
        return await self._update_where(
            id,
            values,
            FeedJobs.status.in_([status.value for status in expected]),
        )

    async def touch(self, id: UUID) -> bool:
        """Bump ``updated_at`` on an active job to signal forward progress."""
        stmt = (
            sa.update(FeedJobs)
            .where(FeedJobs.id == id)
            .where(FeedJobs.status.in_([status.value for status in ACTIVE_STATUSES]))
            .values(updated_at=utcnow())
        )
        async with self.sessionmanager.session() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def delete(self, id: UUID) -> None:
        stmt = sa.delete(FeedJobs).where(FeedJobs.id == id)
        async with self.sessionmanager.session() as session, session.begin():
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise NotFoundException(f"Job {id} not found")

    async def query(self, job_filter: JobFilter) -> list[Job]:
        stmt = sa.select(FeedJobs)
        if job_filter.status is not None:
            stmt = stmt.where(FeedJobs.status == job_filter.status.value)
        if job_filter.job_type is not None:
            stmt = stmt.where(FeedJobs.job_type == job_filter.job_type.value)
        if job_filter.concurrency_key is not None:
            stmt = stmt.where(FeedJobs.concurrency_key == job_filter.concurrency_key)
        stmt = stmt.order_by(FeedJobs.created_at.desc()).limit(job_filter.limit)

        async with self.sessionmanager.session() as session, session.begin():
            records = await session.scalars(stmt)
            return [Job.model_validate(record) for record in records]

    async def exists(
        self,
        statuses: Sequence[JobStatus],
        job_type: str | None = None,
    ) -> bool:
        condition = FeedJobs.status.in_([status.value for status in statuses])
        if job_type is not None:
            condition = sa.and_(condition, FeedJobs.job_type == job_type)

        async with self.sessionmanager.session() as session, session.begin():
            return bool(await session.scalar(sa.select(sa.exists().where(condition))))

    async def get_active(self, concurrency_key: str) -> Job | None:
        stmt = (
            sa.select(FeedJobs)
            .where(FeedJobs.concurrency_key == concurrency_key)
            .where(FeedJobs.status.in_([status.value for status in ACTIVE_STATUSES]))
            .order_by(FeedJobs.created_at.desc())
            .limit(1)
        )
        async with self.sessionmanager.session() as session, session.begin():
            record = await session.scalar(stmt)
            return Job.model_validate(record) if record is not None else None

    async def get_stale(
        self,
        updated_before: datetime,
        concurrency_key: str | None = None,
    ) -> list[Job]:
        """Active jobs whose last write is older than ``updated_before``."""
        stmt = (
            sa.select(FeedJobs)
            .where(FeedJobs.status.in_([status.value for status in ACTIVE_STATUSES]))
            .where(FeedJobs.updated_at < updated_before)
        )
        if concurrency_key is not None:
            stmt = stmt.where(FeedJobs.concurrency_key == concurrency_key)

        async with self.sessionmanager.session() as session, session.begin():
            records = await session.scalars(stmt)
            return [Job.model_validate(record) for record in records]

    async def has_finished_since(
        self,
        concurrency_key: str,
        status: JobStatus,
        since: datetime,
    ) -> bool:
        condition = sa.and_(
            FeedJobs.concurrency_key == concurrency_key,
            FeedJobs.status == status.value,
            FeedJobs.finished_at >= since,
        )
        async with self.sessionmanager.session() as session, session.begin():
            return bool(await session.scalar(sa.select(sa.exists().where(condition))))

    async def delete_finished_before(self, cutoff: datetime) -> int:
        stmt = (
            sa.delete(FeedJobs)
            .where(FeedJobs.status.in_([status.value for status in TERMINAL_STATUSES]))
            .where(FeedJobs.updated_at < cutoff)
        )
        async with self.sessionmanager.session() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount

    async def _update_where(self, id: UUID, values: dict, *conditions) -> Job | None:
        values.setdefault("updated_at", utcnow())
        stmt = (
            sa.update(FeedJobs)
            .where(FeedJobs.id == id, *conditions)
            .values(**values)
            .returning(FeedJobs)
        )
        async with self.sessionmanager.session() as session, session.begin():
            record = (await session.execute(stmt)).scalar_one_or_none()
            return Job.model_validate(record) if record is not None else None
