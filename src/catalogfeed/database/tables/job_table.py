from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from catalogfeed.database.tables.base_class import BasePublic, JSONType

ACTIVE_STATUS_CLAUSE = "status IN ('queued', 'processing')"


class FeedJobs(BasePublic):
    """Background feed jobs. At most one active job per concurrency key."""

    __tablename__ = "feed_jobs"

    job_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    concurrency_key: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    progress: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    skipped_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    failure_reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    result_location: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    upload_reference: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        sa.Index(
            "uq_feed_jobs_active_concurrency_key",
            "concurrency_key",
            unique=True,
            postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
            sqlite_where=sa.text(ACTIVE_STATUS_CLAUSE),
        ),
        sa.Index("ix_feed_jobs_status_job_type", "status", "job_type"),
        sa.Index("ix_feed_jobs_updated_at", "updated_at"),
    )
