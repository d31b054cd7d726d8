"""Job domain models for background feed work."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    CATALOG = "catalog"
    COUNTRY_OVERRIDE = "country_override"


ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

# Completed and failed share a rank: neither can follow the other
_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Status only moves forward, and never out of a terminal state."""
    if current in TERMINAL_STATUSES:
        return False
    return _STATUS_RANK[target] > _STATUS_RANK[current]


def statuses_before(target: JobStatus) -> list[JobStatus]:
    """Stored statuses from which ``target`` is reachable."""
    return [status for status in JobStatus if can_transition(status, target)]


class ProductFilter(BaseModel):
    product_ids: Optional[list[str]] = None
    visible_only: bool = True
    in_stock_only: bool = False


class CatalogFeedPayload(BaseModel):
    type: Literal["catalog"] = "catalog"
    product_filter: ProductFilter = Field(default_factory=ProductFilter)

    @property
    def job_type(self) -> JobType:
        return JobType.CATALOG

    @property
    def concurrency_key(self) -> str:
        return JobType.CATALOG.value


class CountryOverrideFeedPayload(BaseModel):
    type: Literal["country_override"] = "country_override"
    country_code: str = Field(min_length=2, max_length=2)

    @field_validator("country_code")
    @classmethod
    def lowercase_country(cls, country_code: str) -> str:
        if not country_code.isalpha():
            raise ValueError(f"Invalid country code: {country_code!r}")
        return country_code.lower()

    @property
    def job_type(self) -> JobType:
        return JobType.COUNTRY_OVERRIDE

    @property
    def concurrency_key(self) -> str:
        return f"{JobType.COUNTRY_OVERRIDE.value}:{self.country_code}"


JobPayload = Annotated[
    Union[CatalogFeedPayload, CountryOverrideFeedPayload],
    Field(discriminator="type"),
]

job_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_payload(data: dict) -> JobPayload:
    return job_payload_adapter.validate_python(data)


class Job(BaseModel):
    """A persisted unit of feed work and its lifecycle state."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: JobType
    concurrency_key: str
    status: JobStatus
    payload: JobPayload
    progress: int = Field(default=0, ge=0)
    total: Optional[int] = None
    skipped_count: int = Field(default=0, ge=0)
    failure_reason: Optional[str] = None
    result_location: Optional[str] = None
    upload_reference: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "started_at", "finished_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # sqlite drops the offset on the way back
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, status: JobStatus) -> bool:
        return can_transition(self.status, status)


class JobFilter(BaseModel):
    status: Optional[JobStatus] = None
    job_type: Optional[JobType] = None
    concurrency_key: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=1000)
