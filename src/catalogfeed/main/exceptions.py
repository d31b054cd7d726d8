from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from catalogfeed.jobs.job_models import Job


class CatalogFeedException(Exception):
    pass


class NotFoundException(CatalogFeedException):
    pass


class UploadReferenceNotFoundException(NotFoundException):
    pass


class UniqueException(CatalogFeedException):
    pass


class BadRequestException(CatalogFeedException):
    pass


class ConfigurationException(CatalogFeedException):
    pass


class InvariantViolationException(CatalogFeedException):
    """Raised for logic or scheduling bugs. Callers must not retry blindly."""


class InvalidJobTransitionException(InvariantViolationException):
    pass


class JobAlreadyActiveException(InvariantViolationException):
    def __init__(self, message: str, existing_job: Job | None = None):
        super().__init__(message)
        self.existing_job = existing_job


class FeedFileException(CatalogFeedException):
    pass


class FeedFileConflictException(FeedFileException):
    pass


class FeedPublishException(FeedFileException):
    pass


class ProductResolutionException(CatalogFeedException):
    pass


class CatalogApiException(CatalogFeedException):
    pass


class RemoteUnavailableException(CatalogApiException):
    pass
