"""Read-only status checks for feed uploads and batch requests."""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum

import aiohttp

from catalogfeed.main.exceptions import (
    BadRequestException,
    CatalogApiException,
    ConfigurationException,
    RemoteUnavailableException,
    UploadReferenceNotFoundException,
)
from catalogfeed.main.logging import get_logger
from catalogfeed.uploads.upload_client import CatalogApiClient

logger = get_logger(__name__)

BATCH_PREFIX = "batch:"
_UPLOAD_ID_PATTERN = re.compile(r"^\d{1,32}$")
_BATCH_HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_\-=+/]{1,512}$")


class UploadStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class ReferenceKind(str, Enum):
    FEED_UPLOAD = "feed_upload"
    BATCH = "batch"


@dataclass(frozen=True)
class UploadReference:
    kind: ReferenceKind
    value: str

    @classmethod
    def parse(cls, raw: str | None) -> "UploadReference":
        """``123456`` is a feed upload session, ``batch:<handle>`` a batch request."""
        reference = (raw or "").strip()
        if reference.startswith(BATCH_PREFIX):
            handle = reference[len(BATCH_PREFIX):]
            if not _BATCH_HANDLE_PATTERN.match(handle):
                raise ValueError(f"Malformed batch handle: {raw!r}")
            return cls(kind=ReferenceKind.BATCH, value=handle)

        if not _UPLOAD_ID_PATTERN.match(reference):
            raise ValueError(f"Malformed upload reference: {raw!r}")
        return cls(kind=ReferenceKind.FEED_UPLOAD, value=reference)


@dataclass(frozen=True)
class UploadCheckResult:
    status: UploadStatus
    detail: str = ""
    not_found: bool = False


class UploadCompletionChecker:
    """Answers "has the remote side finished with this upload?".

    Pure query: never touches jobs or the queue cache. Timeouts and
    transient remote failures read as pending because the remote side may
    still be working.
    """

    def __init__(self, client: CatalogApiClient):
        self.client = client

    async def check(self, upload_reference: str) -> UploadStatus:
        return (await self.inspect(upload_reference)).status

    async def inspect(self, upload_reference: str) -> UploadCheckResult:
        try:
            reference = UploadReference.parse(upload_reference)
        except ValueError as e:
            return UploadCheckResult(UploadStatus.ERROR, str(e))

        try:
            if reference.kind == ReferenceKind.BATCH:
                return self._batch_result(await self.client.get_batch_status(reference.value))
            return self._upload_session_result(
                await self.client.get_upload_session(reference.value)
            )
        except asyncio.TimeoutError:
            return UploadCheckResult(UploadStatus.PENDING, "Timed out waiting for the catalog endpoint")
        except (
            RemoteUnavailableException,
            aiohttp.ClientConnectionError,
            aiohttp.ClientPayloadError,
        ) as e:
            logger.warning(
                f"Catalog endpoint unavailable while checking {upload_reference}: {e}",
                extra={"upload_reference": upload_reference},
            )
            return UploadCheckResult(UploadStatus.PENDING, str(e))
        except aiohttp.ClientError as e:
            logger.error(
                f"Catalog request failed while checking {upload_reference}: {e}",
                extra={"upload_reference": upload_reference},
            )
            return UploadCheckResult(UploadStatus.ERROR, f"{type(e).__name__}: {e}")
        except UploadReferenceNotFoundException as e:
            return UploadCheckResult(UploadStatus.ERROR, str(e), not_found=True)
        except (ConfigurationException, BadRequestException, CatalogApiException) as e:
            return UploadCheckResult(UploadStatus.ERROR, str(e))

    @staticmethod
    def _upload_session_result(body: dict) -> UploadCheckResult:
        if not body.get("end_time"):
            return UploadCheckResult(UploadStatus.PENDING, "Upload is still being processed")

        errors = body.get("error_count") or 0
        persisted = body.get("num_persisted_items")
        detail = f"Finished with {errors} error(s)"
        if persisted is not None:
            detail += f", {persisted} item(s) persisted"
        return UploadCheckResult(UploadStatus.COMPLETE, detail)

    @staticmethod
    def _batch_result(body: dict) -> UploadCheckResult:
        entries = body.get("data") or []
        if not entries or not isinstance(entries[0], dict):
            return UploadCheckResult(UploadStatus.ERROR, "No status reported for batch")

        status = str(entries[0].get("status", "")).upper()
        if status == "IN_PROGRESS":
            return UploadCheckResult(UploadStatus.PENDING, "Batch is in progress")

        errors = entries[0].get("errors") or []
        return UploadCheckResult(UploadStatus.COMPLETE, f"Batch finished with {len(errors)} error(s)")
