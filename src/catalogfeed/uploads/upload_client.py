"""HTTP client for the remote catalog ingestion endpoint."""

from typing import Any, Callable

import aiohttp
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from catalogfeed.main.aiohttp_client import aiohttp_client
from catalogfeed.main.config import Settings, get_settings
from catalogfeed.main.exceptions import (
    BadRequestException,
    CatalogApiException,
    ConfigurationException,
    RemoteUnavailableException,
    UploadReferenceNotFoundException,
)
from catalogfeed.main.logging import get_logger

logger = get_logger(__name__)

UPLOAD_SESSION_FIELDS = "end_time,error_count,warning_count,num_detected_items,num_persisted_items"


class CatalogApiClient:
    def __init__(
        self,
        session_provider: Callable[[], aiohttp.ClientSession] = aiohttp_client,
        settings: Settings | None = None,
    ):
        self.session_provider = session_provider
        self.settings = settings or get_settings()

    def _url(self, *parts: str) -> str:
        base = self.settings.catalog_api_base_url.rstrip("/")
        return "/".join([base, self.settings.catalog_api_version, *parts])

    def _params(self, **params: Any) -> dict[str, Any]:
        if not self.settings.catalog_access_token:
            raise ConfigurationException("CATALOG_ACCESS_TOKEN is not configured")
        return {**params, "access_token": self.settings.catalog_access_token}

    @property
    def timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.settings.catalog_api_timeout_seconds)

    async def get_upload_session(self, upload_id: str) -> dict:
        return await self._get(self._url(upload_id), fields=UPLOAD_SESSION_FIELDS)

    async def get_batch_status(self, handle: str) -> dict:
        if not self.settings.catalog_id:
            raise ConfigurationException("CATALOG_ID is not configured")
        return await self._get(
            self._url(self.settings.catalog_id, "check_batch_request_status"),
            handle=handle,
        )

    @retry(
        wait=wait_random_exponential(min=1, max=20),
        stop=stop_after_attempt(3),
        retry=retry_if_not_exception_type((BadRequestException, ConfigurationException)),
        reraise=True,
    )
    async def request_feed_upload(self, feed_url: str) -> str:
        """Ask the endpoint to fetch ``feed_url``.

        Returns:
            The upload session id to poll with UploadCompletionChecker.
        """
        if not self.settings.catalog_product_feed_id:
            raise ConfigurationException("CATALOG_PRODUCT_FEED_ID is not configured")

        session = self.session_provider()
        async with session.post(
            self._url(self.settings.catalog_product_feed_id, "uploads"),
            data=self._params(url=feed_url),
            timeout=self.timeout,
        ) as response:
            body = await self._read_body(response)

        upload_id = body.get("id")
        if not upload_id:
            raise CatalogApiException("Upload request returned no upload id")

        logger.info(
            "Requested feed upload",
            extra={"upload_reference": str(upload_id), "feed_url": feed_url},
        )
        return str(upload_id)

    async def _get(self, url: str, **params: Any) -> dict:
        session = self.session_provider()
        async with session.get(url, params=self._params(**params), timeout=self.timeout) as response:
            return await self._read_body(response)

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> dict:
        if response.status == 404:
            raise UploadReferenceNotFoundException(f"Unknown reference at {response.url}")
        if response.status >= 500:
            raise RemoteUnavailableException(f"Catalog endpoint returned {response.status}")

        try:
            body = await response.json(content_type=None)
        except ValueError as e:
            raise CatalogApiException("Catalog endpoint returned an unreadable response") from e

        if response.status >= 400:
            message = body.get("error", {}).get("message") if isinstance(body, dict) else None
            raise BadRequestException(message or f"Catalog endpoint returned {response.status}")

        if not isinstance(body, dict):
            raise CatalogApiException("Catalog endpoint returned an unexpected payload")
        return body
