"""Streaming CSV feed files with atomic publish.

Rows go to a temp file next to the final path. The final path only ever
appears through ``os.replace`` of a fully written, fsynced temp file.
"""

import csv
import hashlib
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import StringIO
from typing import AsyncIterable, Awaitable, Callable, Iterable

import aiofiles
import aiofiles.os

from catalogfeed.feeds.catalog import ProductCatalog
from catalogfeed.feeds.feed_rows import (
    CATALOG_FEED_COLUMNS,
    COUNTRY_OVERRIDE_FEED_COLUMNS,
    CountryOverrideRow,
    FeedRow,
)
from catalogfeed.main.config import get_settings
from catalogfeed.main.exceptions import (
    FeedFileConflictException,
    FeedFileException,
    FeedPublishException,
)
from catalogfeed.main.logging import get_logger

logger = get_logger(__name__)

DIRECTORY_MARKERS = {
    ".htaccess": "deny from all\n",
    "index.html": "",
}

ProgressCallback = Callable[[int, int], Awaitable[None]]


@dataclass
class WriteStats:
    rows_written: int = 0
    skipped_count: int = 0


@dataclass
class FeedWriteResult:
    file_path: str
    rows_written: int
    skipped_count: int


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]


def _serialize(rows: list[list[str]]) -> bytes:
    output = StringIO()
    writer = csv.writer(output, delimiter=",", quotechar='"', lineterminator="\n")
    writer.writerows(rows)
    return output.getvalue().encode("utf-8")


async def _iterate(product_ids: AsyncIterable[str] | Iterable[str]):
    if hasattr(product_ids, "__aiter__"):
        async for product_id in product_ids:
            yield product_id
    else:
        for product_id in product_ids:
            yield product_id


class FeedFileWriter(ABC):
    """One feed instance: a directory, a final file name and a temp file name.

    ``directory``, ``file_name`` and ``temp_file_name`` override the
    derived values, e.g. to isolate tenants or redirect output in tests.
    """

    columns: list[str]

    def __init__(
        self,
        directory: str | None = None,
        secret: str | None = None,
        file_name: str | None = None,
        temp_file_name: str | None = None,
        buffer_size: int | None = None,
        progress_interval: int | None = None,
    ):
        settings = get_settings()
        self._directory = directory or settings.feed_directory
        self._secret = secret or settings.feed_file_secret or _hash(
            f"{self.feed_key}:{os.path.abspath(self._directory)}"
        )
        self._file_name_override = file_name
        self._temp_file_name_override = temp_file_name
        self.buffer_size = buffer_size or settings.feed_write_buffer_size
        self.progress_interval = progress_interval or settings.feed_progress_interval
        self._handle = None

        if self.get_file_name() == self.get_temp_file_name():
            raise ValueError("Final and temp feed file names must differ")

    @property
    @abstractmethod
    def feed_key(self) -> str:
        """Stable identifier of this feed instance."""

    @abstractmethod
    def _default_file_name(self, secret: str, temporary: bool) -> str:
        pass

    @abstractmethod
    async def resolve_row(self, product_id: str) -> FeedRow | CountryOverrideRow | None:
        pass

    def get_file_directory(self) -> str:
        return self._directory

    def get_file_name(self) -> str:
        return self._file_name_override or self._default_file_name(self._secret, temporary=False)

    def get_temp_file_name(self) -> str:
        return self._temp_file_name_override or self._default_file_name(
            _hash(self._secret), temporary=True
        )

    def get_file_path(self) -> str:
        return os.path.join(self.get_file_directory(), self.get_file_name())

    def get_temp_file_path(self) -> str:
        return os.path.join(self.get_file_directory(), self.get_temp_file_name())

    @property
    def header(self) -> bytes:
        return _serialize([self.columns])

    async def protect_directory(self) -> None:
        """Drop deny-all markers into the feed directory, keeping any existing ones."""
        await aiofiles.os.makedirs(self.get_file_directory(), exist_ok=True)

        for marker, content in DIRECTORY_MARKERS.items():
            path = os.path.join(self.get_file_directory(), marker)
            try:
                async with aiofiles.open(path, mode="x") as file:
                    await file.write(content)
            except FileExistsError:
                continue

    async def prepare_temp_file(self):
        """Create the temp file and write the header row.

        A leftover temp file from a crashed run of this feed is replaced.
        Anything else at the temp path is refused.

        Returns:
            The open binary file handle.

        Raises:
            FeedFileConflictException: the temp path holds unrelated content.
        """
        if self._handle is not None:
            raise FeedFileException(f"{self.get_temp_file_path()} is already open for writing")

        await aiofiles.os.makedirs(self.get_file_directory(), exist_ok=True)
        temp_path = self.get_temp_file_path()

        if await aiofiles.os.path.exists(temp_path):
            await self._check_leftover_temp_file(temp_path)

        handle = await aiofiles.open(temp_path, mode="wb")
        try:
            await handle.write(self.header)
        except Exception:
            await handle.close()
            raise

        self._handle = handle
        logger.debug("Prepared temp feed file", extra={"file_path": temp_path})
        return handle

    async def write_rows(
        self,
        handle,
        product_ids: AsyncIterable[str] | Iterable[str],
        progress_callback: ProgressCallback | None = None,
    ) -> WriteStats:
        """Append one row per resolvable product, in the order given.

        A product that fails to resolve is logged and skipped; the run goes
        on, so a catalog where nothing resolves still yields a header-only
        feed.
        """
        stats = WriteStats()
        buffer: list[list[str]] = []
        processed = 0

        async for product_id in _iterate(product_ids):
            processed += 1
            try:
                row = await self.resolve_row(product_id)
            except Exception as e:
                self._skip(stats, product_id, f"{type(e).__name__}: {e}")
            else:
                if row is None:
                    self._skip(stats, product_id, "product not found")
                else:
                    buffer.append(row.to_csv_row())
                    stats.rows_written += 1

            if len(buffer) >= self.buffer_size:
                await handle.write(_serialize(buffer))
                buffer.clear()

            if progress_callback is not None and processed % self.progress_interval == 0:
                await self._report_progress(progress_callback, stats)

        if buffer:
            await handle.write(_serialize(buffer))

        if progress_callback is not None:
            await self._report_progress(progress_callback, stats)

        return stats

    async def finalize(self) -> str:
        """Close the temp file and rename it over the final path.

        Returns:
            The published file path.

        Raises:
            FeedPublishException: nothing to publish, or the rename failed.
                On rename failure the temp file stays for diagnosis and the
                previous final file is untouched.
        """
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                await handle.flush()
                os.fsync(handle.fileno())
            finally:
                await handle.close()

        temp_path = self.get_temp_file_path()
        file_path = self.get_file_path()

        if not await aiofiles.os.path.exists(temp_path):
            raise FeedPublishException(
                f"No temp feed file to publish at {temp_path}; it was already consumed or never prepared"
            )

        try:
            await aiofiles.os.replace(temp_path, file_path)
        except OSError as e:
            logger.error(
                f"Failed to publish feed file: {e}",
                extra={"file_path": file_path, "temp_file_path": temp_path},
            )
            raise FeedPublishException(f"Could not rename {temp_path} to {file_path}: {e}") from e

        logger.info("Published feed file", extra={"file_path": file_path, "feed_key": self.feed_key})
        return file_path

    async def discard(self) -> None:
        """Drop the temp file of an abandoned run."""
        if self._handle is not None:
            handle, self._handle = self._handle, None
            await handle.close()

        temp_path = self.get_temp_file_path()
        if await aiofiles.os.path.exists(temp_path):
            await aiofiles.os.remove(temp_path)
            logger.info("Discarded temp feed file", extra={"file_path": temp_path})

    async def write_feed_file(
        self,
        product_ids: AsyncIterable[str] | Iterable[str],
        progress_callback: ProgressCallback | None = None,
    ) -> FeedWriteResult:
        """Protect, prepare, write and publish in one go."""
        await self.protect_directory()
        handle = await self.prepare_temp_file()

        try:
            stats = await self.write_rows(handle, product_ids, progress_callback)
            file_path = await self.finalize()
        except FeedPublishException:
            raise
        except Exception:
            await self.discard()
            raise

        return FeedWriteResult(
            file_path=file_path,
            rows_written=stats.rows_written,
            skipped_count=stats.skipped_count,
        )

    async def _check_leftover_temp_file(self, temp_path: str) -> None:
        header = self.header
        async with aiofiles.open(temp_path, mode="rb") as file:
            start = await file.read(len(header))

        if start and start != header:
            raise FeedFileConflictException(
                f"{temp_path} exists and does not look like a {self.feed_key} feed; refusing to overwrite it"
            )

        logger.warning(
            "Replacing temp feed file left by an interrupted run",
            extra={"file_path": temp_path},
        )

    def _skip(self, stats: WriteStats, product_id: str, reason: str) -> None:
        stats.skipped_count += 1
        logger.warning(
            f"Skipping product {product_id}: {reason}",
            extra={"product_id": product_id, "feed_key": self.feed_key},
        )

    @staticmethod
    async def _report_progress(progress_callback: ProgressCallback, stats: WriteStats) -> None:
        try:
            await progress_callback(stats.rows_written, stats.skipped_count)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


class CatalogFeedWriter(FeedFileWriter):
    columns = CATALOG_FEED_COLUMNS

    def __init__(self, catalog: ProductCatalog, **kwargs):
        self.catalog = catalog
        super().__init__(**kwargs)

    @property
    def feed_key(self) -> str:
        return "catalog"

    def _default_file_name(self, secret: str, temporary: bool) -> str:
        if temporary:
            return f"product_catalog_temp_{secret}.csv"
        return f"product_catalog_{secret}.csv"

    async def resolve_row(self, product_id: str) -> FeedRow | None:
        return await self.catalog.resolve(product_id)


class CountryOverrideFeedWriter(FeedFileWriter):
    columns = COUNTRY_OVERRIDE_FEED_COLUMNS

    def __init__(self, catalog: ProductCatalog, country_code: str, **kwargs):
        self.catalog = catalog
        self.country_code = country_code.lower()
        super().__init__(**kwargs)

    @property
    def feed_key(self) -> str:
        return f"country_override:{self.country_code}"

    def _default_file_name(self, secret: str, temporary: bool) -> str:
        if temporary:
            return f"country_override_temp_{self.country_code}_{secret}.csv"
        return f"country_override_{self.country_code}_{secret}.csv"

    async def resolve_row(self, product_id: str) -> CountryOverrideRow | None:
        return await self.catalog.resolve_country_override(product_id, self.country_code)
