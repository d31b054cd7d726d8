"""Unit tests for UploadCompletionChecker and CatalogApiClient.

The HTTP session is replaced by a small fake so that every remote
outcome (finished, in progress, unknown, broken, unreachable) can be
simulated without network access.
"""

import asyncio

import aiohttp
import pytest

from catalogfeed.main.exceptions import BadRequestException, ConfigurationException
from catalogfeed.uploads.upload_client import CatalogApiClient
from catalogfeed.uploads.upload_status import (
    ReferenceKind,
    UploadCompletionChecker,
    UploadReference,
    UploadStatus,
)


class FakeResponse:
    def __init__(self, status=200, body=None, invalid_json=False):
        self.status = status
        self.url = "https://catalog.example.com/fake"
        self._body = body if body is not None else {}
        self._invalid_json = invalid_json

    async def json(self, content_type=None):
        if self._invalid_json:
            raise ValueError("Expecting value")
        return self._body


class FakeRequest:
    def __init__(self, outcome):
        self.outcome = outcome

    async def __aenter__(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def __aexit__(self, *args):
        return False


class FakeSession:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, params))
        return FakeRequest(self.outcome)

    def post(self, url, data=None, timeout=None):
        self.calls.append(("POST", url, data))
        return FakeRequest(self.outcome)


def make_checker(settings, outcome):
    session = FakeSession(outcome)
    client = CatalogApiClient(session_provider=lambda: session, settings=settings)
    return UploadCompletionChecker(client), session


class TestUploadReference:
    def test_numeric_reference_is_a_feed_upload(self):
        reference = UploadReference.parse(" 1234567890 ")

        assert reference.kind == ReferenceKind.FEED_UPLOAD
        assert reference.value == "1234567890"

    def test_batch_prefix(self):
        reference = UploadReference.parse("batch:AbC_123==")

        assert reference.kind == ReferenceKind.BATCH
        assert reference.value == "AbC_123=="

    @pytest.mark.parametrize("raw", ["", None, "abc", "12/../34", "batch:", "batch:has space"])
    def test_malformed_references_are_rejected(self, raw):
        with pytest.raises(ValueError):
            UploadReference.parse(raw)


class TestFeedUploadStatus:
    async def test_finished_upload_is_complete(self, test_settings):
        checker, session = make_checker(
            test_settings,
            FakeResponse(body={"id": "1", "end_time": "2026-10-19T09:00:00+0000", "error_count": 0}),
        )

        result = await checker.inspect("1")

        assert result.status == UploadStatus.COMPLETE
        method, url, params = session.calls[0]
        assert url == "https://catalog.example.com/v1.0/1"
        assert params["access_token"] == "test-token"

    async def test_upload_without_end_time_is_pending(self, test_settings):
        checker, _ = make_checker(test_settings, FakeResponse(body={"id": "1"}))

        assert await checker.check("1") == UploadStatus.PENDING

    async def test_unknown_upload_is_error_and_flagged(self, test_settings):
        checker, _ = make_checker(test_settings, FakeResponse(status=404))

        result = await checker.inspect("1")

        assert result.status == UploadStatus.ERROR
        assert result.not_found is True

    async def test_malformed_reference_never_calls_remote(self, test_settings):
        checker, session = make_checker(test_settings, FakeResponse())

        assert await checker.check("not-a-reference") == UploadStatus.ERROR
        assert session.calls == []

    async def test_timeout_is_pending(self, test_settings):
        checker, _ = make_checker(test_settings, asyncio.TimeoutError())

        assert await checker.check("1") == UploadStatus.PENDING

    async def test_connection_error_is_pending(self, test_settings):
        checker, _ = make_checker(test_settings, aiohttp.ClientConnectionError("refused"))

        assert await checker.check("1") == UploadStatus.PENDING

    async def test_truncated_body_is_pending(self, test_settings):
        checker, _ = make_checker(test_settings, aiohttp.ClientPayloadError("truncated"))

        assert await checker.check("123") == UploadStatus.PENDING

    @pytest.mark.parametrize(
        "error",
        [
            aiohttp.InvalidURL("not a url"),
            aiohttp.ClientError("unexpected response"),
        ],
    )
    async def test_other_client_errors_are_error_with_detail(self, test_settings, error):
        checker, _ = make_checker(test_settings, error)

        result = await checker.inspect("123")

        assert result.status == UploadStatus.ERROR
        assert type(error).__name__ in result.detail

    async def test_server_error_is_pending(self, test_settings):
        checker, _ = make_checker(test_settings, FakeResponse(status=503))

        assert await checker.check("1") == UploadStatus.PENDING

    async def test_unreadable_body_is_error(self, test_settings):
        checker, _ = make_checker(test_settings, FakeResponse(invalid_json=True))

        assert await checker.check("1") == UploadStatus.ERROR

    async def test_client_error_is_error(self, test_settings):
        checker, _ = make_checker(
            test_settings,
            FakeResponse(status=400, body={"error": {"message": "Invalid OAuth access token"}}),
        )

        result = await checker.inspect("1")

        assert result.status == UploadStatus.ERROR
        assert "Invalid OAuth" in result.detail

    async def test_missing_access_token_is_error(self, test_settings):
        settings = test_settings.model_copy(update={"catalog_access_token": None})
        checker, session = make_checker(settings, FakeResponse())

        assert await checker.check("1") == UploadStatus.ERROR
        assert session.calls == []


class TestBatchStatus:
    async def test_batch_in_progress_is_pending(self, test_settings):
        checker, session = make_checker(
            test_settings, FakeResponse(body={"data": [{"status": "in_progress"}]})
        )

        assert await checker.check("batch:abc") == UploadStatus.PENDING
        method, url, params = session.calls[0]
        assert url == "https://catalog.example.com/v1.0/1234/check_batch_request_status"
        assert params["handle"] == "abc"

    async def test_batch_finished_is_complete(self, test_settings):
        checker, _ = make_checker(
            test_settings, FakeResponse(body={"data": [{"status": "finished", "errors": []}]})
        )

        assert await checker.check("batch:abc") == UploadStatus.COMPLETE

    async def test_batch_without_data_is_error(self, test_settings):
        checker, _ = make_checker(test_settings, FakeResponse(body={"data": []}))

        assert await checker.check("batch:abc") == UploadStatus.ERROR

    async def test_batch_without_catalog_id_is_error(self, test_settings):
        settings = test_settings.model_copy(update={"catalog_id": None})
        checker, _ = make_checker(settings, FakeResponse())

        assert await checker.check("batch:abc") == UploadStatus.ERROR


class TestRequestFeedUpload:
    async def test_returns_upload_id(self, test_settings):
        session = FakeSession(FakeResponse(body={"id": 4242}))
        client = CatalogApiClient(session_provider=lambda: session, settings=test_settings)

        upload_id = await client.request_feed_upload("https://cdn.example.com/feed.csv")

        assert upload_id == "4242"
        method, url, data = session.calls[0]
        assert (method, url) == ("POST", "https://catalog.example.com/v1.0/5678/uploads")
        assert data["url"] == "https://cdn.example.com/feed.csv"

    async def test_bad_request_is_not_retried(self, test_settings):
        session = FakeSession(FakeResponse(status=400, body={"error": {"message": "bad url"}}))
        client = CatalogApiClient(session_provider=lambda: session, settings=test_settings)

        with pytest.raises(BadRequestException):
            await client.request_feed_upload("https://cdn.example.com/feed.csv")

        assert len(session.calls) == 1

    async def test_missing_feed_id_is_not_retried(self, test_settings):
        settings = test_settings.model_copy(update={"catalog_product_feed_id": None})
        session = FakeSession(FakeResponse())
        client = CatalogApiClient(session_provider=lambda: session, settings=settings)

        with pytest.raises(ConfigurationException):
            await client.request_feed_upload("https://cdn.example.com/feed.csv")

        assert session.calls == []
