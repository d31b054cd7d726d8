from unittest.mock import AsyncMock, MagicMock

import pytest

from catalogfeed.feeds.feed_scheduler import SchedulerState, TickResult
from catalogfeed.jobs.job_models import CountryOverrideFeedPayload
from catalogfeed.main.exceptions import JobAlreadyActiveException
from catalogfeed.worker.feed_tasks import (
    configured_feeds,
    purge_finished_jobs,
    run_requested_feed,
    tick_feeds,
)


@pytest.fixture
def container():
    container = MagicMock()
    container.feed_scheduler.return_value = MagicMock()
    container.job_service.return_value = MagicMock()
    return container


def test_configured_feeds_includes_one_feed_per_country(test_settings):
    test_settings.feed_countries = ["de", "fr"]

    feeds = configured_feeds()

    assert [feed.concurrency_key for feed in feeds] == [
        "catalog",
        "country_override:de",
        "country_override:fr",
    ]


async def test_tick_feeds_continues_after_a_failing_feed(test_settings, container):
    test_settings.feed_countries = ["de"]
    scheduler = container.feed_scheduler.return_value
    scheduler.tick = AsyncMock(
        side_effect=[RuntimeError("db down"), TickResult(state=SchedulerState.COOLDOWN)]
    )

    results = await tick_feeds(container)

    assert [result.state for result in results] == [SchedulerState.COOLDOWN]
    assert scheduler.tick.await_count == 2


async def test_run_requested_feed_runs_new_job(test_settings, container):
    job = MagicMock()
    container.job_service.return_value.create_job = AsyncMock(return_value=job)
    container.feed_scheduler.return_value.run_job = AsyncMock(return_value=job)

    result = await run_requested_feed({"type": "country_override", "country_code": "DE"}, container)

    assert result is job
    payload = container.job_service.return_value.create_job.await_args.args[0]
    assert payload == CountryOverrideFeedPayload(country_code="de")


async def test_run_requested_feed_returns_existing_job_when_active(test_settings, container):
    existing = MagicMock()
    container.job_service.return_value.create_job = AsyncMock(
        side_effect=JobAlreadyActiveException("busy", existing_job=existing)
    )
    container.feed_scheduler.return_value.run_job = AsyncMock()

    result = await run_requested_feed({"type": "catalog"}, container)

    assert result is existing
    container.feed_scheduler.return_value.run_job.assert_not_awaited()


async def test_purge_uses_retention_setting(test_settings, container):
    container.job_service.return_value.purge_finished_jobs = AsyncMock(return_value=3)

    assert await purge_finished_jobs(container) == 3
    retention = container.job_service.return_value.purge_finished_jobs.await_args.args[0]
    assert retention.days == test_settings.job_retention_days
