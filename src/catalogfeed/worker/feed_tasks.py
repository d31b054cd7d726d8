from datetime import timedelta

from catalogfeed.feeds.feed_scheduler import TickResult
from catalogfeed.jobs.job_models import (
    CatalogFeedPayload,
    CountryOverrideFeedPayload,
    Job,
    JobPayload,
    parse_payload,
)
from catalogfeed.main.config import get_settings
from catalogfeed.main.container import Container
from catalogfeed.main.exceptions import JobAlreadyActiveException
from catalogfeed.main.logging import get_logger

logger = get_logger(__name__)


def configured_feeds() -> list[JobPayload]:
    """The catalog feed plus one country override feed per configured country."""
    feeds: list[JobPayload] = [CatalogFeedPayload()]
    feeds.extend(
        CountryOverrideFeedPayload(country_code=country)
        for country in get_settings().feed_countries
    )
    return feeds


async def tick_feeds(container: Container) -> list[TickResult]:
    """Run one scheduler pass for every configured feed.

    Feeds are independent: one feed blowing up does not skip the others.
    """
    scheduler = container.feed_scheduler()
    results = []
    states = {}

    for payload in configured_feeds():
        try:
            result = await scheduler.tick(payload)
        except Exception:
            logger.exception(
                f"Scheduler tick failed for {payload.concurrency_key}:",
                extra={"concurrency_key": payload.concurrency_key},
            )
            continue

        results.append(result)
        states[payload.concurrency_key] = result.state.value

    logger.info("Feed tick finished", extra={"feed_states": states})
    return results


async def run_requested_feed(params: dict, container: Container) -> Job:
    """Generate a feed now, skipping the due check but not the single-run guard."""
    payload = parse_payload(params)
    job_service = container.job_service()

    try:
        job = await job_service.create_job(payload)
    except JobAlreadyActiveException as e:
        logger.info(f"Feed already running for {payload.concurrency_key}")
        return e.existing_job

    return await container.feed_scheduler().run_job(job)


async def purge_finished_jobs(container: Container) -> int:
    retention = timedelta(days=get_settings().job_retention_days)
    return await container.job_service().purge_finished_jobs(retention)
