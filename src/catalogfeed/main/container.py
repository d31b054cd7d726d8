from dependency_injector import containers, providers

from catalogfeed.database.database import DatabaseSessionManager
from catalogfeed.feeds.catalog import DatabaseProductCatalog
from catalogfeed.feeds.feed_scheduler import FeedScheduler
from catalogfeed.jobs.job_repo import JobRepository
from catalogfeed.jobs.job_service import JobService
from catalogfeed.jobs.queue_cache import build_queue_caches
from catalogfeed.main.aiohttp_client import aiohttp_client
from catalogfeed.main.config import get_settings
from catalogfeed.uploads.upload_client import CatalogApiClient
from catalogfeed.uploads.upload_status import UploadCompletionChecker


class Container(containers.DeclarativeContainer):
    """Process-wide wiring.

    Usage:
        container = Container(
            sessionmanager=providers.Object(sessionmanager),
            redis=providers.Object(redis_client),
        )
    """

    sessionmanager = providers.Dependency(instance_of=DatabaseSessionManager)
    redis = providers.Dependency()
    settings = providers.Callable(get_settings)
    http_session = providers.Object(aiohttp_client)

    job_repo = providers.Singleton(JobRepository, sessionmanager=sessionmanager)
    queue_caches = providers.Singleton(build_queue_caches, redis=redis, job_repo=job_repo)
    job_service = providers.Singleton(JobService, job_repo=job_repo, queue_caches=queue_caches)

    catalog = providers.Singleton(
        DatabaseProductCatalog,
        sessionmanager=sessionmanager,
        batch_size=settings.provided.feed_write_buffer_size,
    )

    catalog_api_client = providers.Factory(
        CatalogApiClient, session_provider=http_session, settings=settings
    )
    upload_checker = providers.Factory(UploadCompletionChecker, client=catalog_api_client)

    feed_scheduler = providers.Factory(
        FeedScheduler,
        job_service=job_service,
        catalog=catalog,
        upload_client=catalog_api_client,
        settings=settings,
    )
