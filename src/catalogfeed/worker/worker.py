from __future__ import annotations

from functools import wraps

from arq.cron import cron
from dependency_injector import providers

from catalogfeed.database.database import sessionmanager
from catalogfeed.main.aiohttp_client import aiohttp_client
from catalogfeed.main.config import get_settings
from catalogfeed.main.container import Container
from catalogfeed.main.log_context import clear_log_context
from catalogfeed.main.logging import get_logger
from catalogfeed.redis.connection import build_arq_redis_settings, create_redis_client

logger = get_logger(__name__)


class Worker:
    """
    Collects arq functions and cron jobs and owns the process resources they share.

    Attributes:
        functions (list): Registered functions, enqueued by name.
        cron_jobs (list): Registered arq cron jobs.
        redis_settings (RedisSettings): Redis settings for the arq queue.
        job_timeout (int): Upper bound for a single arq job in seconds. Feed
            runs are bounded more tightly by the scheduler's own budget.
        max_jobs (int): Maximum number of concurrent jobs.

    Methods:
        startup(ctx) / shutdown(ctx):
            Open and close the database engine, cache client and HTTP session.

        function():
            Decorator to register a function that receives the container.

        cron_job(**decorator_kwargs):
            Decorator to register a cron job; kwargs go to ``arq.cron.cron``.
    """

    def __init__(self):
        settings = get_settings()
        self.functions = []
        self.cron_jobs = []
        self.redis_settings = build_arq_redis_settings(settings)
        self.on_startup = self.startup
        self.on_shutdown = self.shutdown
        self.retry_jobs = False
        self.job_timeout = settings.feed_generation_max_seconds + 60 * 10
        self.max_jobs = settings.worker_max_jobs
        self.health_check_interval = 60
        self.job_completion_wait = 60

    @staticmethod
    def _create_container(redis) -> Container:
        return Container(
            sessionmanager=providers.Object(sessionmanager),
            redis=providers.Object(redis),
        )

    async def startup(self, ctx):
        settings = get_settings()
        sessionmanager.init(settings.database_url)
        aiohttp_client.start()

        ctx["cache_redis"] = create_redis_client(settings)
        ctx["container"] = self._create_container(ctx["cache_redis"])
        logger.info("Worker started", extra={"max_jobs": self.max_jobs})

    async def shutdown(self, ctx):
        if "cache_redis" in ctx:
            await ctx["cache_redis"].aclose()
        await aiohttp_client.stop()
        await sessionmanager.close()
        logger.info("Worker stopped")

    def function(self):
        def decorator(func):
            @wraps(func)
            async def wrapper(ctx, *args):
                logger.debug(f"Executing {func.__name__}", extra={"arq_job_id": ctx.get("job_id")})
                try:
                    return await func(*args, container=ctx["container"])
                finally:
                    clear_log_context()

            self.functions.append(wrapper)
            return wrapper

        return decorator

    def cron_job(self, **decorator_kwargs):
        def decorator(func):
            @wraps(func)
            async def wrapper(ctx):
                logger.debug(f"Executing {func.__name__}")
                try:
                    return await func(container=ctx["container"])
                finally:
                    clear_log_context()

            self.cron_jobs.append(cron(wrapper, **decorator_kwargs))
            return wrapper

        return decorator
