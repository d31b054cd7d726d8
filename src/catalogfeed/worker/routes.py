from catalogfeed.main.config import get_settings
from catalogfeed.main.container import Container
from catalogfeed.worker.feed_tasks import purge_finished_jobs, run_requested_feed, tick_feeds
from catalogfeed.worker.worker import Worker

worker = Worker()


@worker.cron_job(minute=get_settings().feed_tick_minutes, unique=True)
async def tick_all_feeds(container: Container):
    results = await tick_feeds(container=container)
    return [result.state.value for result in results]


@worker.cron_job(minute=5)  # Hourly at :05
async def purge_old_jobs(container: Container):
    return await purge_finished_jobs(container=container)


@worker.function()
async def generate_feed(params: dict, container: Container):
    """Operator-triggered run.

    Note: params is a dict here because it comes from ARQ; it is validated
    into a typed payload inside the task.
    """
    job = await run_requested_feed(params, container=container)
    return None if job is None else {"job_id": str(job.id), "status": job.status.value}
