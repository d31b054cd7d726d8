"""Operator commands for inspecting and driving feed jobs.

Examples:
    catalogfeed jobs --status processing
    catalogfeed tick --country de
    catalogfeed upload-status 1234567890
    catalogfeed upload-status batch:AbC123==
    catalogfeed purge --days 30
"""

import argparse
import asyncio
import sys
from datetime import timedelta

import orjson
from dependency_injector import providers
from rich.console import Console
from rich.table import Table

from catalogfeed.database.database import sessionmanager
from catalogfeed.jobs.job_models import (
    CatalogFeedPayload,
    CountryOverrideFeedPayload,
    Job,
    JobFilter,
    JobStatus,
    JobType,
)
from catalogfeed.main.aiohttp_client import aiohttp_client
from catalogfeed.main.config import Settings, get_settings
from catalogfeed.main.container import Container
from catalogfeed.redis.connection import create_redis_client
from catalogfeed.uploads.upload_status import UploadStatus

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalogfeed",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    jobs = subparsers.add_parser("jobs", help="List feed jobs, newest first")
    jobs.add_argument("--status", choices=[status.value for status in JobStatus])
    jobs.add_argument("--type", dest="job_type", choices=[job_type.value for job_type in JobType])
    jobs.add_argument("--limit", type=int, default=20)
    jobs.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    tick = subparsers.add_parser("tick", help="Run one scheduler pass for a feed")
    tick.add_argument("--country", help="Country override feed instead of the catalog feed")

    upload_status = subparsers.add_parser("upload-status", help="Check a remote upload reference")
    upload_status.add_argument("reference")

    purge = subparsers.add_parser("purge", help="Delete finished jobs older than the retention window")
    purge.add_argument("--days", type=int, default=None)

    return parser


def retention_days(args: argparse.Namespace, settings: Settings) -> int:
    return args.days if args.days is not None else settings.job_retention_days


def render_jobs(jobs: list[Job]) -> Table:
    table = Table(title="Feed jobs")
    for column in ("id", "feed", "status", "progress", "skipped", "updated", "failure"):
        table.add_column(column)

    for job in jobs:
        table.add_row(
            str(job.id),
            job.concurrency_key,
            job.status.value,
            f"{job.progress}/{job.total}" if job.total is not None else str(job.progress),
            str(job.skipped_count),
            job.updated_at.isoformat(timespec="seconds"),
            job.failure_reason or "",
        )
    return table


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    sessionmanager.init(settings.database_url)
    redis = create_redis_client(settings)
    aiohttp_client.start()
    container = Container(
        sessionmanager=providers.Object(sessionmanager),
        redis=providers.Object(redis),
    )

    try:
        match args.command:
            case "jobs":
                jobs = await container.job_service().get_jobs(
                    JobFilter(
                        status=JobStatus(args.status) if args.status else None,
                        job_type=JobType(args.job_type) if args.job_type else None,
                        limit=args.limit,
                    )
                )
                if args.json:
                    sys.stdout.write(
                        orjson.dumps([job.model_dump(mode="json") for job in jobs]).decode() + "\n"
                    )
                else:
                    console.print(render_jobs(jobs))
                return 0

            case "tick":
                payload = (
                    CountryOverrideFeedPayload(country_code=args.country)
                    if args.country
                    else CatalogFeedPayload()
                )
                result = await container.feed_scheduler().tick(payload)
                console.print(f"{payload.concurrency_key}: {result.state.value}")
                if result.job is not None:
                    console.print(render_jobs([result.job]))
                return 0 if result.job is None or result.job.status != JobStatus.FAILED else 1

            case "upload-status":
                result = await container.upload_checker().inspect(args.reference)
                console.print(f"{result.status.value}: {result.detail}")
                if result.not_found:
                    console.print("Reference is unknown to the catalog endpoint")
                return 0 if result.status != UploadStatus.ERROR else 1

            case "purge":
                days = retention_days(args, settings)
                deleted = await container.job_service().purge_finished_jobs(timedelta(days=days))
                console.print(f"Deleted {deleted} finished job(s) older than {days} day(s)")
                return 0

        return 2
    finally:
        await aiohttp_client.stop()
        await redis.aclose()
        await sessionmanager.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
