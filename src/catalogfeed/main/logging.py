import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import orjson
from rich.logging import RichHandler

from catalogfeed.main.config import get_loglevel
from catalogfeed.main.log_context import get_log_context

JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}

CONTEXT_KEYS = ("job_id", "feed_type", "concurrency_key", "event")

# Attributes every LogRecord carries; anything else came in through extra={}
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

# Library loggers that are only interesting while debugging
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "sqlalchemy.dialects",
    "aiohttp.access",
    "aiosqlite",
    "asyncio",
    "arq.worker",
    "arq.jobs",
)


class JobContextFilter(logging.Filter):
    """Copy the bound job context onto the record.

    Values passed explicitly through ``extra`` win over the bound ones.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if value is not None and not hasattr(record, key):
                setattr(record, key, value)
        return True


class FeedJSONFormatter(logging.Formatter):
    """One JSON object per line, with the job context and any extras."""

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_") or value is None:
                continue
            log.setdefault(key, value)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log, default=str).decode()


class ConsoleContextFormatter(logging.Formatter):
    """Message with the job context appended, for the rich console."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = " ".join(
            f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if getattr(record, key, None) is not None
        )
        return f"{message} [{context}]" if context else message


def _quiet_library_loggers(level: int) -> None:
    quiet_level = logging.INFO if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


_quiet_library_loggers(get_loglevel())


class SimpleLogger(logging.Logger):
    def __init__(self, name="main", level=logging.WARNING):
        logging.Logger.__init__(self, name, level)

        handler: logging.Handler
        if JSON_LOGS_ENABLED:
            handler = logging.StreamHandler(stream=sys.stdout)
            handler.setFormatter(FeedJSONFormatter())
        else:
            handler = RichHandler(rich_tracebacks=True, markup=False, show_path=True)
            handler.setFormatter(ConsoleContextFormatter("%(message)s"))

        handler.setLevel(level)
        handler.addFilter(JobContextFilter())
        self.addHandler(handler)


def get_logger(module_name: str):
    return SimpleLogger(name=module_name, level=get_loglevel())
