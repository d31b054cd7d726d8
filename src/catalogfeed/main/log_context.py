"""Per-task logging context (job id, feed type) stored in contextvars."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator


_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current log context."""
    context = _log_context.get()
    return dict(context) if context else {}


def set_log_context(**values: Any) -> Dict[str, Any]:
    """Merge provided values into the stored context.

    Passing ``None`` clears the value for that key.
    """

    current = get_log_context()
    for key, value in values.items():
        if value is None:
            current.pop(key, None)
        else:
            current[key] = value
    _log_context.set(current)
    return current


def clear_log_context() -> None:
    """Remove all stored context for the active task."""

    _log_context.set({})


@contextmanager
def log_context(**values: Any) -> Iterator[Dict[str, Any]]:
    """Bind values for the duration of a block, restoring the previous context after."""
    token = _log_context.set({**get_log_context(), **{k: v for k, v in values.items() if v is not None}})
    try:
        yield get_log_context()
    finally:
        _log_context.reset(token)
