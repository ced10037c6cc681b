"""Conductor logging helpers.

Provides get_logger, configure_logging and track_performance on top of
Python's standard logging library.
"""

import functools
import inspect
import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are copied through."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Install a single handler on the ``conductor`` logger.

    Calling it again replaces the previously installed handler.
    """
    root = logging.getLogger("conductor")
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if getattr(handler, "_conductor_handler", False):
            root.removeHandler(handler)
            handler.close()

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    handler._conductor_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root


@contextmanager
def _timed(logger: logging.Logger, operation: str) -> Iterator[None]:
    """Log how long the body took, tagging the record with its outcome."""
    started = time.perf_counter()
    outcome = "failed"
    try:
        yield
        outcome = "completed"
    finally:
        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        logger.debug(
            f"{operation} {outcome} in {duration_ms}ms",
            extra={"operation": operation, "outcome": outcome, "duration_ms": duration_ms},
        )


def track_performance(func: Optional[Callable] = None, *, operation: str = ""):
    """Time each call of a sync or async callable at DEBUG level.

    Usable bare (``@track_performance``) or with an explicit operation name
    (``@track_performance(operation="register_agent")``).
    """
    def decorator(fn: Callable) -> Callable:
        name = operation or fn.__qualname__
        logger = logging.getLogger(fn.__module__)

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def timed_coroutine(*args: Any, **kwargs: Any) -> Any:
                with _timed(logger, name):
                    return await fn(*args, **kwargs)
            return timed_coroutine

        @functools.wraps(fn)
        def timed_call(*args: Any, **kwargs: Any) -> Any:
            with _timed(logger, name):
                return fn(*args, **kwargs)
        return timed_call

    return decorator(func) if func is not None else decorator
