"""Structured logging configuration for couchstream.

Logs are emitted through structlog, rendered with colors on a terminal and
as logfmt otherwise, always to stderr so that commands can write data to
stdout. Every line carries an ISO 8601 UTC timestamp and the log level.

Long-running reads (a changes subscription, a batch export) set an
operation id in a context variable; it is added to every line logged while
the operation runs, so interleaved operations can be told apart.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    merge_contextvars,
)
from structlog.processors import TimeStamper, add_log_level


if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor, WrappedLogger

__all__ = [
    "LogLevel",
    "clear_operation_context",
    "configure_logging",
    "generate_operation_id",
    "get_logger",
    "get_operation_id",
    "set_operation_id",
]


class LogLevel(StrEnum):
    """Log levels accepted by :func:`configure_logging`."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_stdlib_level(self) -> int:
        """Return the matching ``logging`` module constant."""
        return logging.getLevelNamesMapping()[self.name]


# ---------------------------------------------------------------------------
# Operation Context
# ---------------------------------------------------------------------------

_current_operation: ContextVar[str | None] = ContextVar(
    "couchstream_operation",
    default=None,
)


def generate_operation_id() -> str:
    """Return a fresh 8 character hex id."""
    return uuid.uuid4().hex[:8]


def get_operation_id() -> str | None:
    """Return the operation id of the current context, if any."""
    return _current_operation.get()


def set_operation_id(operation_id: str | None = None) -> str:
    """Mark the current context as part of an operation.

    The id is also bound to structlog's context variables, so loggers
    created before the call pick it up as well.

    Args:
        operation_id: Id to use. A new one is generated when None.

    Returns:
        The id now in effect.
    """
    operation_id = operation_id or generate_operation_id()
    _current_operation.set(operation_id)
    bind_contextvars(operation_id=operation_id)
    return operation_id


def clear_operation_context() -> None:
    """Forget the operation id and every other bound context variable."""
    _current_operation.set(None)
    clear_contextvars()


def add_operation_id(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Processor that stamps the current operation id on an event."""
    del logger, method_name
    operation_id = get_operation_id()
    if operation_id is not None:
        event_dict.setdefault("operation_id", operation_id)
    return event_dict


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _stderr_is_tty() -> bool:
    stream = sys.stderr
    return stream is not None and getattr(stream, "isatty", lambda: False)()


def _renderer(*, colors: bool) -> Processor:
    if colors:
        return structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    return structlog.processors.LogfmtRenderer(
        key_order=["timestamp", "level", "event", "operation_id"],
        drop_missing=True,
        bool_as_flag=False,
    )


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    *,
    force_colors: bool | None = None,
) -> None:
    """Set up structlog and the standard library logging.

    Meant to be called once per process, before the first log line.

    Args:
        level: Threshold as a LogLevel or a level name in any case.
        force_colors: True or False to force the console or logfmt
            renderer. None picks the console renderer when stderr is a
            terminal.

    Raises:
        ValueError: If ``level`` is not a known level name.

    Example:
        >>> configure_logging("debug", force_colors=False)
    """
    level = LogLevel(level.lower()) if isinstance(level, str) else level
    threshold = level.to_stdlib_level()
    colors = _stderr_is_tty() if force_colors is None else force_colors

    processors: list[Processor] = [
        merge_contextvars,
        add_operation_id,
        add_log_level,
        TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _renderer(colors=colors),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # httpx and anyio log through the standard library
    logging.basicConfig(
        format="%(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
        level=threshold,
        force=True,
    )


def get_logger(name: str | None = None, **context: object) -> structlog.BoundLogger:
    """Return a structlog logger, optionally with context already bound.

    Example:
        >>> log = get_logger(__name__, database="orders")
        >>> log.info("dump_started", page_size=500)
    """
    log: structlog.BoundLogger = structlog.get_logger(name)
    return log.bind(**context) if context else log
