"""Structured logging for layout comparison runs.

The comparison engine logs through module-level structlog loggers and never
configures output itself. Applications call ``configure_logging`` once; the
level and renderer default to the ``LAYOUT_SENTINEL_LOG_*`` settings.

Run-scoped fields (snapshot URL, viewport, sample index) are carried in
structlog context variables so nested comparisons inherit them.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Optional

import structlog

if TYPE_CHECKING:
    from ..config import Settings
    from ..layout.models import LayoutSnapshot


def _shared_processors(include_timestamp: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    return processors


def configure_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    include_timestamp: bool = True,
    settings: Optional["Settings"] = None,
) -> None:
    """Route structlog through the stdlib root logger on stdout.

    Args:
        level: Log level name; falls back to ``settings.log_level``
        json_format: Render JSON lines instead of console output;
            falls back to ``settings.log_json``
        include_timestamp: Stamp each event with a UTC ISO timestamp
        settings: Settings to read defaults from (loaded when omitted)
    """
    if level is None or json_format is None:
        if settings is None:
            from ..config import get_settings

            settings = get_settings()
        level = level or settings.log_level
        json_format = settings.log_json if json_format is None else json_format

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=logging.getLevelName(level.upper()))

    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*_shared_processors(include_timestamp), renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, **context) -> structlog.BoundLogger:
    """Return a structlog logger, bound to ``context`` when given."""
    log = structlog.get_logger(name)
    return log.bind(**context) if context else log


class LogContext:
    """Bind context variables for the duration of a ``with`` block.

    Previous values are restored on exit, so contexts nest::

        with LogContext(url=baseline.url, viewport="1280x720"):
            comparator.compare(baseline, current)
    """

    def __init__(self, **context):
        self.context = context
        self._tokens: dict = {}

    def __enter__(self) -> "LogContext":
        if self.context:
            self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._tokens:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = {}


def snapshot_context(snapshot: "LayoutSnapshot", **extra) -> LogContext:
    """LogContext carrying a snapshot's URL and viewport."""
    width, height = snapshot.viewport_size
    return LogContext(url=snapshot.url, viewport=f"{width}x{height}", **extra)


@contextmanager
def log_operation(
    operation: str,
    logger: Optional[structlog.BoundLogger] = None,
    **context,
) -> Iterator[dict[str, Any]]:
    """Log ``<operation> started`` and then ``completed`` or ``failed``.

    The yielded dict is merged into the closing event, so callers can attach
    results to it. Exceptions are logged with their message and re-raised.
    """
    log = (logger or get_logger()).bind(operation=operation, **context)
    outcome: dict[str, Any] = {"success": False, "error": None}
    started = time.perf_counter()
    log.info(f"{operation} started")

    try:
        yield outcome
    except Exception as e:
        outcome["error"] = str(e)
        log.error(f"{operation} failed", duration_ms=_elapsed_ms(started), **outcome)
        raise

    outcome["success"] = True
    log.info(f"{operation} completed", duration_ms=_elapsed_ms(started), **outcome)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
