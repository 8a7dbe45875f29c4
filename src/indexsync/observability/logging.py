"""Structured logging configuration using structlog.

Module loggers stay on the standard library; the per-index error channel is a
structlog logger bound to the index name, so failed documents come out as
one structured event each (``index_sync_failed``).
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from indexsync.config.settings import ObservabilitySettings

DEFAULT_ERROR_CHANNEL = "indexsync.listener"

# Backend clients log every bulk request at INFO.
CHATTY_LOGGERS = ("opensearch", "httpx", "httpcore", "urllib3")


def setup_logging(settings: ObservabilitySettings | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        settings: Observability settings. Uses defaults if None.
    """
    level_name = (settings.log_level if settings else "info").upper()
    level = getattr(logging, level_name, logging.INFO)
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if settings is not None and settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    if level > logging.DEBUG:
        for name in CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_error_channel(logger: str | bool, **context: Any) -> Any | None:
    """Return the structured logger that indexing failures are reported to.

    Args:
        logger: ``True`` for the default channel, a logger name, or ``False``
            to report failures only through the returned ``FlushReport``.
        **context: Key/value pairs bound to every entry (e.g. ``index``).

    Returns:
        A bound structlog logger, or None when the channel is disabled.
    """
    if logger is False:
        return None
    name = DEFAULT_ERROR_CHANNEL if logger is True else str(logger)
    return structlog.get_logger(name).bind(**context)
