"""Structured logging configuration using structlog."""

import logging
import sys

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

SERVICE_NAME = "orgdir"

# Library loggers routed through the root handler instead of their own.
_ADOPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


def _add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for the directory service.

    Production output is one JSON object per line on stdout. Debug mode
    switches to the colored console renderer and lowers the level to DEBUG
    so per-tier search events become visible.

    Args:
        debug: Enable debug-level, human-readable logging when True.
    """
    level = logging.DEBUG if debug else logging.INFO

    renderer: Processor = (
        structlog.dev.ConsoleRenderer()
        if debug
        else structlog.processors.JSONRenderer()
    )
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if not debug:
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name in _ADOPTED_LOGGERS:
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
