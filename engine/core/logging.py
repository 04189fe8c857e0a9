"""
Structured Logging Configuration

Uses structlog for JSON-formatted, structured logs.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import Processor

from ..config import get_settings


def setup_logging(log_level: Optional[str] = None):
    """
    Configure structured logging for the engine.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
    """
    settings = get_settings()

    if log_level is None:
        log_level = "DEBUG" if settings.debug else "INFO"
    level = getattr(logging, log_level.upper())

    # Route stdlib loggers (uvicorn, apscheduler, pymongo) to stdout
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    # APScheduler logs every interval execution at INFO
    logging.getLogger("apscheduler").setLevel(max(level, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.environment == "development":
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True)
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "playarr_engine") -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
