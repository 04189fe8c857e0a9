"""Core infrastructure modules."""

from .exceptions import (
    EngineException,
    TransientUpstreamError,
    UpstreamHTTPError,
    EndOfPaginationError,
    PersistenceError,
    FatalConfigurationError,
    ProviderNotFoundError,
    JobNotFoundError,
    JobAlreadyRunningError,
    JobBlockedError,
    JobCancelledError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "EngineException",
    "TransientUpstreamError",
    "UpstreamHTTPError",
    "EndOfPaginationError",
    "PersistenceError",
    "FatalConfigurationError",
    "ProviderNotFoundError",
    "JobNotFoundError",
    "JobAlreadyRunningError",
    "JobBlockedError",
    "JobCancelledError",
    "setup_logging",
    "get_logger",
]
