"""
Engine Exceptions

Error kinds raised by the pipeline, the scheduler and the catalog,
plus the FastAPI handler for the control surface.
"""

from typing import List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class EngineException(Exception):
    """Base exception for engine errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransientUpstreamError(EngineException):
    """Upstream 5xx, timeout or network failure."""

    def __init__(self, url: str, reason: str, upstream_status: Optional[int] = None):
        self.url = url
        self.upstream_status = upstream_status
        super().__init__(
            message=f"Upstream request failed: {reason}",
            status_code=502
        )


class UpstreamHTTPError(EngineException):
    """Upstream answered with a non-transient error status (4xx)."""

    def __init__(self, url: str, upstream_status: int):
        self.url = url
        self.upstream_status = upstream_status
        super().__init__(
            message=f"Upstream returned HTTP {upstream_status}",
            status_code=502
        )


class EndOfPaginationError(EngineException):
    """Paginated upstream listing has no more pages."""

    def __init__(self, page: int):
        self.page = page
        super().__init__(message=f"Page not found: {page}", status_code=404)


class PersistenceError(EngineException):
    """Bulk write to the catalog failed."""

    def __init__(self, collection: str, reason: str):
        self.collection = collection
        super().__init__(
            message=f"Failed to write to {collection}: {reason}",
            status_code=500
        )


class FatalConfigurationError(EngineException):
    """Engine cannot start (no MongoDB, no TMDB token)."""

    def __init__(self, message: str):
        super().__init__(message=message, status_code=500)


class ProviderNotFoundError(EngineException):
    """Provider id is not configured."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(
            message=f"Provider {provider_id} not found",
            status_code=404
        )


class JobNotFoundError(EngineException):
    """Job name is not in the job catalog."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(message=f"Job '{job_name}' not found", status_code=404)


class JobAlreadyRunningError(EngineException):
    """Another execution of the same job is in flight."""

    code = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(
            message=f"Job '{job_name}' is already running",
            status_code=409
        )


class JobBlockedError(EngineException):
    """Job is blocked by other jobs being in progress."""

    code = "JOB_CANNOT_RUN"

    def __init__(self, job_name: str, reason: str, blocking_jobs: List[str]):
        self.job_name = job_name
        self.blocking_jobs = blocking_jobs
        super().__init__(message=reason, status_code=409)


class JobCancelledError(EngineException):
    """Running job observed a cancelled status and stopped."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(
            message=f"Job '{job_name}' was cancelled",
            status_code=409
        )


async def engine_exception_handler(
    request: Request,
    exc: EngineException
) -> JSONResponse:
    """Handle EngineException and return JSON response."""
    content = {
        "error": True,
        "message": exc.message,
        "status_code": exc.status_code,
    }
    code = getattr(exc, "code", None)
    if code:
        content["code"] = code
    if isinstance(exc, JobBlockedError):
        content["blockingJobs"] = exc.blocking_jobs
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(EngineException, engine_exception_handler)
