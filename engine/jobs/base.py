"""
Base Job

Shared plumbing for engine jobs: status/history bookkeeping,
cancellation checks and provider config lookup.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.exceptions import JobCancelledError
from ..core.logging import get_logger
from ..models.job import JobStatus
from ..models.provider import parse_provider_config

logger = get_logger(__name__)


class BaseJob(ABC):
    """
    A unit of scheduled work.

    Subclasses implement `execute(worker_data)` and return a result dict
    that is stored as the job's last_result. Raising marks the run failed.
    """

    name: str = ""

    def __init__(self, context):
        self.context = context
        self.catalog = context.catalog
        self.logger = logger.bind(job=self.name)
        # Cleared by a run that had nothing to do, so chained jobs are skipped
        self.run_post_execute = True
        # worker_data for chained jobs; the run's own worker_data when None
        self.post_execute_data: Optional[Dict[str, Any]] = None
        # Cleared by a run that left work to retry, so the next run looks at it again
        self.advance_last_execution = True

    async def get_last_execution(self, provider_id: Optional[str] = None) -> Optional[datetime]:
        history = await self.catalog.get_job_history(self.name, provider_id)
        return history.get("last_execution") if history else None

    async def set_job_status(self, status: JobStatus, provider_id: Optional[str] = None):
        await self.catalog.update_job_status(self.name, status, provider_id)

    async def get_provider_config(self, provider_id: str):
        """Typed config of a provider that is not deleted, or None."""
        document = await self.catalog.get_iptv_provider(provider_id)
        if document is None or document.get("deleted"):
            return None
        return parse_provider_config(document)

    async def check_cancelled(self):
        """Raise JobCancelledError when this job was marked cancelled."""
        if await self.catalog.get_job_status(self.name) == JobStatus.CANCELLED.value:
            raise JobCancelledError(self.name)

    @abstractmethod
    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def run(self, worker_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run the job and record its outcome.

        A cancelled run leaves the cancelled status in place and re-raises.
        """
        await self.set_job_status(JobStatus.RUNNING)
        try:
            result = await self.execute(worker_data or {})
        except JobCancelledError:
            self.logger.warning("job_cancelled")
            raise
        except Exception as e:
            await self.catalog.update_job_history(self.name, {"error": str(e)})
            raise

        await self.catalog.update_job_history(self.name, result, advance=self.advance_last_execution)
        return result
