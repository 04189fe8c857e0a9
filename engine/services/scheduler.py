"""
Background Job Scheduler

Runs the job catalog on APScheduler interval triggers and serves
manual triggers.
- Single flight per job name
- Jobs blocked while any job in their skip list is in progress
- post_execute jobs chained after a successful run, with the
  worker_data the finished job hands on (its own when it sets none)
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.exceptions import (
    JobAlreadyRunningError,
    JobBlockedError,
    JobCancelledError,
    JobNotFoundError,
)
from ..core.logging import get_logger
from ..jobs import JOB_CATALOG, JOB_CLASSES
from ..models.job import JobDefinition, JobStatus

logger = get_logger(__name__)

_INTERVAL_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_interval(value: Any) -> float:
    """
    Parse "30s" / "5m" / "1h" / "1d" / "250ms" into seconds.

    Bare numbers are milliseconds.
    """
    if isinstance(value, (int, float)):
        return float(value) / 1000
    match = _INTERVAL_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid interval: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit or "ms"]


def job_factory_for(context, job_classes: Optional[Dict[str, type]] = None) -> Callable[[str], Any]:
    """Build jobs by name from the class map, bound to the application context."""
    classes = job_classes or JOB_CLASSES

    def factory(name: str):
        return classes[name](context)

    return factory


class Scheduler:
    """
    Owns job execution for the engine.

    Interval runs and manual triggers go through `run_job`, so both share
    the single-flight map and the blocking rules.
    """

    def __init__(
        self,
        catalog,
        job_factory: Callable[[str], Any],
        definitions: Optional[List[JobDefinition]] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.catalog = catalog
        self.job_factory = job_factory
        self.definitions: Dict[str, JobDefinition] = {
            d.name: d for d in (definitions if definitions is not None else JOB_CATALOG)
        }
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._running_jobs: Dict[str, datetime] = {}

    # ----- lifecycle -----

    async def start(self):
        """Reset stale running statuses, then arm the interval jobs."""
        if self.scheduler.running:
            return
        reset = await self.catalog.reset_in_progress_jobs()
        logger.info("in_progress_jobs_reset", count=reset)
        self.setup_jobs()
        self.scheduler.start()
        logger.info("scheduler_started", jobs=len(self.scheduler.get_jobs()))

    def setup_jobs(self):
        now = datetime.now(timezone.utc)
        for definition in self.definitions.values():
            if not definition.interval:
                continue
            self.scheduler.add_job(
                self._run_scheduled,
                trigger=IntervalTrigger(seconds=parse_interval(definition.interval)),
                args=[definition.name],
                id=definition.name,
                name=definition.description or definition.name,
                next_run_time=now + timedelta(seconds=parse_interval(definition.timeout)),
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        logger.info("scheduler_jobs_configured", jobs=sorted(j.id for j in self.scheduler.get_jobs()))

    def stop(self):
        """Stop the scheduler without waiting for in-flight jobs."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    # ----- execution -----

    async def _run_scheduled(self, name: str):
        try:
            await self.run_job(name)
        except (JobAlreadyRunningError, JobBlockedError) as e:
            logger.debug("scheduler_job_skipped", job=name, reason=e.message)
        except Exception as e:
            logger.error("scheduler_job_failed", job=name, error=str(e))

    async def _is_running(self, name: str) -> bool:
        if name in self._running_jobs:
            return True
        return await self.catalog.get_job_status(name) == JobStatus.RUNNING.value

    async def can_run_job(self, name: str) -> Tuple[bool, Optional[str], List[str]]:
        """Return (allowed, reason, blocking_jobs)."""
        definition = self.definitions.get(name)
        if definition is None:
            raise JobNotFoundError(name)

        if await self._is_running(name):
            return False, f"Job '{name}' is already running", [name]

        blocking = [other for other in definition.skip_if_other_in_progress if await self._is_running(other)]
        if blocking:
            return False, f"Job '{name}' is blocked by: {', '.join(blocking)}", blocking
        return True, None, []

    async def run_job(self, name: str, worker_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run one job now.

        Raises:
            JobNotFoundError: name is not in the catalog
            JobAlreadyRunningError: an execution of the same job is in flight
            JobBlockedError: a job in its skip list is in progress
        """
        definition = self.definitions.get(name)
        if definition is None:
            raise JobNotFoundError(name)
        if name in self._running_jobs:
            raise JobAlreadyRunningError(name)

        # Reserve before any await so concurrent triggers see it
        self._running_jobs[name] = datetime.now(timezone.utc)
        try:
            blocking = [
                other for other in definition.skip_if_other_in_progress if await self._is_running(other)
            ]
            if blocking:
                raise JobBlockedError(name, f"Job '{name}' is blocked by: {', '.join(blocking)}", blocking)

            job = self.job_factory(name)
            started = datetime.now(timezone.utc)
            logger.info("job_started", job=name, worker_data=worker_data or {})
            try:
                result = await job.run(worker_data)
            except JobCancelledError:
                return {"cancelled": True}
            duration = (datetime.now(timezone.utc) - started).total_seconds()
            logger.info("job_completed", job=name, duration_seconds=round(duration, 3))
        finally:
            self._running_jobs.pop(name, None)

        if job.run_post_execute:
            follow_up_data = job.post_execute_data or worker_data
            for follow_up in definition.post_execute:
                try:
                    await self.run_job(follow_up, follow_up_data)
                except Exception as e:
                    logger.error("post_execute_job_failed", job=name, post_execute=follow_up, error=str(e))
        return result

    # ----- status -----

    def list_jobs(self) -> List[Dict[str, Any]]:
        return [definition.model_dump() for definition in self.definitions.values()]

    def get_job_status(self) -> Dict[str, Any]:
        """Scheduler state, running jobs and next run times."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })

        return {
            "running": self.scheduler.running,
            "running_jobs": {
                name: started.isoformat() for name, started in self._running_jobs.items()
            },
            "jobs": jobs,
            "current_time": datetime.now(timezone.utc).isoformat(),
        }
