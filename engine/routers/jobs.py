"""
Jobs API Router

Endpoints for inspecting and triggering engine jobs and for
notifying the engine about provider lifecycle changes.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from ..core.logging import get_logger
from ..models.job import JobTriggerRequest, ProviderAction, ProviderActionRequest
from ..services.context import ApplicationContext
from ..services.scheduler import Scheduler

logger = get_logger(__name__)

router = APIRouter(tags=["jobs"])


def get_context(request: Request) -> ApplicationContext:
    return request.app.state.context


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


@router.get("/health")
async def health():
    """Health check for load balancers."""
    return {"status": "healthy"}


@router.get("/api/jobs")
async def list_jobs(scheduler: Scheduler = Depends(get_scheduler)):
    """Job catalog with intervals, chained jobs and blocking jobs."""
    return {"jobs": scheduler.list_jobs()}


@router.get("/api/jobs/status")
async def get_jobs_status(
    scheduler: Scheduler = Depends(get_scheduler),
    context: ApplicationContext = Depends(get_context),
):
    """
    Current scheduler status.

    Returns:
        - Whether the scheduler is running
        - Jobs currently executing
        - Next run time of every interval job
        - Provider actions waiting in the queue
    """
    status = scheduler.get_job_status()
    status["pending_actions"] = context.pending_actions()
    return status


@router.post("/api/jobs/{job_name}/trigger")
async def trigger_job(
    job_name: str,
    body: Optional[JobTriggerRequest] = Body(None),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """
    Run a job now and wait for its result.

    404 for an unknown job, 409 when it is running or blocked.
    """
    worker_data = {}
    if body is not None and body.provider_id:
        worker_data["providerId"] = body.provider_id
    logger.info("manual_job_trigger", job=job_name, worker_data=worker_data)

    result = await scheduler.run_job(job_name, worker_data)
    return {
        "success": True,
        "job": job_name,
        "result": result,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/api/providers/{provider_id}/action")
async def provider_action(
    provider_id: str,
    body: ProviderActionRequest,
    context: ApplicationContext = Depends(get_context),
):
    """Queue a provider lifecycle action for the matching job."""
    try:
        action = ProviderAction(body.action)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid action '{body.action}'. Expected one of: {', '.join(a.value for a in ProviderAction)}",
        )

    context.add_provider_to_action_queue(action, provider_id)
    return {"success": True, "provider_id": provider_id, "action": action.value}
