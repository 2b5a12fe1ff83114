"""
Admin Jobs Router

Endpoints for inspecting and operating the background job scheduler. Jobs
run on schedule; these endpoints exist for maintenance and testing.

Endpoints:
- GET  /admin/jobs/status - Scheduler status and registered jobs
- GET  /admin/jobs/cleanup/status - Cleanup configuration and current cutoff
- GET  /admin/jobs/cleanup/validate - Cleanup configuration warnings
- POST /admin/jobs/cleanup/trigger - Run the cleanup job now
- POST /admin/jobs/{job_id}/trigger - Run any registered job now
- POST /admin/jobs/{job_id}/pause - Pause a scheduled job
- POST /admin/jobs/{job_id}/resume - Resume a paused job

Restricted to professors; there is no separate admin role.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from enrollment.core.auth import Principal, require_professor
from enrollment.core.clock import system_clock
from enrollment.core.scheduler import JobNotFoundError, JobScheduler
from enrollment.modules.cleanup.jobs import JOB_ID_FILE_CLEANUP, get_cleanup_job_status
from enrollment.modules.cleanup.policy import CleanupConfig, validate_cleanup_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/jobs", tags=["Admin - Jobs"])


def get_scheduler(request: Request) -> JobScheduler:
    """The scheduler owned by the application lifespan."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "SCHEDULER_UNAVAILABLE", "message": "Job scheduler is not configured"},
        )
    return scheduler


def get_cleanup_config(request: Request) -> CleanupConfig:
    config = getattr(request.app.state, "cleanup_config", None)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "CLEANUP_UNAVAILABLE", "message": "Cleanup job is not configured"},
        )
    return config


async def _trigger(scheduler: JobScheduler, job_id: str, principal: Principal) -> dict[str, Any]:
    logger.info(f"Manual trigger of job {job_id} requested by {principal}")
    try:
        return await scheduler.trigger_job_manually(job_id)
    except JobNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "JOB_NOT_FOUND", "message": str(e)},
        ) from e


@router.get("/status", summary="Get Scheduler Status")
async def scheduler_status(
    _principal: Principal = Depends(require_professor),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """
    Scheduler status.

    Returns:
        Running flag, configuration time, and each job with its next run time
    """
    return scheduler.get_status()


@router.get("/cleanup/status", summary="Get Cleanup Job Status")
async def cleanup_status(
    _principal: Principal = Depends(require_professor),
    config: CleanupConfig = Depends(get_cleanup_config),
) -> dict[str, Any]:
    return get_cleanup_job_status(config, system_clock.now())


@router.get("/cleanup/validate", summary="Validate Cleanup Configuration")
async def cleanup_validate(
    _principal: Principal = Depends(require_professor),
    config: CleanupConfig = Depends(get_cleanup_config),
) -> dict[str, Any]:
    return {
        "valid": True,
        "warnings": validate_cleanup_config(config),
        "config": config.to_dict(),
    }


@router.post("/cleanup/trigger", summary="Run Cleanup Job Now")
async def cleanup_trigger(
    principal: Principal = Depends(require_professor),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """
    Run the file cleanup job immediately.

    If a run is already in progress, waits for it and returns its result
    (joined_in_progress is true in that case).
    """
    return await _trigger(scheduler, JOB_ID_FILE_CLEANUP, principal)


@router.post("/{job_id}/trigger", summary="Run Job Now")
async def trigger_job(
    job_id: str,
    principal: Principal = Depends(require_professor),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    return await _trigger(scheduler, job_id, principal)


@router.post("/{job_id}/pause", summary="Pause Job")
async def pause_job(
    job_id: str,
    _principal: Principal = Depends(require_professor),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """
    Pause a scheduled job.

    The job stops running on schedule but stays registered and can still be
    triggered manually.
    """
    return {"job_id": job_id, "paused": scheduler.pause_job(job_id)}


@router.post("/{job_id}/resume", summary="Resume Job")
async def resume_job(
    job_id: str,
    _principal: Principal = Depends(require_professor),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    return {"job_id": job_id, "resumed": scheduler.resume_job(job_id)}
