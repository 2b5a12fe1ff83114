"""
Background Job Scheduler

Provides scheduled task execution using APScheduler with AsyncIO support.
Handles job registration, execution, and graceful shutdown.

Design Principles:
- Jobs are idempotent (safe to run multiple times)
- Failed jobs are logged but don't crash the scheduler
- Jobs can be triggered manually for maintenance or testing
- Runs are single-flight: a manual trigger that arrives while the same job
  is running joins that run instead of starting a second one
- The scheduler is an explicit object built from settings and owned by the
  FastAPI lifespan, not a module global
- Single-flight holds within one process only; with several workers, enable
  the scheduler (scheduler_enabled) in exactly one of them

Usage:
    scheduler = JobScheduler.from_settings(settings)
    scheduler.register_job("file_cleanup", run_cleanup_job, CronTrigger(hour=0))

    # In FastAPI lifespan:
    async def lifespan(app):
        scheduler.start()
        yield
        scheduler.stop()
"""

import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger

from enrollment.core.config import Settings
from enrollment.core.locks import SingleFlight

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]


class JobNotFoundError(ValueError):
    """Raised when a job id is not in the registry."""

    def __init__(self, job_id: str, available: list[str]):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found in registry. Available jobs: {available}")


def _job_listener(event: JobExecutionEvent) -> None:
    """
    Listener for job execution events.

    Logs job execution results for monitoring and debugging.
    """
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now(UTC).isoformat()}")


class JobScheduler:
    """Timer wrapper around AsyncIOScheduler with a manual-trigger registry."""

    def __init__(
        self,
        timezone: str = "UTC",
        misfire_grace_seconds: int = 60 * 5,
    ):
        self.timezone = timezone
        self.job_defaults = {
            "coalesce": True,  # Combine multiple missed executions into one
            "max_instances": 1,  # Only one instance of each job can run at a time
            "misfire_grace_time": misfire_grace_seconds,
        }
        self.configured_at: datetime | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._registry: dict[str, tuple[JobFunc, BaseTrigger, str | None]] = {}
        self._single_flight = SingleFlight()

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobScheduler":
        return cls(
            timezone=settings.scheduler_timezone,
            misfire_grace_seconds=settings.scheduler_misfire_grace_seconds,
        )

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def register_job(
        self,
        job_id: str,
        func: JobFunc,
        trigger: BaseTrigger,
        description: str | None = None,
    ) -> None:
        """
        Register a job with the scheduler.

        Jobs registered before start() are added when the scheduler starts.
        Registering an existing id replaces it.

        Args:
            job_id: Unique identifier for the job
            func: Async function to execute
            trigger: APScheduler trigger (CronTrigger, IntervalTrigger, ...)
            description: Human readable description for status output
        """
        self._registry[job_id] = (func, trigger, description)
        self.configured_at = datetime.now(UTC)

        if self._scheduler is None:
            logger.debug(f"Scheduler not started, job {job_id} will be added on start")
            return

        self._add_to_scheduler(job_id)
        logger.info(f"Registered job: {job_id}")

    def start(self) -> None:
        """
        Create and start the underlying AsyncIOScheduler.

        Must be called from a running event loop.
        """
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Initializing background job scheduler...")

        self._scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults=self.job_defaults,
        )
        self._scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        for job_id in self._registry:
            self._add_to_scheduler(job_id)

        self._scheduler.start()
        logger.info(f"Background job scheduler started with {len(self._registry)} job(s)")

    def stop(self) -> None:
        """Stop the scheduler, waiting for running jobs to finish."""
        if self._scheduler is None or not self._scheduler.running:
            logger.debug("Scheduler not running, nothing to stop")
            return

        logger.info("Stopping background job scheduler...")
        self._scheduler.shutdown(wait=True)
        self._scheduler = None
        logger.info("Background job scheduler stopped")

    def _add_to_scheduler(self, job_id: str) -> None:
        _func, trigger, _description = self._registry[job_id]
        self._scheduler.add_job(
            self._run_scheduled,
            trigger=trigger,
            args=[job_id],
            id=job_id,
            replace_existing=True,
        )

    async def _run_scheduled(self, job_id: str) -> Any:
        logger.info(f"Starting scheduled run of job {job_id}")
        result, joined = await self._run(job_id)
        if joined:
            logger.info(f"Scheduled run of job {job_id} joined a run already in progress")
        return result

    async def _run(self, job_id: str) -> tuple[Any, bool]:
        func, _trigger, _description = self._registry[job_id]
        return await self._single_flight.run(job_id, func)

    async def trigger_job_manually(self, job_id: str) -> dict[str, Any]:
        """
        Trigger a job manually for maintenance or testing.

        This bypasses the timer and runs the job function directly. If the job
        is already running, the call waits for that run and reports its result.

        Returns:
            Dict with job_id, status ("success" or "error"), executed_at,
            joined_in_progress, and result or error

        Raises:
            JobNotFoundError: If job_id is not registered
        """
        if job_id not in self._registry:
            raise JobNotFoundError(job_id, list(self._registry))

        executed_at = datetime.now(UTC)
        logger.info(f"Manually triggering job: {job_id}")

        try:
            result, joined = await self._run(job_id)
        except Exception as e:
            logger.error(f"Manual execution of job {job_id} failed: {e}", exc_info=True)
            outcome = {
                "job_id": job_id,
                "status": "error",
                "executed_at": executed_at.isoformat(),
                "joined_in_progress": False,
                "error": str(e),
            }
        else:
            logger.info(f"Manual execution of job {job_id} completed successfully")
            outcome = {
                "job_id": job_id,
                "status": "success",
                "executed_at": executed_at.isoformat(),
                "joined_in_progress": joined,
                "result": result,
            }

        return outcome

    def is_job_running(self, job_id: str) -> bool:
        return self._single_flight.is_running(job_id)

    def list_registered_jobs(self) -> list[dict[str, Any]]:
        """
        List all registered jobs and their status.

        Returns:
            List of dicts with job_id, description, trigger, in_progress,
            next_run_time and is_paused
        """
        jobs = []

        for job_id, (_func, trigger, description) in self._registry.items():
            job_info: dict[str, Any] = {
                "job_id": job_id,
                "description": description,
                "trigger": str(trigger),
                "in_progress": self.is_job_running(job_id),
                "next_run_time": None,
                "is_paused": None,
            }

            if self._scheduler is not None:
                scheduled_job = self._scheduler.get_job(job_id)
                next_run_time = getattr(scheduled_job, "next_run_time", None)
                job_info["next_run_time"] = next_run_time.isoformat() if next_run_time else None
                job_info["is_paused"] = next_run_time is None

            jobs.append(job_info)

        return jobs

    def get_status(self) -> dict[str, Any]:
        """Scheduler status: running flag, when it was configured, and jobs."""
        return {
            "scheduler_running": self.running,
            "configured_at": self.configured_at.isoformat() if self.configured_at else None,
            "jobs_count": len(self._registry),
            "jobs": self.list_registered_jobs(),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def pause_job(self, job_id: str) -> bool:
        """
        Pause a scheduled job.

        Returns:
            True if job was paused, False if the scheduler or job is missing
        """
        if self._scheduler is None:
            logger.warning("Cannot pause job: scheduler not running")
            return False

        if self._scheduler.get_job(job_id):
            self._scheduler.pause_job(job_id)
            logger.info(f"Paused job: {job_id}")
            return True

        logger.warning(f"Job not found for pausing: {job_id}")
        return False

    def resume_job(self, job_id: str) -> bool:
        """
        Resume a paused job.

        Returns:
            True if job was resumed, False if the scheduler or job is missing
        """
        if self._scheduler is None:
            logger.warning("Cannot resume job: scheduler not running")
            return False

        if self._scheduler.get_job(job_id):
            self._scheduler.resume_job(job_id)
            logger.info(f"Resumed job: {job_id}")
            return True

        logger.warning(f"Job not found for resuming: {job_id}")
        return False
