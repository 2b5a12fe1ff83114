"""
File Cleanup Background Job

Removes uploaded files (signed requests and professor responses) that belong
to applications whose session ended more than the grace period ago, and
clears the database references to them.

Design Principles:
- The job is idempotent: a reference is only cleared once its file is gone,
  so cleared applications drop out of the next run's query
- A file that fails to delete keeps its reference and is retried next run
- Individual application failures don't stop the job
- Files are deleted before the database is touched; a failed database update
  is reported but the files are not restored
- Batches are read with keyset pagination, one short session per query

Schedule:
- Daily at the configured wall-clock time (cleanup_hour:cleanup_minute)
- Can also be triggered manually via the admin endpoints
"""

import logging
from datetime import datetime
from typing import Any

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enrollment.core.clock import Clock, system_clock
from enrollment.core.database import atomic
from enrollment.core.files import FileStore, UnsafeFilePathError
from enrollment.core.scheduler import JobScheduler
from enrollment.modules.cleanup import repository
from enrollment.modules.cleanup.policy import (
    CleanupConfig,
    grace_period_cutoff,
    validate_cleanup_config,
)
from enrollment.modules.cleanup.schemas import (
    CleanupRunStatus,
    CleanupSummary,
    EligibleApplication,
    FileDeletionResult,
    FileDeletionStatus,
    PurgeResult,
)

logger = logging.getLogger(__name__)

# Job ID for registration and manual triggering
JOB_ID_FILE_CLEANUP = "file_cleanup"


async def _delete_file(file_store: FileStore, field: str, file_ref: str) -> FileDeletionResult:
    """Delete one stored file. Never raises for file errors."""
    try:
        path = file_store.resolve(file_ref)
    except UnsafeFilePathError as e:
        logger.error(f"Refusing to delete {file_ref!r}: {e}")
        return FileDeletionResult(field, file_ref, None, FileDeletionStatus.FAILED, str(e))

    try:
        if not await file_store.exists(path):
            logger.debug(f"File already missing, skipping: {path}")
            return FileDeletionResult(field, file_ref, str(path), FileDeletionStatus.ALREADY_MISSING)

        await file_store.delete(path)
    except FileNotFoundError:
        # Removed between the existence check and the unlink
        return FileDeletionResult(field, file_ref, str(path), FileDeletionStatus.ALREADY_MISSING)
    except OSError as e:
        logger.error(f"Failed to delete file {path}: {e}")
        return FileDeletionResult(field, file_ref, str(path), FileDeletionStatus.FAILED, str(e))

    logger.info(f"File deleted: {path}")
    return FileDeletionResult(field, file_ref, str(path), FileDeletionStatus.DELETED)


async def purge_application(
    application: EligibleApplication,
    file_store: FileStore,
) -> PurgeResult:
    """
    Delete every file an application still references.

    Args:
        application: Eligible application row
        file_store: Where the files live

    Returns:
        Per-file outcome; database_updated stays False until reconciliation
    """
    result = PurgeResult(
        application_id=application.id,
        status=application.status,
        session_end_time=application.session_end_time,
    )

    for field, file_ref in application.file_refs():
        deletion = await _delete_file(file_store, field, file_ref)
        result.files.append(deletion)
        if deletion.status is FileDeletionStatus.FAILED:
            result.errors.append(f"Failed to delete {field} ({file_ref}): {deletion.error}")

    return result


async def _reconcile(
    session_maker: async_sessionmaker[AsyncSession],
    result: PurgeResult,
    now: datetime,
) -> None:
    """Clear the references whose files are gone, in one small transaction."""
    purged = result.cleared_fields()
    if not purged:
        return

    try:
        async with session_maker() as db:
            async with atomic(db):
                cleared = await repository.clear_file_refs(db, result.application_id, purged, now=now)
    except SQLAlchemyError as e:
        logger.error(
            f"Failed to update database for application {result.application_id}: {e}",
            exc_info=True,
        )
        result.errors.append(f"Failed to update database: {e}")
        return

    result.database_updated = bool(cleared)
    changed = sorted(set(purged) - set(cleared))
    if changed:
        logger.info(
            f"Application {result.application_id}: reference(s) {changed} changed during "
            "cleanup and were left in place"
        )


async def run_cleanup(
    session_maker: async_sessionmaker[AsyncSession],
    file_store: FileStore,
    config: CleanupConfig,
    *,
    clock: Clock = system_clock,
) -> CleanupSummary:
    """
    Purge files of applications past the grace period.

    The job is idempotent - applications whose references were cleared are
    not selected again.

    Returns:
        CleanupSummary with status:
        - completed_no_action: nothing was eligible
        - completed_success: eligible applications were processed (individual
          file failures are counted, not fatal)
        - failed: the upload directory or the database was unreachable
    """
    started_at = clock.now()
    cutoff = grace_period_cutoff(started_at, config.grace_period_days)
    summary = CleanupSummary(
        started_at=started_at,
        upload_dir=config.upload_dir,
        grace_period_days=config.grace_period_days,
        cutoff=cutoff,
        max_reported_errors=config.max_reported_errors,
    )

    logger.info(f"Starting file cleanup job. Cutoff: {cutoff.isoformat()}")

    try:
        if not await file_store.is_available():
            summary.status = CleanupRunStatus.FAILED
            summary.error = f"Upload directory not accessible: {config.upload_dir}"
            logger.error(summary.error)
            return summary

        after_id = 0
        while True:
            async with session_maker() as db:
                batch = await repository.find_eligible(
                    db,
                    cutoff=cutoff,
                    statuses=config.target_statuses,
                    after_id=after_id,
                    limit=config.batch_size,
                )
            if not batch:
                break

            summary.applications_found += len(batch)
            logger.debug(f"Processing batch of {len(batch)} application(s) after id {after_id}")

            for application in batch:
                try:
                    result = await purge_application(application, file_store)
                    await _reconcile(session_maker, result, clock.now())
                    summary.add_result(result)
                except Exception as e:
                    logger.error(
                        f"Error cleaning up application {application.id}: {e}",
                        exc_info=True,
                    )
                    summary.add_error(f"Application {application.id}: {e}")

            after_id = batch[-1].id
            if len(batch) < config.batch_size:
                break

        if summary.applications_found == 0:
            summary.status = CleanupRunStatus.COMPLETED_NO_ACTION
            logger.info("No applications found for cleanup")
        else:
            summary.status = CleanupRunStatus.COMPLETED_SUCCESS

    except Exception as e:
        summary.status = CleanupRunStatus.FAILED
        summary.error = str(e)
        logger.error(f"File cleanup job failed: {e}", exc_info=True)

    finally:
        summary.finished_at = clock.now()
        logger.info(
            f"File cleanup job finished with status {summary.status.value}. "
            f"Processed: {summary.applications_processed}, "
            f"deleted: {summary.files_deleted}, "
            f"already missing: {summary.files_already_missing}, "
            f"failed: {summary.files_failed}, "
            f"database updates: {summary.database_updates}, "
            f"errors: {len(summary.errors) + summary.errors_truncated}"
        )

    return summary


def get_cleanup_job_status(config: CleanupConfig, now: datetime) -> dict[str, Any]:
    """Current configuration, the cutoff a run would use now, and config warnings."""
    warnings = validate_cleanup_config(config)
    return {
        "configured": True,
        "configuration": config.to_dict(),
        "cutoff": grace_period_cutoff(now, config.grace_period_days).isoformat(),
        "validation": {"valid": True, "warnings": warnings},
    }


def register_cleanup_job(
    scheduler: JobScheduler,
    session_maker: async_sessionmaker[AsyncSession],
    file_store: FileStore,
    config: CleanupConfig,
    *,
    hour: int = 0,
    minute: int = 0,
    clock: Clock = system_clock,
) -> None:
    """
    Register the file cleanup job with the scheduler.

    Registered jobs:
    1. file_cleanup - Runs daily at hour:minute in the scheduler's timezone
    """
    for warning in validate_cleanup_config(config):
        logger.warning(f"Cleanup configuration: {warning}")

    async def file_cleanup() -> dict[str, Any]:
        summary = await run_cleanup(session_maker, file_store, config, clock=clock)
        return summary.to_dict()

    scheduler.register_job(
        job_id=JOB_ID_FILE_CLEANUP,
        func=file_cleanup,
        trigger=CronTrigger(hour=hour, minute=minute, timezone=scheduler.timezone),
        description=(
            f"Purge uploaded files of applications whose session ended more than "
            f"{config.grace_period_days} days ago"
        ),
    )
    logger.info(f"Registered job: {JOB_ID_FILE_CLEANUP} (daily at {hour:02d}:{minute:02d})")
