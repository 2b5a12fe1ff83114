"""
File Cleanup Results

Plain dataclasses describing what one cleanup run did. They are built up as
the run progresses and turned into dicts for logs and the admin endpoints.
"""

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


class FileDeletionStatus(str, enum.Enum):
    DELETED = "deleted"
    ALREADY_MISSING = "already_missing"
    FAILED = "failed"


class CleanupRunStatus(str, enum.Enum):
    COMPLETED_NO_ACTION = "completed_no_action"
    COMPLETED_SUCCESS = "completed_success"
    FAILED = "failed"


@dataclass
class EligibleApplication:
    """The columns of an application the cleanup job needs."""

    id: int
    status: str
    student_id: int
    session_end_time: datetime
    signed_file_ref: str | None = None
    response_file_ref: str | None = None

    def file_refs(self) -> list[tuple[str, str]]:
        """(column name, stored reference) for every reference that is set."""
        refs = []
        if self.signed_file_ref:
            refs.append(("signed_file_ref", self.signed_file_ref))
        if self.response_file_ref:
            refs.append(("response_file_ref", self.response_file_ref))
        return refs


@dataclass
class FileDeletionResult:
    field: str
    file_ref: str
    path: str | None
    status: FileDeletionStatus
    error: str | None = None

    @property
    def gone(self) -> bool:
        """True when the file no longer exists on disk."""
        return self.status in (FileDeletionStatus.DELETED, FileDeletionStatus.ALREADY_MISSING)


@dataclass
class PurgeResult:
    """Outcome of purging the files of a single application."""

    application_id: int
    status: str
    session_end_time: datetime
    files: list[FileDeletionResult] = field(default_factory=list)
    database_updated: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def files_attempted(self) -> int:
        return len(self.files)

    @property
    def files_deleted(self) -> int:
        return sum(1 for f in self.files if f.status is FileDeletionStatus.DELETED)

    @property
    def files_already_missing(self) -> int:
        return sum(1 for f in self.files if f.status is FileDeletionStatus.ALREADY_MISSING)

    @property
    def files_failed(self) -> int:
        return sum(1 for f in self.files if f.status is FileDeletionStatus.FAILED)

    def cleared_fields(self) -> dict[str, str]:
        """Columns whose file is gone, mapped to the reference that was purged."""
        return {f.field: f.file_ref for f in self.files if f.gone}

    def to_dict(self) -> dict[str, Any]:
        return {
            "application_id": self.application_id,
            "status": self.status,
            "session_end_time": self.session_end_time.isoformat(),
            "files_attempted": self.files_attempted,
            "files_deleted": self.files_deleted,
            "files_already_missing": self.files_already_missing,
            "files_failed": self.files_failed,
            "database_updated": self.database_updated,
            "files": [{**asdict(f), "status": f.status.value} for f in self.files],
            "errors": list(self.errors),
        }


@dataclass
class CleanupSummary:
    """Totals and per-application results of one cleanup run."""

    started_at: datetime
    upload_dir: str
    grace_period_days: int
    cutoff: datetime
    status: CleanupRunStatus = CleanupRunStatus.COMPLETED_NO_ACTION
    applications_found: int = 0
    applications_processed: int = 0
    files_attempted: int = 0
    files_deleted: int = 0
    files_already_missing: int = 0
    files_failed: int = 0
    database_updates: int = 0
    errors: list[str] = field(default_factory=list)
    errors_truncated: int = 0
    results: list[PurgeResult] = field(default_factory=list)
    finished_at: datetime | None = None
    error: str | None = None
    max_reported_errors: int = 100

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def add_error(self, message: str) -> None:
        """Record an error, counting instead of storing past the cap."""
        if len(self.errors) < self.max_reported_errors:
            self.errors.append(message)
        else:
            self.errors_truncated += 1

    def add_result(self, result: PurgeResult) -> None:
        self.results.append(result)
        self.applications_processed += 1
        self.files_attempted += result.files_attempted
        self.files_deleted += result.files_deleted
        self.files_already_missing += result.files_already_missing
        self.files_failed += result.files_failed
        if result.database_updated:
            self.database_updates += 1
        for message in result.errors:
            self.add_error(f"Application {result.application_id}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "upload_dir": self.upload_dir,
            "grace_period_days": self.grace_period_days,
            "cutoff": self.cutoff.isoformat(),
            "applications_found": self.applications_found,
            "applications_processed": self.applications_processed,
            "files_attempted": self.files_attempted,
            "files_deleted": self.files_deleted,
            "files_already_missing": self.files_already_missing,
            "files_failed": self.files_failed,
            "database_updates": self.database_updates,
            "errors": list(self.errors),
            "errors_truncated": self.errors_truncated,
            "error": self.error,
            "results": [result.to_dict() for result in self.results],
        }
