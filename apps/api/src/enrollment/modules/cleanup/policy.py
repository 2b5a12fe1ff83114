"""
File Cleanup Policy

Which applications lose their uploaded files, and when. Values come from
settings once, at startup, and are passed to the job explicitly.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from enrollment.core.config import Settings
from enrollment.modules.applications.models import ApplicationStatus

DEFAULT_GRACE_PERIOD_DAYS = 90
DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_REPORTED_ERRORS = 100

MIN_RECOMMENDED_GRACE_PERIOD_DAYS = 30
MAX_RECOMMENDED_GRACE_PERIOD_DAYS = 365
MIN_RECOMMENDED_BATCH_SIZE = 10
MAX_RECOMMENDED_BATCH_SIZE = 1000


@dataclass(frozen=True)
class CleanupConfig:
    """
    Cleanup job configuration.

    Attributes:
        grace_period_days: Days after a session ends before its files are purged
        batch_size: Applications loaded per query
        target_statuses: Only applications in these statuses are purged
        upload_dir: Directory the stored file references resolve against
        max_reported_errors: Cap on errors kept in one run summary
    """

    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    batch_size: int = DEFAULT_BATCH_SIZE
    target_statuses: tuple[ApplicationStatus, ...] = field(
        default=(ApplicationStatus.APPROVED, ApplicationStatus.REJECTED)
    )
    upload_dir: str = "uploads"
    max_reported_errors: int = DEFAULT_MAX_REPORTED_ERRORS

    def __post_init__(self) -> None:
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days must not be negative")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_reported_errors < 0:
            raise ValueError("max_reported_errors must not be negative")
        if ApplicationStatus.PENDING in self.target_statuses:
            raise ValueError("Pending applications are never eligible for cleanup")

    @classmethod
    def from_settings(cls, settings: Settings) -> "CleanupConfig":
        return cls(
            grace_period_days=settings.cleanup_grace_period_days,
            batch_size=settings.cleanup_batch_size,
            upload_dir=settings.upload_dir,
            max_reported_errors=settings.cleanup_max_reported_errors,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["target_statuses"] = [status.value for status in self.target_statuses]
        return data


def grace_period_cutoff(now: datetime, grace_period_days: int) -> datetime:
    """Sessions that ended strictly before this moment are past the grace period."""
    return now - timedelta(days=grace_period_days)


def validate_cleanup_config(config: CleanupConfig) -> list[str]:
    """
    Check a configuration for values that work but are probably a mistake.

    Returns:
        Warning messages; empty when the configuration looks sane
    """
    warnings = []

    if config.grace_period_days < MIN_RECOMMENDED_GRACE_PERIOD_DAYS:
        warnings.append("Grace period is less than 30 days - frequent cleanup may occur")

    if config.grace_period_days > MAX_RECOMMENDED_GRACE_PERIOD_DAYS:
        warnings.append("Grace period is greater than 1 year - old files may accumulate")

    if config.batch_size < MIN_RECOMMENDED_BATCH_SIZE:
        warnings.append("Batch size is very small - processing will be slow")

    if config.batch_size > MAX_RECOMMENDED_BATCH_SIZE:
        warnings.append("Batch size is very large - may consume excessive memory")

    return warnings
