"""
Applications Repository

Database operations for enrollment applications, and the status transition
table every status change goes through.

Functions only flush. The service wraps reads and writes in one transaction
and decides when to commit.
"""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Application, ApplicationStatus, RejectionSource


async def create(
    db: AsyncSession,
    *,
    student_id: int,
    session_id: int,
    professor_id: int,
    now: datetime,
) -> Application:
    """Create a new pending application."""
    application = Application(
        student_id=student_id,
        session_id=session_id,
        professor_id=professor_id,
        status=ApplicationStatus.PENDING,
        created_at=now,
        updated_at=now,
    )

    db.add(application)
    await db.flush()
    await db.refresh(application)

    return application


async def get_by_id(db: AsyncSession, id: int) -> Application | None:
    """Get application by ID."""
    return await db.get(Application, id)


async def get_for_update(db: AsyncSession, id: int) -> Application | None:
    """
    Get application by ID and lock the row for the rest of the transaction.

    populate_existing makes sure an instance already in the identity map is
    refreshed with the locked row's values.
    """
    result = await db.execute(
        select(Application)
        .where(Application.id == id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_student_and_session(
    db: AsyncSession,
    student_id: int,
    session_id: int,
) -> Application | None:
    """The student's application to a session, if any."""
    result = await db.execute(
        select(Application).where(
            Application.student_id == student_id,
            Application.session_id == session_id,
        )
    )
    return result.scalar_one_or_none()


async def get_by_student_for_sessions(
    db: AsyncSession,
    student_id: int,
    session_ids: list[int],
) -> dict[int, Application]:
    """The student's applications keyed by session id."""
    if not session_ids:
        return {}
    result = await db.execute(
        select(Application).where(
            Application.student_id == student_id,
            Application.session_id.in_(session_ids),
        )
    )
    return {application.session_id: application for application in result.scalars().all()}


async def list_for_professor(
    db: AsyncSession,
    professor_id: int,
    status: ApplicationStatus | None = None,
) -> list[Application]:
    """Applications addressed to a professor, newest first."""
    query = select(Application).where(Application.professor_id == professor_id)
    if status is not None:
        query = query.where(Application.status == status)

    result = await db.execute(query.order_by(Application.created_at.desc(), Application.id.desc()))
    return list(result.scalars().all())


async def count_by_status_for_professor(
    db: AsyncSession,
    professor_id: int,
) -> dict[ApplicationStatus, int]:
    """Per-status application counts for a professor. Every status is present."""
    result = await db.execute(
        select(Application.status, func.count(Application.id))
        .where(Application.professor_id == professor_id)
        .group_by(Application.status)
    )
    counts = dict.fromkeys(ApplicationStatus, 0)
    counts.update({status: count for status, count in result.all()})
    return counts


async def list_for_student(
    db: AsyncSession,
    student_id: int,
    status: ApplicationStatus | None = None,
) -> list[Application]:
    """A student's applications, newest first."""
    query = select(Application).where(Application.student_id == student_id)
    if status is not None:
        query = query.where(Application.status == status)

    result = await db.execute(query.order_by(Application.created_at.desc(), Application.id.desc()))
    return list(result.scalars().all())


# Valid status transitions - any change not listed here is refused
VALID_STATUS_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.APPROVED,  # Professor approved
        ApplicationStatus.REJECTED,  # Professor rejected, or auto-rejected
    },
    ApplicationStatus.APPROVED: {
        ApplicationStatus.REJECTED,  # Approval withdrawn
    },
    ApplicationStatus.REJECTED: set(),  # Terminal
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an invalid status transition is attempted."""

    def __init__(
        self,
        current_status: ApplicationStatus,
        new_status: ApplicationStatus,
    ):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        super().__init__(
            f"Invalid status transition: {current_status.value} -> {new_status.value}. "
            f"Valid transitions: {sorted(s.value for s in valid_transitions)}"
        )


def can_transition(current_status: ApplicationStatus, new_status: ApplicationStatus) -> bool:
    return new_status in VALID_STATUS_TRANSITIONS.get(current_status, set())


async def update_status(
    db: AsyncSession,
    application: Application,
    status: ApplicationStatus,
    *,
    now: datetime,
    **kwargs,
) -> Application:
    """
    Move an application to a new status and set optional fields.

    Args:
        db: Database session
        application: Application loaded (and locked) by the caller
        status: New status
        now: Timestamp for updated_at
        **kwargs: Additional fields to update (e.g., rejection_reason)

    Returns:
        Updated Application

    Raises:
        InvalidStatusTransitionError: If the transition is not in the table
    """
    if not can_transition(application.status, status):
        raise InvalidStatusTransitionError(application.status, status)

    application.status = status
    for key, value in kwargs.items():
        if hasattr(application, key):
            setattr(application, key, value)
    application.updated_at = now

    await db.flush()
    return application


async def auto_reject_pending_for_student(
    db: AsyncSession,
    *,
    student_id: int,
    exclude_application_id: int,
    reason: str,
    now: datetime,
) -> list[int]:
    """
    Reject every other pending application of a student, across professors.

    Approved and rejected applications are left alone.

    Returns:
        Ids of the applications that were rejected
    """
    result = await db.execute(
        select(Application.id)
        .where(
            Application.student_id == student_id,
            Application.status == ApplicationStatus.PENDING,
            Application.id != exclude_application_id,
        )
        .order_by(Application.id)
        .with_for_update()
    )
    ids = list(result.scalars().all())
    if not ids:
        return []

    await db.execute(
        update(Application)
        .where(
            Application.id.in_(ids),
            Application.status == ApplicationStatus.PENDING,
        )
        .values(
            status=ApplicationStatus.REJECTED,
            rejection_reason=reason,
            rejection_source=RejectionSource.AUTO,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    return ids


async def set_file_ref(
    db: AsyncSession,
    application: Application,
    *,
    field: str,
    file_ref: str,
    now: datetime,
) -> Application:
    """Store a file reference on signed_file_ref or response_file_ref."""
    if field not in ("signed_file_ref", "response_file_ref"):
        raise ValueError(f"Unknown file field: {field}")

    setattr(application, field, file_ref)
    application.updated_at = now

    await db.flush()
    return application
