"""
File Cleanup Repository

Queries used by the cleanup job: finding applications whose files are past
the grace period, and clearing references once the files are gone.
"""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.modules.applications.models import Application, ApplicationStatus
from enrollment.modules.cleanup.schemas import EligibleApplication
from enrollment.modules.sessions.models import EnrollmentSession

FILE_REF_COLUMNS = {
    "signed_file_ref": Application.signed_file_ref,
    "response_file_ref": Application.response_file_ref,
}


async def find_eligible(
    db: AsyncSession,
    *,
    cutoff: datetime,
    statuses: Iterable[ApplicationStatus],
    after_id: int = 0,
    limit: int = 100,
) -> list[EligibleApplication]:
    """
    Get one page of applications whose files can be purged.

    An application is eligible when its status is one of the targets, its
    session ended strictly before the cutoff, and it still references at
    least one file. Pages are keyed on id so rows cleared by the previous
    page never shift the next one.

    Args:
        db: Database session
        cutoff: Sessions ending before this moment qualify
        statuses: Target statuses
        after_id: Return only ids greater than this
        limit: Page size

    Returns:
        Eligible applications ordered by id
    """
    result = await db.execute(
        select(
            Application.id,
            Application.status,
            Application.student_id,
            EnrollmentSession.end_time,
            Application.signed_file_ref,
            Application.response_file_ref,
        )
        .join(EnrollmentSession, EnrollmentSession.id == Application.session_id)
        .where(
            Application.status.in_(list(statuses)),
            EnrollmentSession.end_time < cutoff,
            or_(
                Application.signed_file_ref.is_not(None),
                Application.response_file_ref.is_not(None),
            ),
            Application.id > after_id,
        )
        .order_by(Application.id)
        .limit(limit)
    )

    return [
        EligibleApplication(
            id=row.id,
            status=row.status.value,
            student_id=row.student_id,
            session_end_time=row.end_time,
            signed_file_ref=row.signed_file_ref,
            response_file_ref=row.response_file_ref,
        )
        for row in result.all()
    ]


async def clear_file_refs(
    db: AsyncSession,
    application_id: int,
    purged: dict[str, str],
    *,
    now: datetime,
) -> list[str]:
    """
    Null the given file reference columns of an application.

    Each column is only cleared if it still holds the reference that was
    purged; a reference replaced in the meantime is left untouched.

    Args:
        db: Database session
        application_id: Application to update
        purged: Column name -> reference whose file is gone
        now: Timestamp for updated_at

    Returns:
        Names of the columns that were actually cleared
    """
    cleared = []
    for field, file_ref in purged.items():
        column = FILE_REF_COLUMNS[field]
        result = await db.execute(
            update(Application)
            .where(Application.id == application_id, column == file_ref)
            .values({field: None, "updated_at": now})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            cleared.append(field)

    await db.flush()
    return cleared
