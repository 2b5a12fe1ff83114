"""
Enrollment Sessions Repository

Database operations for enrollment sessions. Functions here only flush;
transaction boundaries belong to the service.
"""

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.modules.applications.models import Application, ApplicationStatus
from enrollment.modules.sessions.models import EnrollmentSession


async def create(
    db: AsyncSession,
    *,
    professor_id: int,
    start_time: datetime,
    end_time: datetime,
    student_limit: int,
    now: datetime,
) -> EnrollmentSession:
    """Create a new enrollment session."""
    session = EnrollmentSession(
        professor_id=professor_id,
        start_time=start_time,
        end_time=end_time,
        student_limit=student_limit,
        created_at=now,
        updated_at=now,
    )

    db.add(session)
    await db.flush()
    await db.refresh(session)

    return session


async def get_by_id(db: AsyncSession, id: int) -> EnrollmentSession | None:
    """Get session by ID."""
    return await db.get(EnrollmentSession, id)


async def get_for_update(db: AsyncSession, id: int) -> EnrollmentSession | None:
    """Get session by ID and lock the row for the rest of the transaction."""
    result = await db.execute(
        select(EnrollmentSession)
        .where(EnrollmentSession.id == id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_professor(db: AsyncSession, professor_id: int) -> list[EnrollmentSession]:
    """All sessions of a professor, most recent start first."""
    result = await db.execute(
        select(EnrollmentSession)
        .where(EnrollmentSession.professor_id == professor_id)
        .order_by(EnrollmentSession.start_time.desc(), EnrollmentSession.id.desc())
    )
    return list(result.scalars().all())


async def get_overlapping(
    db: AsyncSession,
    *,
    professor_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_session_id: int | None = None,
) -> list[EnrollmentSession]:
    """
    Sessions of the professor whose [start, end) range intersects the given one.

    The interval test runs in SQL so only candidates come back; the service
    re-applies the pure check on them.
    """
    query = select(EnrollmentSession).where(
        EnrollmentSession.professor_id == professor_id,
        EnrollmentSession.start_time < end_time,
        EnrollmentSession.end_time > start_time,
    )
    if exclude_session_id is not None:
        query = query.where(EnrollmentSession.id != exclude_session_id)

    result = await db.execute(query.order_by(EnrollmentSession.start_time))
    return list(result.scalars().all())


async def get_active(db: AsyncSession, now: datetime) -> list[EnrollmentSession]:
    """Sessions with start_time <= now < end_time, ending soonest first."""
    result = await db.execute(
        select(EnrollmentSession)
        .where(
            EnrollmentSession.start_time <= now,
            EnrollmentSession.end_time > now,
        )
        .order_by(EnrollmentSession.end_time, EnrollmentSession.id)
    )
    return list(result.scalars().all())


async def update_fields(
    db: AsyncSession,
    session: EnrollmentSession,
    *,
    now: datetime,
    **fields,
) -> EnrollmentSession:
    """Apply the given column values to a session and flush."""
    for key, value in fields.items():
        if value is not None and hasattr(session, key):
            setattr(session, key, value)
    session.updated_at = now

    await db.flush()
    return session


async def delete_with_applications(db: AsyncSession, session_id: int) -> int:
    """
    Delete a session and its remaining applications.

    Returns:
        Number of applications deleted alongside the session
    """
    result = await db.execute(delete(Application).where(Application.session_id == session_id))
    await db.execute(delete(EnrollmentSession).where(EnrollmentSession.id == session_id))
    await db.flush()
    return result.rowcount or 0


async def count_approved(db: AsyncSession, session_id: int) -> int:
    """Number of approved applications of a session, counted from the table."""
    result = await db.execute(
        select(func.count(Application.id)).where(
            Application.session_id == session_id,
            Application.status == ApplicationStatus.APPROVED,
        )
    )
    return result.scalar_one()


async def count_approved_by_session(db: AsyncSession, session_ids: list[int]) -> dict[int, int]:
    """Approved counts keyed by session id. Sessions without approvals map to 0."""
    if not session_ids:
        return {}
    result = await db.execute(
        select(Application.session_id, func.count(Application.id))
        .where(
            Application.session_id.in_(session_ids),
            Application.status == ApplicationStatus.APPROVED,
        )
        .group_by(Application.session_id)
    )
    counts = dict.fromkeys(session_ids, 0)
    counts.update({session_id: count for session_id, count in result.all()})
    return counts


async def get_approved_applications(db: AsyncSession, session_id: int) -> list[Application]:
    """Approved applications of a session, in approval order."""
    result = await db.execute(
        select(Application)
        .where(
            Application.session_id == session_id,
            Application.status == ApplicationStatus.APPROVED,
        )
        .order_by(Application.updated_at, Application.id)
    )
    return list(result.scalars().all())
