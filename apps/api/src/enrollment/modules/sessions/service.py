"""
Enrollment Sessions Service Layer

Business logic for professor-defined enrollment sessions.

This module implements:
1. Overlap validation:
   - A professor's sessions never intersect as half-open [start, end) ranges
   - Abutting sessions (one ends when the next starts) are allowed

2. Session management:
   - Create with a limit between 1 and the professor's max_students
   - Update only before the session starts; the limit can shrink down to
     the number of approved applications and no further
   - Delete only while nobody is approved; pending and rejected
     applications go with the session

3. Read models:
   - Professor dashboard with enrolled counts and derived status
   - Enrolled students of a session
   - Active sessions offered to a student

Writes for one professor are serialized by a keyed lock plus a row lock on
the professor, so two concurrent creates cannot both pass the overlap check.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.clock import Clock, ensure_utc, system_clock
from enrollment.core.config import settings
from enrollment.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    returns_result,
)
from enrollment.core.locks import locked_transaction
from enrollment.modules.applications import repository as application_repository
from enrollment.modules.sessions import policy, repository
from enrollment.modules.sessions.models import EnrollmentSession, SessionStatus
from enrollment.modules.sessions.schemas import (
    ActiveSession,
    ActiveSessionListResponse,
    EnrolledStudent,
    EnrolledStudentsResponse,
    SessionDeleteResponse,
    SessionListResponse,
    SessionResponse,
)
from enrollment.modules.users import UserRepository

logger = logging.getLogger(__name__)


# ============================================
# Exceptions
# ============================================


class InvalidDateRangeError(InvalidInputError):
    """Raised when start_time is not before end_time."""

    def __init__(self, message: str = "Start time must be before end time"):
        super().__init__(message=message, error_code="INVALID_DATE_RANGE")


class InvalidStudentLimitError(InvalidInputError):
    """Raised when the limit is below 1 or above the professor's maximum."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="INVALID_STUDENT_LIMIT")


class SessionOverlapError(ConflictError):
    """Raised when a session would intersect another session of the same professor."""

    def __init__(self, overlapping_ids: list[int]):
        super().__init__(
            message="Session overlaps with an existing session. Please choose different dates.",
            error_code="SESSION_OVERLAP",
            details={"overlapping_session_ids": overlapping_ids},
        )


class SessionAlreadyStartedError(ConflictError):
    """Raised when editing a session whose start time has passed."""

    def __init__(self):
        super().__init__(
            message="Cannot update a session that has already started",
            error_code="SESSION_ALREADY_STARTED",
        )


class LimitBelowEnrolledError(ConflictError):
    """Raised when shrinking the limit below the approved count."""

    def __init__(self, approved_count: int):
        super().__init__(
            message=(
                "Cannot reduce student limit below current enrollment count "
                f"({approved_count})"
            ),
            error_code="LIMIT_BELOW_ENROLLED",
            details={"enrolled_count": approved_count},
        )


class SessionHasEnrollmentsError(ConflictError):
    """Raised when deleting a session that has approved students."""

    def __init__(self, approved_count: int):
        super().__init__(
            message=f"Cannot delete session with {approved_count} enrolled student(s)",
            error_code="SESSION_HAS_ENROLLMENTS",
            details={"enrolled_count": approved_count},
        )


# ============================================
# Helper Functions
# ============================================


def _to_response(session: EnrollmentSession, approved_count: int, now: datetime) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        professor_id=session.professor_id,
        start_time=session.start_time,
        end_time=session.end_time,
        student_limit=session.student_limit,
        enrolled_count=approved_count,
        available_slots=policy.available_slots(session, approved_count),
        status=policy.derive_status(session, now),
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


async def _find_overlaps(
    db: AsyncSession,
    start_time: datetime,
    end_time: datetime,
    professor_id: int,
    exclude_session_id: int | None = None,
) -> list[EnrollmentSession]:
    candidates = await repository.get_overlapping(
        db,
        professor_id=professor_id,
        start_time=start_time,
        end_time=end_time,
        exclude_session_id=exclude_session_id,
    )
    return policy.find_overlapping(start_time, end_time, candidates, exclude_session_id)


async def _get_owned_session(
    db: AsyncSession,
    session_id: int,
    professor_id: int,
    *,
    for_update: bool = False,
) -> EnrollmentSession:
    if for_update:
        session = await repository.get_for_update(db, session_id)
    else:
        session = await repository.get_by_id(db, session_id)
    if session is None:
        raise NotFoundError("Session", session_id)
    if session.professor_id != professor_id:
        raise ForbiddenError("You do not have access to this session")
    return session


# ============================================
# Overlap Validation
# ============================================


@returns_result
async def check_overlap(
    db: AsyncSession,
    start_time: datetime,
    end_time: datetime,
    professor_id: int,
    exclude_session_id: int | None = None,
) -> bool:
    """
    Check whether [start_time, end_time) intersects any session of the professor.

    Args:
        db: Database session
        start_time: Candidate start
        end_time: Candidate end
        professor_id: Only this professor's sessions are compared
        exclude_session_id: Session being edited

    Returns:
        True if at least one session overlaps
    """
    overlaps = await _find_overlaps(
        db, ensure_utc(start_time), ensure_utc(end_time), professor_id, exclude_session_id
    )
    return bool(overlaps)


# ============================================
# Session Management
# ============================================


@returns_result
async def create_session(
    db: AsyncSession,
    professor_id: int,
    start_time: datetime,
    end_time: datetime,
    student_limit: int,
    *,
    clock: Clock = system_clock,
) -> SessionResponse:
    """
    Create an enrollment session.

    Raises (as failures):
        InvalidDateRangeError: start_time >= end_time
        InvalidStudentLimitError: limit < 1 or above the professor's maximum
        NotFoundError: Unknown professor
        SessionOverlapError: Another session of the professor intersects
    """
    start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)

    error = policy.validate_date_range(start_time, end_time)
    if error:
        raise InvalidDateRangeError(error)
    if student_limit < 1:
        raise InvalidStudentLimitError("Student limit must be at least 1")

    async with locked_transaction(
        db, ("professor", professor_id), timeout=settings.transaction_timeout_seconds
    ):
        professor = await UserRepository.get_professor_for_update(db, professor_id)
        if professor is None:
            raise NotFoundError("Professor", professor_id)

        error = policy.validate_limit(student_limit, professor.max_students)
        if error:
            raise InvalidStudentLimitError(error)

        overlaps = await _find_overlaps(db, start_time, end_time, professor_id)
        if overlaps:
            raise SessionOverlapError([s.id for s in overlaps])

        now = clock.now()
        session = await repository.create(
            db,
            professor_id=professor_id,
            start_time=start_time,
            end_time=end_time,
            student_limit=student_limit,
            now=now,
        )

    logger.info(
        f"Session {session.id} created by professor {professor_id}: "
        f"{start_time.isoformat()} - {end_time.isoformat()}, limit={student_limit}"
    )
    return _to_response(session, 0, now)


@returns_result
async def update_session(
    db: AsyncSession,
    session_id: int,
    professor_id: int,
    *,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    student_limit: int | None = None,
    clock: Clock = system_clock,
) -> SessionResponse:
    """
    Update a session that has not started yet.

    Fields left as None keep their current value. The overlap check ignores
    the session itself; the limit may not drop below the approved count.
    """
    if start_time is None and end_time is None and student_limit is None:
        raise InvalidInputError("Provide at least one of start_time, end_time or student_limit")
    if student_limit is not None and student_limit < 1:
        raise InvalidStudentLimitError("Student limit must be at least 1")

    async with locked_transaction(
        db,
        ("professor", professor_id),
        ("session", session_id),
        timeout=settings.transaction_timeout_seconds,
    ):
        professor = await UserRepository.get_professor_for_update(db, professor_id)
        if professor is None:
            raise NotFoundError("Professor", professor_id)

        session = await _get_owned_session(db, session_id, professor_id, for_update=True)

        now = clock.now()
        if policy.derive_status(session, now) is not SessionStatus.UPCOMING:
            raise SessionAlreadyStartedError()

        if start_time is not None or end_time is not None:
            new_start = ensure_utc(start_time) if start_time is not None else session.start_time
            new_end = ensure_utc(end_time) if end_time is not None else session.end_time

            error = policy.validate_date_range(new_start, new_end)
            if error:
                raise InvalidDateRangeError(error)

            overlaps = await _find_overlaps(
                db, new_start, new_end, professor_id, exclude_session_id=session_id
            )
            if overlaps:
                raise SessionOverlapError([s.id for s in overlaps])
        else:
            new_start, new_end = session.start_time, session.end_time

        approved_count = await repository.count_approved(db, session_id)
        if student_limit is not None:
            error = policy.validate_limit(student_limit, professor.max_students)
            if error:
                raise InvalidStudentLimitError(error)
            if not policy.can_decrease_limit_to(student_limit, approved_count):
                raise LimitBelowEnrolledError(approved_count)

        session = await repository.update_fields(
            db,
            session,
            now=now,
            start_time=new_start,
            end_time=new_end,
            student_limit=student_limit,
        )

    logger.info(f"Session {session_id} updated by professor {professor_id}")
    return _to_response(session, approved_count, now)


@returns_result
async def delete_session(
    db: AsyncSession,
    session_id: int,
    professor_id: int,
) -> SessionDeleteResponse:
    """
    Delete a session with no approved applications.

    Pending and rejected applications of the session are deleted with it.
    """
    async with locked_transaction(
        db,
        ("professor", professor_id),
        ("session", session_id),
        timeout=settings.transaction_timeout_seconds,
    ):
        await _get_owned_session(db, session_id, professor_id, for_update=True)

        approved_count = await repository.count_approved(db, session_id)
        if approved_count > 0:
            raise SessionHasEnrollmentsError(approved_count)

        deleted_applications = await repository.delete_with_applications(db, session_id)

    logger.info(
        f"Session {session_id} deleted by professor {professor_id} "
        f"({deleted_applications} application(s) removed)"
    )
    return SessionDeleteResponse(
        message="Session deleted successfully",
        deleted_applications=deleted_applications,
    )


# ============================================
# Read Models
# ============================================


@returns_result
async def list_professor_sessions(
    db: AsyncSession,
    professor_id: int,
    status_filter: SessionStatus | None = None,
    *,
    clock: Clock = system_clock,
) -> SessionListResponse:
    """A professor's sessions with enrolled counts, optionally filtered by derived status."""
    now = clock.now()
    sessions = await repository.get_by_professor(db, professor_id)
    if status_filter is not None:
        sessions = [s for s in sessions if policy.derive_status(s, now) is status_filter]

    counts = await repository.count_approved_by_session(db, [s.id for s in sessions])
    items = [_to_response(s, counts.get(s.id, 0), now) for s in sessions]
    return SessionListResponse(sessions=items, total=len(items))


@returns_result
async def get_session_detail(
    db: AsyncSession,
    session_id: int,
    professor_id: int,
    *,
    clock: Clock = system_clock,
) -> SessionResponse:
    """One session of the professor."""
    session = await _get_owned_session(db, session_id, professor_id)
    approved_count = await repository.count_approved(db, session_id)
    return _to_response(session, approved_count, clock.now())


@returns_result
async def list_enrolled_students(
    db: AsyncSession,
    session_id: int,
    professor_id: int,
) -> EnrolledStudentsResponse:
    """Approved students of a session with their file references."""
    await _get_owned_session(db, session_id, professor_id)

    applications = await repository.get_approved_applications(db, session_id)
    students = await UserRepository.get_students_by_ids(
        db, [application.student_id for application in applications]
    )

    enrolled = []
    for application in applications:
        student = students.get(application.student_id)
        if student is None:
            logger.warning(
                f"Approved application {application.id} references missing student "
                f"{application.student_id}"
            )
            continue
        enrolled.append(
            EnrolledStudent(
                application_id=application.id,
                student_id=student.id,
                first_name=student.first_name,
                last_name=student.last_name,
                signed_file_ref=application.signed_file_ref,
                response_file_ref=application.response_file_ref,
                approved_at=application.updated_at,
            )
        )

    return EnrolledStudentsResponse(session_id=session_id, students=enrolled, total=len(enrolled))


@returns_result
async def list_active_sessions_for_student(
    db: AsyncSession,
    student_id: int,
    *,
    clock: Clock = system_clock,
) -> ActiveSessionListResponse:
    """
    Sessions currently open for applications, as seen by one student.

    A student can apply when they have no application to the session yet and
    the session still has a free slot.
    """
    now = clock.now()
    sessions = await repository.get_active(db, now)
    session_ids = [s.id for s in sessions]

    counts = await repository.count_approved_by_session(db, session_ids)
    applications = await application_repository.get_by_student_for_sessions(
        db, student_id, session_ids
    )

    professors = {}
    items = []
    for session in sessions:
        if session.professor_id not in professors:
            professors[session.professor_id] = await UserRepository.get_professor(
                db, session.professor_id
            )
        professor = professors[session.professor_id]

        approved_count = counts.get(session.id, 0)
        slots = policy.available_slots(session, approved_count)
        application = applications.get(session.id)

        items.append(
            ActiveSession(
                id=session.id,
                professor_id=session.professor_id,
                professor_name=professor.display_name if professor else "",
                start_time=session.start_time,
                end_time=session.end_time,
                student_limit=session.student_limit,
                enrolled_count=approved_count,
                available_slots=slots,
                already_applied=application is not None,
                application_status=application.status if application else None,
                can_apply=application is None and slots > 0,
            )
        )

    return ActiveSessionListResponse(sessions=items, total=len(items))
