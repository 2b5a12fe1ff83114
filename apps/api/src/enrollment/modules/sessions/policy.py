"""
Session Policy

Pure rules for session scheduling and capacity. Nothing here touches the
database; the service feeds in rows it has already loaded.

Time ranges are half-open: a session occupies [start_time, end_time), so a
session ending at 10:00 and another starting at 10:00 do not overlap.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from enrollment.modules.sessions.models import SessionStatus


class TimeRange(Protocol):
    id: int
    start_time: datetime
    end_time: datetime


class HasLimit(Protocol):
    student_limit: int


def ranges_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Return True if [start_a, end_a) and [start_b, end_b) intersect."""
    return start_a < end_b and start_b < end_a


def find_overlapping(
    start: datetime,
    end: datetime,
    sessions: Iterable[TimeRange],
    exclude_session_id: int | None = None,
) -> list[TimeRange]:
    """
    Return the sessions whose range intersects [start, end).

    Args:
        start: Candidate start time
        end: Candidate end time
        sessions: Existing sessions of the same professor
        exclude_session_id: Session being edited, ignored in the comparison

    Returns:
        Conflicting sessions, in input order
    """
    return [
        session
        for session in sessions
        if session.id != exclude_session_id
        and ranges_overlap(start, end, session.start_time, session.end_time)
    ]


def available_slots(session: HasLimit, approved_count: int) -> int:
    """Remaining approvals before the session is full. Negative means over capacity."""
    return session.student_limit - approved_count


def can_decrease_limit_to(new_limit: int, approved_count: int) -> bool:
    """A limit may shrink down to the number already approved, not below."""
    return new_limit >= approved_count


def derive_status(session: TimeRange, now: datetime) -> SessionStatus:
    """
    Status of a session at a point in time.

    A session is active on [start_time, end_time). At end_time exactly it is
    already past.
    """
    if now < session.start_time:
        return SessionStatus.UPCOMING
    if now >= session.end_time:
        return SessionStatus.PAST
    return SessionStatus.ACTIVE


def is_active(session: TimeRange, now: datetime) -> bool:
    return derive_status(session, now) is SessionStatus.ACTIVE


def validate_date_range(start: datetime, end: datetime) -> str | None:
    """Return an error message if the range is unusable, else None."""
    if start >= end:
        return "Start time must be before end time"
    return None


def validate_limit(student_limit: int, max_students: int) -> str | None:
    """Return an error message if the limit is out of range, else None."""
    if student_limit < 1:
        return "Student limit must be at least 1"
    if student_limit > max_students:
        return f"Student limit cannot exceed your maximum of {max_students} students"
    return None
