"""
Enrollment Session Models

A session is a professor-defined window during which students may apply,
with a limit on how many applications can be approved.
"""

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from enrollment.core.database import Base, UTCDateTime


class SessionStatus(str, enum.Enum):
    """Derived status of a session. Not persisted."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    PAST = "past"


class EnrollmentSession(Base):
    """
    Enrollment session owned by a professor.

    Invariants:
    - start_time < end_time
    - 1 <= student_limit <= professor.max_students (upper bound checked by the service)
    - sessions of one professor never overlap as half-open [start, end) ranges
    """

    __tablename__ = "enrollment_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    professor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("professors.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    student_limit: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_enrollment_sessions_date_range"),
        CheckConstraint("student_limit >= 1", name="ck_enrollment_sessions_student_limit"),
        Index("ix_enrollment_sessions_professor_id", "professor_id"),
        Index("ix_enrollment_sessions_start_time", "start_time"),
        Index("ix_enrollment_sessions_end_time", "end_time"),
    )
