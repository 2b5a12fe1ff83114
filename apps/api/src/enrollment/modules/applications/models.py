"""
Application Models

A student's request to enroll in a session, plus the files attached to it
once it is approved.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from enrollment.core.database import Base, UTCDateTime


class ApplicationStatus(str, enum.Enum):
    """Status of an application."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RejectionSource(str, enum.Enum):
    """Who or what moved an application to rejected."""

    PROFESSOR = "professor"  # Explicit reject of a pending application
    AUTO = "auto"  # Student was approved elsewhere
    UNAPPROVED = "unapproved"  # Approval withdrawn by the professor


class Application(Base):
    """
    Enrollment application.

    professor_id is copied from the session when the application is created
    and must always equal session.professor_id. It is checked at write time so
    ownership checks don't need a join.
    """

    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    student_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("enrollment_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    professor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("professors.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_source: Mapped[RejectionSource | None] = mapped_column(
        Enum(RejectionSource, name="rejection_source"), nullable=True
    )

    # Relative URLs of uploaded files, e.g. "/uploads/signed-....pdf"
    signed_file_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    response_file_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("student_id", "session_id", name="uq_applications_student_session"),
        Index("ix_applications_status", "status"),
        Index("ix_applications_professor_id", "professor_id"),
        Index("ix_applications_session_status", "session_id", "status"),
        Index("ix_applications_student_status", "student_id", "status"),
    )
