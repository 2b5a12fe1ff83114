"""
Enrollment Sessions Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from enrollment.core.clock import ensure_utc
from enrollment.modules.applications.models import ApplicationStatus
from enrollment.modules.sessions.models import SessionStatus


class SessionCreate(BaseModel):
    """Request body for POST /professor/sessions."""

    start_time: datetime
    end_time: datetime
    student_limit: int = Field(..., ge=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SessionUpdate(BaseModel):
    """Request body for PATCH /professor/sessions/{id}. At least one field is required."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    student_limit: int | None = Field(None, ge=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def require_a_field(self) -> "SessionUpdate":
        if self.start_time is None and self.end_time is None and self.student_limit is None:
            raise ValueError("At least one of start_time, end_time or student_limit is required")
        return self


class SessionResponse(BaseModel):
    """A session as seen by its professor."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    professor_id: int
    start_time: datetime
    end_time: datetime
    student_limit: int
    enrolled_count: int
    available_slots: int
    status: SessionStatus
    created_at: datetime
    updated_at: datetime


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int


class SessionDeleteResponse(BaseModel):
    message: str
    deleted_applications: int


class EnrolledStudent(BaseModel):
    """An approved student of a session."""

    application_id: int
    student_id: int
    first_name: str
    last_name: str
    signed_file_ref: str | None = None
    response_file_ref: str | None = None
    approved_at: datetime


class EnrolledStudentsResponse(BaseModel):
    session_id: int
    students: list[EnrolledStudent]
    total: int


class ActiveSession(BaseModel):
    """
    An active session offered to a student.

    can_apply is False when the student already applied or the session is full.
    """

    id: int
    professor_id: int
    professor_name: str
    start_time: datetime
    end_time: datetime
    student_limit: int
    enrolled_count: int
    available_slots: int
    already_applied: bool
    application_status: ApplicationStatus | None = None
    can_apply: bool


class ActiveSessionListResponse(BaseModel):
    sessions: list[ActiveSession]
    total: int
