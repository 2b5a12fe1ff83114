"""
Applications Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from enrollment.modules.applications.models import ApplicationStatus, RejectionSource

# Minimum length of a professor's rejection reason, after trimming
MIN_REJECTION_REASON_LENGTH = 10


class ApplicationCreate(BaseModel):
    """Request body for POST /student/applications."""

    session_id: int = Field(..., ge=1)
    professor_id: int = Field(..., ge=1)


class RejectRequest(BaseModel):
    """
    Request body for rejecting a pending application.

    The length rule is enforced by the service on the trimmed text, so a
    reason padded with spaces is still refused.
    """

    reason: str = Field(..., max_length=2000)


class UnapproveRequest(BaseModel):
    """Request body for withdrawing an approval."""

    reason: str = Field(..., max_length=2000)


class FileReferenceRequest(BaseModel):
    """Relative URL of a file already stored by the upload layer."""

    file_ref: str = Field(..., min_length=1, max_length=500)


class ApplicationResponse(BaseModel):
    """An application as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    session_id: int
    professor_id: int
    status: ApplicationStatus
    rejection_reason: str | None = None
    rejection_source: RejectionSource | None = None
    signed_file_ref: str | None = None
    response_file_ref: str | None = None
    created_at: datetime
    updated_at: datetime


class ApprovalResponse(BaseModel):
    """Result of an approval, with the applications it auto-rejected."""

    application: ApplicationResponse
    auto_rejected_ids: list[int]


class ApplicationCounts(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0


class ProfessorApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    total: int
    counts: ApplicationCounts


class StudentApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    total: int


class UnsignedTemplate(BaseModel):
    """The request form a student prints, signs and uploads back."""

    filename: str
    content: str
