"""
Applications Router

Endpoints:
Professor
- GET   /professor/applications - List applications (optional status filter)
- GET   /professor/applications/{id} - Application detail
- GET   /professor/applications/{id}/unsigned-template - Request form to sign
- PATCH /professor/applications/{id}/approve - Approve a pending application
- PATCH /professor/applications/{id}/reject - Reject a pending application
- PATCH /professor/applications/{id}/unapprove - Withdraw an approval
- PUT   /professor/applications/{id}/response-file - Attach the response file

Student
- POST  /student/applications - Apply to an active session
- GET   /student/applications - List own applications
- GET   /student/applications/{id} - Application detail
- PUT   /student/applications/{id}/signed-file - Attach the signed request

File uploads are handled upstream; these endpoints receive the stored file's
relative URL.
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.auth import Principal, require_professor, require_student
from enrollment.core.database import get_db
from enrollment.core.responses import unwrap_or_raise
from enrollment.modules.applications import service
from enrollment.modules.applications.models import ApplicationStatus
from enrollment.modules.applications.schemas import (
    ApplicationCreate,
    ApplicationResponse,
    ApprovalResponse,
    FileReferenceRequest,
    ProfessorApplicationListResponse,
    RejectRequest,
    StudentApplicationListResponse,
    UnapproveRequest,
)

logger = logging.getLogger(__name__)

professor_router = APIRouter(prefix="/professor/applications", tags=["Professor Applications"])
student_router = APIRouter(prefix="/student/applications", tags=["Student Applications"])


# ============================================
# Professor Endpoints
# ============================================


@professor_router.get(
    "",
    response_model=ProfessorApplicationListResponse,
    summary="List Applications",
)
async def list_applications(
    status_filter: ApplicationStatus | None = Query(None, alias="status"),
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> ProfessorApplicationListResponse:
    result = await service.list_professor_applications(db, professor.id, status_filter)
    return unwrap_or_raise(result)


@professor_router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    summary="Get Application",
    responses={403: {"description": "Not your application"}, 404: {"description": "Not found"}},
)
async def get_application(
    application_id: int,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.get_application_for_professor(db, application_id, professor.id)
    return unwrap_or_raise(result)


@professor_router.get(
    "/{application_id}/unsigned-template",
    response_class=PlainTextResponse,
    summary="Download Unsigned Template",
    description="The request form the student signs and uploads back. Approved applications only.",
    responses={
        403: {"description": "Not your application"},
        404: {"description": "Not found"},
        409: {"description": "Application is not approved"},
    },
)
async def download_unsigned_template(
    application_id: int,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> PlainTextResponse:
    result = await service.get_unsigned_template(db, application_id, professor.id)
    template = unwrap_or_raise(result)
    return PlainTextResponse(
        template.content,
        headers={"Content-Disposition": f'attachment; filename="{template.filename}"'},
    )


@professor_router.patch(
    "/{application_id}/approve",
    response_model=ApprovalResponse,
    summary="Approve Application",
    description="""
Approve a pending application.

**Effects:**
- The application becomes approved if the session still has a free slot
- Every other pending application of the same student is rejected
  automatically, whichever professor it was addressed to
""",
    responses={
        403: {"description": "Not your application"},
        404: {"description": "Not found"},
        409: {
            "description": "Already processed, or session full",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "SESSION_FULL",
                            "message": "Session has reached its limit of 3 approved students",
                        }
                    }
                }
            },
        },
    },
)
async def approve_application(
    application_id: int,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> ApprovalResponse:
    result = await service.approve_application(db, application_id, professor.id)
    return unwrap_or_raise(result)


@professor_router.patch(
    "/{application_id}/reject",
    response_model=ApplicationResponse,
    summary="Reject Application",
    responses={
        400: {"description": "Reason missing or shorter than 10 characters"},
        403: {"description": "Not your application"},
        404: {"description": "Not found"},
        409: {"description": "Application is not pending"},
    },
)
async def reject_application(
    application_id: int,
    data: RejectRequest,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.reject_application(db, application_id, professor.id, data.reason)
    return unwrap_or_raise(result)


@professor_router.patch(
    "/{application_id}/unapprove",
    response_model=ApplicationResponse,
    summary="Withdraw Approval",
    description="Reject an approved application. The student's signed file is cleared.",
    responses={
        400: {"description": "Reason missing"},
        403: {"description": "Not your application"},
        404: {"description": "Not found"},
        409: {"description": "Application is not approved"},
    },
)
async def unapprove_application(
    application_id: int,
    data: UnapproveRequest,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.unapprove_application(db, application_id, professor.id, data.reason)
    return unwrap_or_raise(result)


@professor_router.put(
    "/{application_id}/response-file",
    response_model=ApplicationResponse,
    summary="Attach Response File",
)
async def set_response_file(
    application_id: int,
    data: FileReferenceRequest,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.set_response_file(db, application_id, professor.id, data.file_ref)
    return unwrap_or_raise(result)


# ============================================
# Student Endpoints
# ============================================


@student_router.post(
    "",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Application",
    responses={
        400: {"description": "Professor does not own the session"},
        404: {"description": "Session not found"},
        409: {"description": "Session not active, full, or already applied"},
    },
)
async def submit_application(
    data: ApplicationCreate,
    student: Principal = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.submit_application(db, student.id, data.session_id, data.professor_id)
    return unwrap_or_raise(result)


@student_router.get(
    "",
    response_model=StudentApplicationListResponse,
    summary="List Own Applications",
)
async def list_my_applications(
    status_filter: ApplicationStatus | None = Query(None, alias="status"),
    student: Principal = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> StudentApplicationListResponse:
    result = await service.list_student_applications(db, student.id, status_filter)
    return unwrap_or_raise(result)


@student_router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    summary="Get Own Application",
)
async def get_my_application(
    application_id: int,
    student: Principal = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.get_application_for_student(db, application_id, student.id)
    return unwrap_or_raise(result)


@student_router.put(
    "/{application_id}/signed-file",
    response_model=ApplicationResponse,
    summary="Attach Signed Request",
    responses={409: {"description": "Application is not approved"}},
)
async def set_signed_file(
    application_id: int,
    data: FileReferenceRequest,
    student: Principal = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    result = await service.set_signed_file(db, application_id, student.id, data.file_ref)
    return unwrap_or_raise(result)
