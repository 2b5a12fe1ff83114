"""
Enrollment Sessions Router

Professor endpoints for managing enrollment sessions, plus the student view
of sessions open for applications.

Endpoints:
- POST   /professor/sessions - Create a session
- GET    /professor/sessions - List own sessions (optional status filter)
- GET    /professor/sessions/{id} - Session detail
- PATCH  /professor/sessions/{id} - Update a session that has not started
- DELETE /professor/sessions/{id} - Delete a session without enrollments
- GET    /professor/sessions/{id}/students - Approved students of a session
- GET    /student/sessions/active - Sessions open for applications
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.auth import Principal, require_professor, require_student
from enrollment.core.database import get_db
from enrollment.core.responses import unwrap_or_raise
from enrollment.modules.sessions import service
from enrollment.modules.sessions.models import SessionStatus
from enrollment.modules.sessions.schemas import (
    ActiveSessionListResponse,
    EnrolledStudentsResponse,
    SessionCreate,
    SessionDeleteResponse,
    SessionListResponse,
    SessionResponse,
    SessionUpdate,
)

logger = logging.getLogger(__name__)

professor_router = APIRouter(prefix="/professor/sessions", tags=["Professor Sessions"])
student_router = APIRouter(prefix="/student/sessions", tags=["Student Sessions"])


@professor_router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Enrollment Session",
    responses={
        400: {"description": "Invalid dates or student limit"},
        409: {
            "description": "Session overlaps with an existing session",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "SESSION_OVERLAP",
                            "message": "Session overlaps with an existing session. "
                            "Please choose different dates.",
                        }
                    }
                }
            },
        },
    },
)
async def create_session(
    data: SessionCreate,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Create an enrollment session for the authenticated professor."""
    result = await service.create_session(
        db,
        professor.id,
        data.start_time,
        data.end_time,
        data.student_limit,
    )
    return unwrap_or_raise(result)


@professor_router.get(
    "",
    response_model=SessionListResponse,
    summary="List Own Sessions",
)
async def list_sessions(
    status_filter: SessionStatus | None = Query(None, alias="status"),
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> SessionListResponse:
    result = await service.list_professor_sessions(db, professor.id, status_filter)
    return unwrap_or_raise(result)


@professor_router.get(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Get Session Detail",
    responses={403: {"description": "Not your session"}, 404: {"description": "Not found"}},
)
async def get_session(
    session_id: int,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    result = await service.get_session_detail(db, session_id, professor.id)
    return unwrap_or_raise(result)


@professor_router.patch(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Update Session",
    description="""
Update dates and/or the student limit of a session.

**Rules:**
- Only sessions that have not started can be changed
- The new range must not overlap another of your sessions
- The limit cannot drop below the number of approved students
""",
    responses={
        400: {"description": "Invalid dates or student limit"},
        403: {"description": "Not your session"},
        404: {"description": "Not found"},
        409: {"description": "Session started, overlap, or limit below enrollment"},
    },
)
async def update_session(
    session_id: int,
    data: SessionUpdate,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    result = await service.update_session(
        db,
        session_id,
        professor.id,
        start_time=data.start_time,
        end_time=data.end_time,
        student_limit=data.student_limit,
    )
    return unwrap_or_raise(result)


@professor_router.delete(
    "/{session_id}",
    response_model=SessionDeleteResponse,
    summary="Delete Session",
    responses={
        403: {"description": "Not your session"},
        404: {"description": "Not found"},
        409: {"description": "Session has approved students"},
    },
)
async def delete_session(
    session_id: int,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> SessionDeleteResponse:
    result = await service.delete_session(db, session_id, professor.id)
    return unwrap_or_raise(result)


@professor_router.get(
    "/{session_id}/students",
    response_model=EnrolledStudentsResponse,
    summary="List Enrolled Students",
)
async def list_enrolled_students(
    session_id: int,
    professor: Principal = Depends(require_professor),
    db: AsyncSession = Depends(get_db),
) -> EnrolledStudentsResponse:
    result = await service.list_enrolled_students(db, session_id, professor.id)
    return unwrap_or_raise(result)


@student_router.get(
    "/active",
    response_model=ActiveSessionListResponse,
    summary="List Active Sessions",
    description="Sessions currently accepting applications, with whether you can still apply.",
)
async def list_active_sessions(
    student: Principal = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ActiveSessionListResponse:
    result = await service.list_active_sessions_for_student(db, student.id)
    return unwrap_or_raise(result)
