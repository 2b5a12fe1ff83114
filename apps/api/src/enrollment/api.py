from fastapi import APIRouter

from enrollment.modules.applications.router import (
    professor_router as professor_applications_router,
)
from enrollment.modules.applications.router import (
    student_router as student_applications_router,
)
from enrollment.modules.cleanup.router import router as admin_jobs_router
from enrollment.modules.sessions.router import professor_router as professor_sessions_router
from enrollment.modules.sessions.router import student_router as student_sessions_router

api_router = APIRouter()

api_router.include_router(professor_sessions_router)
api_router.include_router(professor_applications_router)

api_router.include_router(student_sessions_router)
api_router.include_router(student_applications_router)

api_router.include_router(admin_jobs_router)
