"""
Dissertation Enrollment API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database connection
- Background job scheduler (file cleanup)
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from enrollment.api import api_router
from enrollment.core.app_logging import configure_logging
from enrollment.core.config import settings
from enrollment.core.database import async_session_maker, close_db, init_db
from enrollment.core.files import LocalFileStore
from enrollment.core.scheduler import JobScheduler
from enrollment.modules.cleanup.jobs import register_cleanup_job
from enrollment.modules.cleanup.policy import CleanupConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Database connection
    - Background job scheduler
    """
    # Startup
    configure_logging(settings.log_level)
    logger.info(f"Starting {settings.app_name} in {settings.python_env} mode...")

    # Initialize Database
    try:
        await init_db()
        logger.info("[OK] Database connected")
    except Exception as e:
        logger.error(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Background Job Scheduler
    cleanup_config = CleanupConfig.from_settings(settings)
    scheduler = JobScheduler.from_settings(settings)
    app.state.cleanup_config = cleanup_config
    app.state.scheduler = scheduler

    # Register jobs before starting the scheduler
    register_cleanup_job(
        scheduler,
        async_session_maker,
        LocalFileStore(cleanup_config.upload_dir),
        cleanup_config,
        hour=settings.cleanup_hour,
        minute=settings.cleanup_minute,
    )

    if settings.scheduler_enabled:
        try:
            scheduler.start()
            logger.info("[OK] Background scheduler started")
        except Exception as e:
            logger.error(f"[FAIL] Background scheduler failed to start: {e}")
            if settings.is_production:
                raise
    else:
        logger.info("Background scheduler disabled; jobs can still be triggered manually")

    yield  # Application runs here

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")

    # Stop the scheduler first (wait for running jobs)
    scheduler.stop()
    logger.info("[OK] Background scheduler stopped")

    await close_db()
    logger.info("[OK] Cleanup complete")


app = FastAPI(
    title=settings.app_name,
    description="Dissertation supervisor enrollment: sessions, applications, and file retention",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check: the database answers a trivial query."""
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return {"status": "not_ready", "database": "error"}
    return {"status": "ready", "database": "connected"}
