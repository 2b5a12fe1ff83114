"""
Shared fixtures.

Tests that check invariants run against a real SQLite database (one file per
test, via aiosqlite). Unit tests of individual functions use mocks instead.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from enrollment.core.clock import FixedClock
from enrollment.core.database import Base, create_engine, create_session_maker
from enrollment.modules.applications.models import (
    Application,
    ApplicationStatus,
    RejectionSource,
)
from enrollment.modules.sessions.models import EnrollmentSession
from enrollment.modules.users.models import Professor, Student

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def clock():
    """A clock frozen at NOW."""
    return FixedClock(NOW)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'enrollment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest_asyncio.fixture
async def db(session_maker):
    """A database session for arranging and inspecting state."""
    async with session_maker() as session:
        yield session


class Factory:
    """
    Inserts rows directly, bypassing the services' rules.

    Saved rows are detached from the session, so a rollback in a service
    call that shares it does not expire them.
    """

    def __init__(self, db, now: datetime):
        self.db = db
        self.now = now

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        self.db.expunge(obj)
        return obj

    async def professor(self, max_students: int = 5, name: str = "Ana") -> Professor:
        return await self._save(
            Professor(first_name=name, last_name="Popescu", max_students=max_students)
        )

    async def student(self, name: str = "Ion") -> Student:
        return await self._save(Student(first_name=name, last_name="Ionescu"))

    async def session(
        self,
        professor: Professor,
        *,
        starts_in: timedelta = timedelta(days=-1),
        duration: timedelta = timedelta(days=7),
        student_limit: int = 3,
    ) -> EnrollmentSession:
        """A session relative to now; the default one is active."""
        start = self.now + starts_in
        return await self._save(
            EnrollmentSession(
                professor_id=professor.id,
                start_time=start,
                end_time=start + duration,
                student_limit=student_limit,
                created_at=self.now,
                updated_at=self.now,
            )
        )

    async def application(
        self,
        student: Student,
        session: EnrollmentSession,
        *,
        status: ApplicationStatus = ApplicationStatus.PENDING,
        signed_file_ref: str | None = None,
        response_file_ref: str | None = None,
        rejection_reason: str | None = None,
        rejection_source: RejectionSource | None = None,
    ) -> Application:
        return await self._save(
            Application(
                student_id=student.id,
                session_id=session.id,
                professor_id=session.professor_id,
                status=status,
                signed_file_ref=signed_file_ref,
                response_file_ref=response_file_ref,
                rejection_reason=rejection_reason,
                rejection_source=rejection_source,
                created_at=self.now,
                updated_at=self.now,
            )
        )


@pytest.fixture
def factory(db, clock):
    return Factory(db, clock.now())


@pytest.fixture
def fetch(session_maker):
    """Read an application's current row in a fresh session."""

    async def _fetch(application_id: int) -> Application | None:
        async with session_maker() as session:
            return await session.get(Application, application_id)

    return _fetch
