"""
Database Configuration

SQLAlchemy async setup. PostgreSQL (asyncpg) in deployment, SQLite
(aiosqlite) in tests.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from enrollment.core.config import settings


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Values are normalised to UTC on the way in. SQLite drops tzinfo on storage,
    so naive values coming back are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(database_url, echo=echo, future=True)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine. Objects stay usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.database_url, echo=settings.database_echo)

async_session_maker = create_session_maker(engine)


async def init_db() -> None:
    """Initialize database tables."""
    # Import models so they register on Base.metadata
    from enrollment.modules.applications import models as _applications  # noqa: F401
    from enrollment.modules.sessions import models as _sessions  # noqa: F401
    from enrollment.modules.users import models as _users  # noqa: F401

    async with engine.begin() as conn:
        # In production the schema is managed outside the application
        if settings.is_development:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the connection pool."""
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one transaction: commit on success, roll back on any error.

    Repository functions only flush; the caller decides where the transaction
    ends by wrapping its reads and writes in this scope. Cancellation (for
    example an asyncio timeout) also rolls back.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
