"""
Database engine and session management.

Provides the async SQLAlchemy engine and session factory the jobs inject
into the pipeline.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from collectorverse.config import settings
from collectorverse.models.db import Base


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine for the catalog database."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = create_engine()
async_session_factory = create_session_factory(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """
    Initialize database tables.

    Creates all tables defined in the ORM models. Existing tables are left alone.
    """
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
