"""SQLAlchemy 2.x async engine and session factory.

Provides the async engine, session maker, and a helper for creating the
alerting tables in local development.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pulsealert.core.config import Settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory from settings.

    Returns:
        Tuple of (engine, async_session_factory).
    """
    engine = create_async_engine(
        settings.database_url or "",
        echo=settings.debug,
        pool_size=5,
        max_overflow=5,
        pool_pre_ping=True,
        pool_recycle=300,
    )

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    return engine, session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create the alerting tables if they do not exist."""
    import pulsealert.core.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
