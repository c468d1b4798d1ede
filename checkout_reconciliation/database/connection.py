"""
Database engine and session management.

The application shares one lazily created engine. PostgreSQL (asyncpg) gets
a tuned connection pool. SQLite (aiosqlite, used in tests and local runs)
gets no pooling and a busy timeout so concurrent verifications queue on the
write lock instead of failing.

Services take an ``async_sessionmaker`` and open short units of work with
``async with factory() as db, db.begin():``.
"""
from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from checkout_reconciliation.config import Settings, get_settings
from checkout_reconciliation.database.models import Base

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    Args:
        settings: Settings carrying the database URL and pool tuning

    Returns:
        AsyncEngine: New engine (the caller owns its disposal)
    """
    engine_kwargs: Dict[str, Any] = {"echo": settings.database_echo}
    if settings.is_sqlite:
        engine_kwargs.update(
            poolclass=NullPool,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        )
    else:
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return create_async_engine(settings.database_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose objects stay readable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    """Shared application engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Shared application session factory, created on first use."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = build_session_factory(get_engine())
    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, Any]:
    """
    FastAPI dependency yielding a session that commits on success.

    Yields:
        AsyncSession: Database session
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create any missing tables."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the shared engine; the next use creates a new one."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_factory = None
