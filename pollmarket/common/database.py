"""Async SQLAlchemy engine, session factory and the FastAPI session dependency.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) in tests. The
engine is created on first use so importing this module never opens a
connection; main.py disposes it on shutdown.

A request gets one AsyncSession. The market store wraps its writes in
``atomic()``, which commits or rolls back that session.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pollmarket.common.config import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        engine_kwargs: dict = {
            "echo": settings.environment == "development",
            "pool_pre_ping": True,
        }
        # SQLite's pool classes take no sizing arguments
        if not settings.database_url.startswith("sqlite"):
            engine_kwargs["pool_size"] = settings.db_pool_size
            engine_kwargs["max_overflow"] = settings.db_max_overflow
        _engine = create_async_engine(settings.database_url, **engine_kwargs)
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request.

    Nothing is committed here; uncommitted work is discarded when the
    session closes.
    """
    async with _get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine and session factory."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
