"""Root test configuration — shared fixtures for all test modules.

IMPORTANT: Environment variables are set BEFORE any pollmarket imports
so that config.py can load Settings without a .env file.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")  # In-memory SQLite
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")  # Test DB 15
os.environ.setdefault("ENVIRONMENT", "testing")

# Now safe to import pollmarket modules
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pollmarket.common.config import Settings, get_settings
from pollmarket.common.models import Base
from pollmarket.market.cache import odds_cache
from pollmarket.market.store import SqlPredictionStore
from tests.factories import make_poll, make_user
from tests.fakes import FakePredictionStore

# ─── Clear cached settings so test env vars are used ───
get_settings.cache_clear()

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _clear_odds_cache():
    """The process-wide odds cache must not leak entries between tests."""
    odds_cache.clear()
    yield
    odds_cache.clear()


# ─── Test Database ───


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables, fresh for every test.

    The store commits inside atomic(), so per-test engines replace the
    rollback-based isolation a shared engine would need.
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    """Provide a database session bound to the per-test engine."""
    session_factory = async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def sql_store(db: AsyncSession) -> SqlPredictionStore:
    return SqlPredictionStore(db)


# ─── Test Settings ───


@pytest.fixture
def test_settings() -> Settings:
    return get_settings()


# ─── In-Memory Store ───


@pytest.fixture
def store() -> FakePredictionStore:
    """An empty in-memory store."""
    return FakePredictionStore()


@pytest.fixture
def ab_store() -> FakePredictionStore:
    """A store holding poll-1 (options opt-a / opt-b) and users alice, bob, carol."""
    fake = FakePredictionStore()
    fake.add_poll(make_poll("poll-1", option_ids=("opt-a", "opt-b"), creator_id="alice"))
    for user_id in ("alice", "bob", "carol"):
        fake.add_user(make_user(user_id))
    return fake
