"""API test fixtures — httpx.AsyncClient, dependency overrides, seeded market.

Provides an async test client that exercises the full FastAPI app with the
database dependency overridden to the per-test SQLite session from the root
conftest and the event publisher replaced by an AsyncMock.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from pollmarket.common.database import get_db
from pollmarket.main import app
from tests.factories import orm_poll, orm_user


# ─── Seeded Market ───


@pytest_asyncio.fixture
async def market_db(db: AsyncSession) -> AsyncSession:
    """poll-1 (opt-a / opt-b) created by alice; users alice, bob, and moderator mod."""
    db.add_all(
        [
            orm_user("alice"),
            orm_user("bob"),
            orm_user("mod", is_moderator=True),
            *orm_poll("poll-1", option_ids=("opt-a", "opt-b"), creator_id="alice"),
        ]
    )
    await db.commit()
    return db


# ─── Mock Publisher ───


@pytest.fixture
def mock_publish(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Replace Redis publishing so no broker is needed."""
    mock = AsyncMock()
    monkeypatch.setattr("pollmarket.market.service.publish_event", mock)
    return mock


# ─── Async Test Client ───


@pytest_asyncio.fixture
async def client(market_db: AsyncSession, mock_publish: AsyncMock) -> AsyncClient:
    """Provide an httpx.AsyncClient wired to the test FastAPI app."""
    app.dependency_overrides[get_db] = lambda: market_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()
