"""Tests for health and readiness endpoints.

The /health endpoint is a simple liveness probe (process is running).
The /ready endpoint verifies database and Redis connectivity.
"""

from __future__ import annotations

import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pollmarket.common.middleware import SecurityHeadersMiddleware
from pollmarket.main import VERSION, app


@pytest_asyncio.fixture
async def bare_client() -> AsyncClient:
    """Client with no dependency overrides — tests /health and /ready directly."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@contextlib.asynccontextmanager
async def _mock_connect():
    """Async context manager that simulates a successful DB connection."""
    yield AsyncMock()


def _healthy_engine() -> MagicMock:
    engine = MagicMock()
    engine.connect = _mock_connect
    return engine


def _healthy_redis() -> AsyncMock:
    r = AsyncMock()
    r.ping = AsyncMock(return_value=True)
    r.aclose = AsyncMock()
    return r


# ─── Liveness Probe ───


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_returns_status_and_version(self, bare_client: AsyncClient):
        resp = await bare_client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": VERSION}

    @pytest.mark.asyncio
    async def test_security_headers_present(self, bare_client: AsyncClient):
        resp = await bare_client.get("/health")

        for header, value in SecurityHeadersMiddleware.HEADERS.items():
            assert resp.headers[header] == value
        assert resp.headers.get("x-request-id")


# ─── Readiness Probe ───


class TestReadinessEndpoint:
    @pytest.mark.asyncio
    async def test_ready_200_when_all_healthy(self, bare_client: AsyncClient):
        with (
            patch("pollmarket.common.database._get_engine", return_value=_healthy_engine()),
            patch("redis.asyncio.from_url", return_value=_healthy_redis()),
        ):
            resp = await bare_client.get("/ready")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["checks"] == {"database": "ok", "redis": "ok"}

    @pytest.mark.asyncio
    async def test_ready_503_when_db_down(self, bare_client: AsyncClient):
        bad_engine = MagicMock()
        bad_engine.connect.side_effect = ConnectionRefusedError("db down")

        with (
            patch("pollmarket.common.database._get_engine", return_value=bad_engine),
            patch("redis.asyncio.from_url", return_value=_healthy_redis()),
        ):
            resp = await bare_client.get("/ready")

        assert resp.status_code == 503
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"] == "error: ConnectionRefusedError"
        assert body["checks"]["redis"] == "ok"

    @pytest.mark.asyncio
    async def test_ready_503_when_redis_down(self, bare_client: AsyncClient):
        with (
            patch("pollmarket.common.database._get_engine", return_value=_healthy_engine()),
            patch("redis.asyncio.from_url", side_effect=ConnectionRefusedError("redis down")),
        ):
            resp = await bare_client.get("/ready")

        assert resp.status_code == 503
        assert resp.json()["checks"]["database"] == "ok"
        assert "error" in resp.json()["checks"]["redis"]
