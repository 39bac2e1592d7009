"""Tests for production middleware — request ID, request logging, security headers.

Uses a minimal FastAPI test app to exercise each middleware class in isolation
and together, following the same httpx.AsyncClient + ASGITransport pattern
used in the API test suite.
"""

from __future__ import annotations

import re
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from pollmarket.common.middleware import (
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    request_id_var,
)

# ─── Test App Factory ───


def _make_app() -> FastAPI:
    """Build a minimal FastAPI app with all three middleware registered."""
    app = FastAPI()

    # Same order as production (last added = outermost = runs first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/ping")
    async def ping():
        return {"msg": "pong"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/rid")
    async def return_request_id():
        """Echo the ContextVar request ID back to the caller."""
        return {"request_id": request_id_var.get("")}

    return app


@pytest_asyncio.fixture
async def client() -> AsyncClient:
    transport = ASGITransport(app=_make_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── RequestIdMiddleware Tests ───


class TestRequestIdMiddleware:
    @pytest.mark.asyncio
    async def test_generates_hex_id_when_no_header(self, client: AsyncClient):
        resp = await client.get("/ping")
        assert re.fullmatch(r"[0-9a-f]{32}", resp.headers["x-request-id"])

    @pytest.mark.asyncio
    async def test_preserves_provided_request_id(self, client: AsyncClient):
        resp = await client.get("/ping", headers={"X-Request-ID": "trace-12345"})
        assert resp.headers["x-request-id"] == "trace-12345"

    @pytest.mark.asyncio
    async def test_context_var_set_during_request(self, client: AsyncClient):
        resp = await client.get("/rid", headers={"X-Request-ID": "ctx-var-test-abc"})
        assert resp.json()["request_id"] == "ctx-var-test-abc"


# ─── RequestLoggingMiddleware Tests ───


class TestRequestLoggingMiddleware:
    @pytest.mark.asyncio
    async def test_logs_method_path_status_and_caller(self, client: AsyncClient):
        with patch("pollmarket.common.middleware.logger") as mock_logger:
            resp = await client.get("/ping", headers={"X-User-Id": "alice"})
            assert resp.status_code == 200

        mock_logger.info.assert_called_once()
        log_msg = mock_logger.info.call_args[0][0]
        assert log_msg == "GET /ping 200"
        data = mock_logger.info.call_args[1]["extra"]["data"]
        assert data["user_id"] == "alice"
        assert data["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_skips_health_endpoint(self, client: AsyncClient):
        with patch("pollmarket.common.middleware.logger") as mock_logger:
            await client.get("/health")
        mock_logger.info.assert_not_called()

    @pytest.mark.asyncio
    async def test_logs_404_status(self, client: AsyncClient):
        with patch("pollmarket.common.middleware.logger") as mock_logger:
            resp = await client.get("/nonexistent")

        assert resp.status_code == 404
        assert "404" in mock_logger.info.call_args[0][0]


# ─── SecurityHeadersMiddleware Tests ───


class TestSecurityHeadersMiddleware:
    @pytest.mark.asyncio
    async def test_all_headers_present(self, client: AsyncClient):
        resp = await client.get("/ping")
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-frame-options"] == "DENY"
        assert "max-age=31536000" in resp.headers["strict-transport-security"]
        assert resp.headers["referrer-policy"] == "strict-origin-when-cross-origin"

    @pytest.mark.asyncio
    async def test_odds_responses_are_not_cacheable(self, client: AsyncClient):
        resp = await client.get("/ping")
        assert resp.headers["cache-control"] == "no-store"

    @pytest.mark.asyncio
    async def test_headers_present_on_error_responses(self, client: AsyncClient):
        resp = await client.get("/nonexistent")
        assert resp.headers["x-frame-options"] == "DENY"
