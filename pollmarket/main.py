"""FastAPI application factory for the prediction market service.

Run with: uvicorn pollmarket.main:app --reload
"""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app as make_metrics_app
from sqlalchemy import text

from pollmarket.api.predictions import router as predictions_router
from pollmarket.common.config import get_settings
from pollmarket.common.database import dispose_engine
from pollmarket.common.exceptions import PollMarketError
from pollmarket.common.logging import configure_logging, get_logger
from pollmarket.common.metrics import set_app_info
from pollmarket.common.middleware import (
    PrometheusMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    request_id_var,
)
from pollmarket.websocket.manager import manager as ws_manager
from pollmarket.websocket.router import router as ws_router
from pollmarket.websocket.subscriber import redis_subscriber

logger = get_logger("SYSTEM")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle — start/stop the event subscriber."""
    configure_logging()
    subscriber_task = asyncio.create_task(redis_subscriber(ws_manager))
    logger.info("WebSocket Redis subscriber started")

    yield

    subscriber_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await subscriber_task
    logger.info("WebSocket Redis subscriber stopped")
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Poll Market",
        version=VERSION,
        description="Pari-mutuel prediction market engine for community polls",
        lifespan=lifespan,
    )

    # Last added = outermost = runs first on request
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ─── Exception Handlers ───

    @app.exception_handler(PollMarketError)
    async def market_exception_handler(request: Request, exc: PollMarketError) -> JSONResponse:
        """Map every market error to its class status code with a structured body."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__}: {exc}",
            extra={"data": {"path": str(request.url), "context": exc.context}},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_body(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions — log traceback, return 500."""
        rid = request_id_var.get("")
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc}",
            extra={
                "data": {
                    "path": str(request.url),
                    "request_id": rid,
                    "traceback": traceback.format_exc(),
                }
            },
        )
        body: dict = {
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
        }
        if rid:
            body["request_id"] = rid
        return JSONResponse(status_code=500, content=body)

    # ─── Health / Readiness ───

    @app.get("/health")
    async def health_check() -> dict:
        """Liveness probe — confirms the process is running."""
        return {"status": "ok", "version": VERSION}

    @app.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness probe — checks DB and Redis connectivity."""
        checks: dict[str, str] = {}
        all_ok = True

        try:
            from pollmarket.common.database import _get_engine

            engine = _get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as exc:
            checks["database"] = f"error: {type(exc).__name__}"
            all_ok = False

        try:
            import redis.asyncio as aioredis

            r = aioredis.from_url(get_settings().redis_url)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {type(exc).__name__}"
            all_ok = False

        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={
                "status": "ok" if all_ok else "degraded",
                "version": VERSION,
                "checks": checks,
            },
        )

    # ─── Prometheus Metrics ───

    app.mount("/metrics", make_metrics_app())
    set_app_info(version=VERSION, environment=get_settings().environment)

    # ─── Router Mounting ───

    app.include_router(predictions_router, prefix="/api/predictions", tags=["predictions"])
    app.include_router(ws_router, tags=["websocket"])

    logger.info("App started", extra={"data": {"version": VERSION}})

    return app


app = create_app()
