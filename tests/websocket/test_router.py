"""Tests for the WebSocket router endpoints.

Uses a minimal FastAPI app (not the full main.app) to avoid triggering
the Redis subscriber lifespan that requires a real Redis connection.
"""

from __future__ import annotations

from unittest.mock import patch

from fastapi import FastAPI
from starlette.testclient import TestClient

from pollmarket.websocket.manager import ConnectionManager
from pollmarket.websocket.router import router as ws_router


def _make_test_app() -> FastAPI:
    test_app = FastAPI()
    test_app.include_router(ws_router)
    return test_app


class TestWebSocketRouter:
    def test_firehose_connect_and_disconnect(self):
        test_mgr = ConnectionManager()

        with patch("pollmarket.websocket.router.manager", test_mgr):
            client = TestClient(_make_test_app())
            with client.websocket_connect("/ws"):
                assert test_mgr.active_count == 1

            assert test_mgr.active_count == 0

    def test_poll_endpoint_subscribes_to_that_poll(self):
        test_mgr = ConnectionManager()

        with patch("pollmarket.websocket.router.manager", test_mgr):
            client = TestClient(_make_test_app())
            with client.websocket_connect("/ws/polls/poll-1") as ws:
                ws.send_text("ping")
                assert test_mgr.subscriber_count("poll-1") == 1

            assert test_mgr.subscriber_count("poll-1") == 0
            assert test_mgr.active_count == 0

    def test_multiple_sequential_connections(self):
        test_mgr = ConnectionManager()

        with patch("pollmarket.websocket.router.manager", test_mgr):
            client = TestClient(_make_test_app())

            with client.websocket_connect("/ws"):
                assert test_mgr.active_count == 1
            assert test_mgr.active_count == 0

            with client.websocket_connect("/ws/polls/poll-2"):
                assert test_mgr.active_count == 1
            assert test_mgr.active_count == 0
