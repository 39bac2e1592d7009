"""WebSocket connection manager for broadcasting market events to clients.

Tracks two kinds of connection:
    - firehose connections (/ws) that receive every event
    - per-poll connections (/ws/polls/{poll_id}) that receive only events
      carrying that poll_id

Dead connections are cleaned up on send failure. The module-level
`manager` instance is a singleton shared across the FastAPI application.

Usage:
    from pollmarket.websocket.manager import manager

    await manager.connect(websocket, poll_id="poll-1")
    await manager.broadcast('{"type": "market.resolved", ...}', poll_id="poll-1")
    manager.disconnect(websocket)
"""

from __future__ import annotations

import json

from fastapi import WebSocket

from pollmarket.common.logging import get_logger
from pollmarket.common.metrics import (
    WS_CONNECTIONS_ACTIVE,
    WS_MESSAGES_SENT_TOTAL,
)

logger = get_logger("EVENTS")


class ConnectionManager:
    """Manages active WebSocket connections and message broadcasting.

    Safe for a single asyncio event loop (FastAPI's default). A client may
    hold several connections (e.g., multiple tabs, several markets).
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._poll_connections: dict[str, set[WebSocket]] = {}
        self._subscriptions: dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket, poll_id: str | None = None) -> None:
        """Accept a WebSocket connection and track it.

        Args:
            websocket: The FastAPI WebSocket to accept and track.
            poll_id: Restrict the connection to one market's events.
        """
        await websocket.accept()
        if poll_id is None:
            self._connections.add(websocket)
        else:
            self._poll_connections.setdefault(poll_id, set()).add(websocket)
            self._subscriptions[websocket] = poll_id
        WS_CONNECTIONS_ACTIVE.inc()
        logger.info(
            "WebSocket connected",
            extra={"data": {"poll_id": poll_id, "active_connections": self.active_count}},
        )

    def disconnect(self, websocket: WebSocket) -> None:
        """Stop tracking a WebSocket connection. Unknown sockets are ignored."""
        poll_id = self._subscriptions.pop(websocket, None)
        if poll_id is not None:
            subscribers = self._poll_connections.get(poll_id, set())
            subscribers.discard(websocket)
            if not subscribers:
                self._poll_connections.pop(poll_id, None)
        elif websocket in self._connections:
            self._connections.discard(websocket)
        else:
            return

        WS_CONNECTIONS_ACTIVE.dec()
        logger.info(
            "WebSocket disconnected",
            extra={"data": {"poll_id": poll_id, "active_connections": self.active_count}},
        )

    async def broadcast(self, message: str, poll_id: str | None = None) -> None:
        """Send a message to firehose clients and to subscribers of ``poll_id``.

        Catches send failures and removes dead connections. Increments
        WS_MESSAGES_SENT_TOTAL per event type.

        Args:
            message: JSON string to broadcast.
            poll_id: Market the message belongs to, if any.
        """
        event_type = "unknown"
        try:
            parsed = json.loads(message)
            event_type = parsed.get("type", "unknown")
        except (json.JSONDecodeError, AttributeError):
            pass

        targets = set(self._connections)
        if poll_id is not None:
            targets |= self._poll_connections.get(poll_id, set())

        dead: list[WebSocket] = []
        for ws in targets:
            try:
                await ws.send_text(message)
                WS_MESSAGES_SENT_TOTAL.labels(event_type=event_type).inc()
            except Exception:
                dead.append(ws)

        for ws in dead:
            self.disconnect(ws)

    def subscriber_count(self, poll_id: str) -> int:
        return len(self._poll_connections.get(poll_id, ()))

    @property
    def active_count(self) -> int:
        """Return the number of active connections of both kinds."""
        return len(self._connections) + len(self._subscriptions)


# Module-level singleton
manager = ConnectionManager()
