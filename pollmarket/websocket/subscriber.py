"""Redis pub/sub subscriber that bridges market events to WebSocket clients.

Subscribes to the Redis "pollmarket:events" channel and forwards each
message to the ConnectionManager, routed by the event's poll_id. Handles
Redis disconnection with exponential backoff reconnection.

Started as an asyncio.Task during FastAPI app lifespan.

Usage:
    from pollmarket.websocket.subscriber import redis_subscriber
    from pollmarket.websocket.manager import manager

    task = asyncio.create_task(redis_subscriber(manager))
"""

from __future__ import annotations

import asyncio
import json

import redis.asyncio as aioredis

from pollmarket.common.config import get_settings
from pollmarket.common.logging import get_logger
from pollmarket.common.metrics import WS_EVENTS_RECEIVED_TOTAL
from pollmarket.websocket.events import EVENTS_CHANNEL
from pollmarket.websocket.manager import ConnectionManager

logger = get_logger("EVENTS")

MAX_BACKOFF_SECONDS = 30


async def forward_message(mgr: ConnectionManager, data: str | bytes) -> None:
    """Broadcast one pub/sub payload to the clients that should see it."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    poll_id = None
    try:
        parsed = json.loads(data)
        WS_EVENTS_RECEIVED_TOTAL.labels(event_type=parsed.get("type", "unknown")).inc()
        poll_id = parsed.get("poll_id")
    except (json.JSONDecodeError, AttributeError):
        pass

    await mgr.broadcast(data, poll_id=poll_id)


def backoff_seconds(attempt: int) -> int:
    """Delay before reconnect attempt ``attempt`` (0-based): 1, 2, 4, ... capped."""
    return min(2**attempt, MAX_BACKOFF_SECONDS)


async def _listen(mgr: ConnectionManager) -> None:
    """Hold one pub/sub connection open, forwarding until it drops."""
    client = aioredis.from_url(get_settings().redis_url)
    pubsub = client.pubsub()
    try:
        await pubsub.subscribe(EVENTS_CHANNEL)
        logger.info("Redis subscriber connected", extra={"data": {"channel": EVENTS_CHANNEL}})

        async for message in pubsub.listen():
            if message["type"] == "message":
                await forward_message(mgr, message["data"])
    finally:
        await pubsub.aclose()
        await client.aclose()


async def redis_subscriber(mgr: ConnectionManager) -> None:
    """Forward pollmarket:events to WebSocket clients until cancelled.

    Runs as a long-lived background task. A dropped or failed connection
    is retried after backoff_seconds(); the attempt counter resets when a
    connection ends without an error.

    Args:
        mgr: The ConnectionManager to broadcast messages through.
    """
    failures = 0
    while True:
        try:
            await _listen(mgr)
            failures = 0
        except asyncio.CancelledError:
            logger.info("Redis subscriber shutting down")
            return
        except Exception as exc:
            wait = backoff_seconds(failures)
            failures += 1
            logger.warning(
                "Redis subscriber error, reconnecting",
                extra={"data": {"error": str(exc), "attempt": failures, "wait_seconds": wait}},
            )
            await asyncio.sleep(wait)
