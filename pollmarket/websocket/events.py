"""WebSocket event model and Redis publish function.

Events are published to the Redis "pollmarket:events" pub/sub channel and
fanned out to WebSocket clients by the subscriber task in every API process.

Event types:
    market.odds_updated  a prediction write moved a poll's odds
    market.resolved      a poll was resolved; carries one outcome per prediction

Usage:
    from pollmarket.websocket.events import publish_event

    await publish_event("market.odds_updated", {"odds": [...]}, poll_id="poll-1")
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
from pydantic import BaseModel

from pollmarket.common.config import get_settings
from pollmarket.common.logging import get_logger

logger = get_logger("EVENTS")

# Redis channel name for WebSocket events
EVENTS_CHANNEL = "pollmarket:events"

ODDS_UPDATED = "market.odds_updated"
POLL_RESOLVED = "market.resolved"


class WebSocketEvent(BaseModel):
    """A real-time event pushed to connected WebSocket clients.

    Attributes:
        type: Event type identifier (e.g., "market.resolved").
        timestamp: UTC timestamp of when the event was created.
        poll_id: Market the event belongs to; routes it to per-poll subscribers.
        data: Event-specific payload dict.
    """

    type: str
    timestamp: datetime
    poll_id: str | None = None
    data: dict[str, Any]


async def publish_event(
    event_type: str,
    data: dict[str, Any],
    poll_id: str | None = None,
) -> None:
    """Publish a WebSocket event to the Redis pollmarket:events channel.

    Args:
        event_type: Event type string (e.g., "market.odds_updated").
        data: Event-specific payload dict. Must be JSON-serializable.
        poll_id: Market the event concerns, if any.
    """
    event = WebSocketEvent(
        type=event_type,
        timestamp=datetime.now(UTC),
        poll_id=poll_id,
        data=data,
    )

    settings = get_settings()
    r = aioredis.from_url(settings.redis_url)
    try:
        await r.publish(EVENTS_CHANNEL, event.model_dump_json())
    finally:
        await r.aclose()

    logger.debug(
        "Event published",
        extra={"data": {"event_type": event_type, "poll_id": poll_id}},
    )
