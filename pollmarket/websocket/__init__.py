"""WebSocket streaming of market events to connected clients.

Bridges engine events (odds moves, resolutions) to browsers via Redis
pub/sub and FastAPI WebSocket connections, so every API process fans out
events published by any other.

Architecture:
    PredictionMarketService -> publish_event() -> Redis "pollmarket:events"
    -> redis_subscriber() background task -> ConnectionManager.broadcast()
    -> clients on /ws (all markets) or /ws/polls/{poll_id} (one market)
"""
