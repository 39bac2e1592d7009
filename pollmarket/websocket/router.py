"""FastAPI WebSocket endpoints for real-time market events.

    /ws                  every market event
    /ws/polls/{poll_id}  events for a single poll

Delivery happens through the Redis subscriber background task, which
calls manager.broadcast() when events are published to pollmarket:events.

Usage:
    # In pollmarket/main.py:
    from pollmarket.websocket.router import router as ws_router
    app.include_router(ws_router)
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pollmarket.websocket.manager import manager

router = APIRouter()


async def _hold_open(websocket: WebSocket, poll_id: str | None) -> None:
    await manager.connect(websocket, poll_id=poll_id)
    try:
        while True:
            # Client messages are keepalive pings; events are pushed by broadcast()
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Stream every market event to the client."""
    await _hold_open(websocket, None)


@router.websocket("/ws/polls/{poll_id}")
async def poll_websocket_endpoint(websocket: WebSocket, poll_id: str) -> None:
    """Stream events for one poll (odds moves and its resolution)."""
    await _hold_open(websocket, poll_id)
