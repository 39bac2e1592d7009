"""FastAPI dependencies for the prediction market API.

Authentication is owned by an upstream gateway, which forwards the caller's
user id in the ``X-User-Id`` header. These dependencies resolve that caller
and build the store and service for the request.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from pollmarket.common.database import get_db
from pollmarket.common.logging import get_logger
from pollmarket.common.schemas import UserRecord
from pollmarket.market.service import PredictionMarketService
from pollmarket.market.store import PredictionStore, SqlPredictionStore

logger = get_logger("API")


def get_store(db: AsyncSession = Depends(get_db)) -> PredictionStore:
    """Provide a SQL-backed PredictionStore bound to the request's session."""
    return SqlPredictionStore(db)


def get_market_service(
    store: PredictionStore = Depends(get_store),
) -> PredictionMarketService:
    """Provide the market service for the request."""
    return PredictionMarketService(store)


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    store: PredictionStore = Depends(get_store),
) -> UserRecord:
    """Resolve the calling user from the gateway-supplied ``X-User-Id`` header.

    Raises:
        HTTPException: 401 if the header is missing or names no known user.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await store.find_user(x_user_id)
    if user is None:
        logger.warning("Unknown caller", extra={"data": {"user_id": x_user_id}})
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
