"""Prediction market endpoints.

Thin adapter over PredictionMarketService: request parsing, caller
authorization, and response shaping. All market rules live in the engine,
whose PollMarketError subclasses are mapped to HTTP statuses in main.py.

Mounted at /api/predictions.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from pollmarket.api.deps import get_current_user, get_market_service
from pollmarket.api.response_schemas import (
    LeaderboardResponse,
    MarketAnalyticsResponse,
    MarketOddsResponse,
    PredictionCreate,
    PredictionResponse,
    ResolveRequest,
)
from pollmarket.common.exceptions import NotFoundError
from pollmarket.common.logging import get_logger
from pollmarket.common.schemas import (
    PollSummary,
    ResolutionSummary,
    UserPredictionStats,
    UserRecord,
)
from pollmarket.market.service import PredictionMarketService

logger = get_logger("API")

router = APIRouter()


@router.post("", response_model=PredictionResponse, status_code=201)
async def submit_prediction(
    body: PredictionCreate,
    user: UserRecord = Depends(get_current_user),
    service: PredictionMarketService = Depends(get_market_service),
) -> PredictionResponse:
    """Create the caller's prediction on a poll, or replace their existing one."""
    prediction = await service.create_or_update_prediction(
        user_id=user.id,
        poll_id=body.poll_id,
        option_id=body.option_id,
        confidence=body.confidence,
        points=body.points,
        reasoning=body.reasoning,
    )
    odds = await service.get_market_odds(body.poll_id)
    return PredictionResponse(prediction=prediction, odds=odds)


@router.get("/polls/{poll_id}/odds", response_model=MarketOddsResponse)
async def market_odds(
    poll_id: str,
    service: PredictionMarketService = Depends(get_market_service),
) -> MarketOddsResponse:
    """Live odds for every option of a poll, highest probability first."""
    return MarketOddsResponse(poll_id=poll_id, odds=await service.get_market_odds(poll_id))


@router.get("/polls/{poll_id}/analytics", response_model=MarketAnalyticsResponse)
async def market_analytics(
    poll_id: str,
    service: PredictionMarketService = Depends(get_market_service),
) -> MarketAnalyticsResponse:
    analytics = await service.get_market_analytics(poll_id)
    return MarketAnalyticsResponse(poll_id=poll_id, analytics=analytics)


@router.get("/polls/{poll_id}/summary", response_model=PollSummary)
async def poll_summary(
    poll_id: str,
    service: PredictionMarketService = Depends(get_market_service),
) -> PollSummary:
    return await service.get_poll_summary(poll_id)


@router.post("/polls/{poll_id}/resolve", response_model=ResolutionSummary)
async def resolve_poll(
    poll_id: str,
    body: ResolveRequest,
    user: UserRecord = Depends(get_current_user),
    service: PredictionMarketService = Depends(get_market_service),
) -> ResolutionSummary:
    """Resolve a poll and settle its predictions.

    Only the poll's creator or a moderator may resolve it.
    """
    poll = await service.store.find_poll(poll_id)
    if poll is None:
        raise NotFoundError("Poll not found", context={"poll_id": poll_id})
    if poll.creator_id != user.id and not user.is_moderator:
        logger.warning(
            "Resolution refused",
            extra={"data": {"poll_id": poll_id, "user_id": user.id}},
        )
        raise HTTPException(status_code=403, detail="Only the poll creator can resolve it")

    return await service.resolve_poll(poll_id, body.winning_option_id, body.resolution_source)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    timeframe: str = Query(default="all"),
    limit: int | None = Query(default=None),
    service: PredictionMarketService = Depends(get_market_service),
) -> LeaderboardResponse:
    entries = await service.get_leaderboard(timeframe, limit)
    return LeaderboardResponse(timeframe=timeframe, entries=entries)


@router.get("/users/{user_id}/stats", response_model=UserPredictionStats)
async def user_stats(
    user_id: str,
    timeframe: str = Query(default="all"),
    user: UserRecord = Depends(get_current_user),
    service: PredictionMarketService = Depends(get_market_service),
) -> UserPredictionStats:
    """A user's prediction record. Visible to that user and to moderators."""
    if user.id != user_id and not user.is_moderator:
        raise HTTPException(status_code=403, detail="Cannot view another user's stats")
    return await service.get_user_stats(user_id, timeframe)
