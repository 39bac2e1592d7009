"""API request and response schemas -- types used only by the REST layer."""

from __future__ import annotations

from pydantic import BaseModel

from pollmarket.common.schemas import (
    LeaderboardEntry,
    MarketAnalytics,
    MarketOdds,
    PredictionRecord,
    Timeframe,
)


class PredictionCreate(BaseModel):
    """Request body for submitting or replacing a prediction.

    Range checks (confidence, points) are enforced by the engine so that
    every rejection carries the same error shape.
    """

    poll_id: str
    option_id: str
    confidence: float
    points: int
    reasoning: str | None = None


class PredictionResponse(BaseModel):
    """The stored prediction plus the poll's odds after the write."""

    prediction: PredictionRecord
    odds: list[MarketOdds]


class ResolveRequest(BaseModel):
    """Request body for resolving a poll."""

    winning_option_id: str
    resolution_source: str


class MarketOddsResponse(BaseModel):
    poll_id: str
    odds: list[MarketOdds]


class MarketAnalyticsResponse(BaseModel):
    poll_id: str
    analytics: MarketAnalytics


class LeaderboardResponse(BaseModel):
    timeframe: Timeframe
    entries: list[LeaderboardEntry]
