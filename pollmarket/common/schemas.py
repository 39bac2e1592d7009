"""Pydantic schemas — the interface contracts between all modules.

Two families live here:
- Store records (PollRecord, PredictionRecord, ...) returned by the
  PredictionStore. The engine only ever sees these, never ORM objects.
- Engine results (MarketOdds, MarketAnalytics, ResolutionSummary, ...)
  returned to the transport layer for serialization.

RULES:
- Points and payouts are integers everywhere.
- If you need a new shared type, add it HERE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Timeframe = Literal["daily", "weekly", "monthly", "all"]
Trend = Literal["up", "down", "stable"]

TIMEFRAMES: tuple[str, ...] = ("daily", "weekly", "monthly", "all")


# ─── Store Records ───


class OptionRecord(BaseModel):
    """An option of a poll as seen by the engine."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    poll_id: str
    text: str = ""
    order_index: int = 0

    @property
    def label(self) -> str:
        """Display label, falling back to the option's position."""
        return self.text or f"Option {self.order_index + 1}"


class PollRecord(BaseModel):
    """A poll with its options."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    creator_id: str | None = None
    title: str = ""
    is_active: bool = True
    expires_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution_result: str | None = None
    resolution_source: str | None = None
    options: list[OptionRecord] = []

    @property
    def option_ids(self) -> set[str]:
        return {option.id for option in self.options}


class PredictionRecord(BaseModel):
    """A stored prediction."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    poll_id: str
    option_id: str
    confidence: float
    points: int
    reasoning: str | None = None
    payout: int | None = None
    is_resolved: bool = False
    created_at: datetime
    resolved_at: datetime | None = None


class UserRecord(BaseModel):
    """The slice of a user record the engine reads."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str | None = None
    display_name: str | None = None
    avatar: str | None = None
    reputation: int = 0
    is_moderator: bool = False

    @property
    def public_name(self) -> str:
        return self.username or self.display_name or "Anonymous"


class SnapshotRecord(BaseModel):
    """One historical probability snapshot for a poll."""

    model_config = ConfigDict(from_attributes=True)

    poll_id: str
    option_id: str | None = None
    snapshot_date: datetime
    percentage: float


class PredictionUpsert(BaseModel):
    """Values written by the insert-or-replace keyed on (user_id, poll_id)."""

    user_id: str
    poll_id: str
    option_id: str
    confidence: float
    points: int
    reasoning: str | None = None
    created_at: datetime


class PredictionSettlement(BaseModel):
    """The resolution outcome for a single prediction."""

    prediction_id: str
    user_id: str
    option_id: str
    points: int
    confidence: float
    payout: int = Field(ge=0)
    is_winner: bool
    reputation_delta: int


# ─── Engine Results ───


class MarketOdds(BaseModel):
    """Live odds for one option of a poll."""

    option_id: str
    option: str
    probability: float = Field(ge=0.0, le=1.0)
    implied_odds: str
    volume: int
    trend: Trend
    confidence: float


class MarketAnalytics(BaseModel):
    """Aggregate health metrics for a poll's market."""

    total_volume: int = 0
    unique_predictors: int = 0
    average_confidence: float = 0.0
    consensus_probability: float = 0.0
    market_efficiency: float = 0.0
    volatility: float = 0.0
    liquidity_index: float = 0.0


class ResolutionSummary(BaseModel):
    """What a successful resolution did."""

    poll_id: str
    winning_option_id: str
    resolution_source: str
    resolved_at: datetime
    total_pool: int
    winning_pool: int
    total_paid: int
    winners: int
    losers: int
    retained_by_house: bool
    settlements: list[PredictionSettlement]


class LeaderboardEntry(BaseModel):
    """One ranked row of the leaderboard."""

    user_id: str
    username: str
    avatar: str | None = None
    reputation: int
    total_predictions: int
    total_payout: int
    total_stake: int
    net_profit: int
    win_rate: float
    roi: float


class UserPredictionStats(BaseModel):
    """A user's prediction record over a timeframe."""

    user_id: str
    timeframe: Timeframe
    total_predictions: int
    resolved_predictions: int
    active_predictions: int
    total_stake: int
    total_payout: int
    net_profit: int
    win_rate: float
    roi: float
    average_confidence: float
    best_win: int


class TopPredictor(BaseModel):
    """A large stake on an option, for the poll summary."""

    user_id: str
    username: str
    points: int
    confidence: float
    reasoning: str | None = None


class OptionSummary(BaseModel):
    """Per-option breakdown of a poll's predictions."""

    option_id: str
    option: str
    total_predictions: int
    total_points: int
    average_confidence: float
    unique_predictors: int
    top_predictors: list[TopPredictor]


class PollSummary(BaseModel):
    """All predictions on a poll, grouped by option."""

    poll_id: str
    total_predictions: int
    total_volume: int
    unique_predictors: int
    options: list[OptionSummary]
