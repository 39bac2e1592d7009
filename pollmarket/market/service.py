"""Prediction market service: the engine's public operations in one place.

Wires the pure engine modules to a store, the odds cache, and the event
publisher, so the transport layer only ever talks to this class.

Side effects after a committed write are advisory: a failed broadcast is
logged at WARNING and never fails the operation that triggered it.

Usage:
    from pollmarket.market import PredictionMarketService, SqlPredictionStore

    service = PredictionMarketService(SqlPredictionStore(db))
    odds = await service.get_market_odds("poll-1")
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pollmarket.common.config import Settings, get_settings
from pollmarket.common.logging import get_logger
from pollmarket.common.schemas import (
    LeaderboardEntry,
    MarketAnalytics,
    MarketOdds,
    PollSummary,
    PredictionRecord,
    ResolutionSummary,
    UserPredictionStats,
)
from pollmarket.market import analytics, leaderboard, odds, predictions, resolution, stats
from pollmarket.market.cache import OddsCache, odds_cache
from pollmarket.market.store import PredictionStore
from pollmarket.websocket.events import ODDS_UPDATED, POLL_RESOLVED, publish_event

logger = get_logger("EVENTS")

Publisher = Callable[[str, dict[str, Any], str | None], Awaitable[None]]


class PredictionMarketService:
    """Facade over odds, analytics, resolution, leaderboard and submissions.

    Args:
        store: Storage backend.
        settings: Market tunables (defaults to the process settings).
        cache: Odds cache (defaults to the process-wide singleton).
        publish: Async event publisher (defaults to Redis pub/sub).
    """

    def __init__(
        self,
        store: PredictionStore,
        settings: Settings | None = None,
        cache: OddsCache | None = None,
        publish: Publisher | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else odds_cache
        self.publish = publish or publish_event

    async def get_market_odds(self, poll_id: str) -> list[MarketOdds]:
        cached = self.cache.get(poll_id)
        if cached is not None:
            return cached

        # Odds read before a concurrent invalidation must not be cached
        generation = self.cache.generation(poll_id)
        result = await odds.get_market_odds(self.store, poll_id)
        self.cache.set(poll_id, result, generation=generation)
        return result

    async def get_market_analytics(self, poll_id: str) -> MarketAnalytics:
        return await analytics.get_market_analytics(self.store, poll_id)

    async def get_leaderboard(
        self, timeframe: str = "all", limit: int | None = None
    ) -> list[LeaderboardEntry]:
        return await leaderboard.get_leaderboard(self.store, timeframe, limit)

    async def get_user_stats(self, user_id: str, timeframe: str = "all") -> UserPredictionStats:
        return await stats.get_user_stats(self.store, user_id, timeframe)

    async def get_poll_summary(self, poll_id: str) -> PollSummary:
        return await stats.get_poll_summary(self.store, poll_id)

    async def create_or_update_prediction(
        self,
        user_id: str,
        poll_id: str,
        option_id: str,
        confidence: float,
        points: int,
        reasoning: str | None = None,
    ) -> PredictionRecord:
        """Persist a prediction, then refresh and broadcast the poll's odds."""
        prediction = await predictions.create_or_update_prediction(
            self.store, user_id, poll_id, option_id, confidence, points, reasoning
        )

        self.cache.invalidate(poll_id)
        generation = self.cache.generation(poll_id)
        fresh = await odds.get_market_odds(self.store, poll_id)
        self.cache.set(poll_id, fresh, generation=generation)

        await self._emit(
            ODDS_UPDATED,
            {"odds": [o.model_dump(mode="json") for o in fresh]},
            poll_id,
        )
        return prediction

    async def resolve_poll(
        self, poll_id: str, winning_option_id: str, resolution_source: str
    ) -> ResolutionSummary:
        """Resolve a poll exactly once and notify every participant's outcome."""
        summary = await resolution.resolve_poll(
            self.store,
            poll_id,
            winning_option_id,
            resolution_source,
            house_edge=self.settings.house_edge,
        )
        self.cache.invalidate(poll_id)

        await self._emit(
            POLL_RESOLVED,
            {
                "winning_option_id": summary.winning_option_id,
                "resolution_source": summary.resolution_source,
                "total_pool": summary.total_pool,
                "total_paid": summary.total_paid,
                "retained_by_house": summary.retained_by_house,
                "outcomes": [
                    {
                        "user_id": s.user_id,
                        "prediction_id": s.prediction_id,
                        "payout": s.payout,
                        "won": s.is_winner,
                        "reputation_delta": s.reputation_delta,
                    }
                    for s in summary.settlements
                ],
            },
            poll_id,
        )
        return summary

    async def _emit(self, event_type: str, data: dict[str, Any], poll_id: str) -> None:
        try:
            await self.publish(event_type, data, poll_id)
        except Exception as exc:
            logger.warning(
                "Failed to publish market event",
                extra={
                    "data": {
                        "event_type": event_type,
                        "poll_id": poll_id,
                        "error": str(exc),
                    }
                },
            )
