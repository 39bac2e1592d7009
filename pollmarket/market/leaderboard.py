"""Leaderboard: users ranked by realized profit over a timeframe.

Scope is every prediction created inside the timeframe (daily = last 24h,
weekly = 7 days, monthly = 30 days, all = no cutoff). Profit figures only
count resolved predictions, since open stakes have no payout yet.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta

from pollmarket.common.config import get_settings
from pollmarket.common.exceptions import MarketValidationError
from pollmarket.common.logging import get_logger
from pollmarket.common.schemas import (
    TIMEFRAMES,
    LeaderboardEntry,
    PredictionRecord,
    UserRecord,
)
from pollmarket.market.store import PredictionStore

logger = get_logger("LEADERBOARD")

_TIMEFRAME_WINDOWS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}


def timeframe_start(timeframe: str, now: datetime) -> datetime | None:
    """Earliest created_at in scope for a timeframe, or None for "all".

    Raises:
        MarketValidationError: If the timeframe is not recognised.
    """
    if timeframe not in TIMEFRAMES:
        raise MarketValidationError(
            f"timeframe must be one of {', '.join(TIMEFRAMES)}",
            context={"timeframe": timeframe},
        )
    window = _TIMEFRAME_WINDOWS.get(timeframe)
    return now - window if window is not None else None


def calculate_roi(total_payout: int, total_stake: int) -> float:
    """Return on investment in percent, 0.0 when nothing was staked."""
    if total_stake == 0:
        return 0.0
    return round((total_payout - total_stake) / total_stake * 100, 2)


def rank_users(
    predictions: list[PredictionRecord],
    users: dict[str, UserRecord],
    limit: int,
) -> list[LeaderboardEntry]:
    """Aggregate predictions per user and rank by net profit. Pure function."""
    by_user: dict[str, list[PredictionRecord]] = defaultdict(list)
    for prediction in predictions:
        by_user[prediction.user_id].append(prediction)

    entries = []
    for user_id, user_predictions in by_user.items():
        resolved = [p for p in user_predictions if p.is_resolved]
        total_payout = sum(p.payout or 0 for p in resolved)
        total_stake = sum(p.points for p in resolved)
        wins = sum(1 for p in resolved if (p.payout or 0) > 0)
        win_rate = round(wins / len(resolved), 4) if resolved else 0.0

        user = users.get(user_id)
        entries.append(
            LeaderboardEntry(
                user_id=user_id,
                username=user.public_name if user is not None else "Anonymous",
                avatar=user.avatar if user is not None else None,
                reputation=user.reputation if user is not None else 0,
                total_predictions=len(user_predictions),
                total_payout=total_payout,
                total_stake=total_stake,
                net_profit=total_payout - total_stake,
                win_rate=win_rate,
                roi=calculate_roi(total_payout, total_stake),
            )
        )

    # Stable tie-break on user id keeps pagination deterministic
    entries.sort(key=lambda e: (-e.net_profit, e.user_id))
    return entries[:limit]


async def get_leaderboard(
    store: PredictionStore,
    timeframe: str = "all",
    limit: int | None = None,
    *,
    now: datetime | None = None,
) -> list[LeaderboardEntry]:
    """Rank users by net profit over a timeframe.

    Raises:
        MarketValidationError: Unknown timeframe or limit below 1.
    """
    settings = get_settings()
    limit = settings.leaderboard_default_limit if limit is None else limit
    if limit < 1:
        raise MarketValidationError("limit must be at least 1", context={"limit": limit})
    limit = min(limit, settings.leaderboard_max_limit)

    since = timeframe_start(timeframe, now or datetime.now(UTC))
    predictions = await store.find_predictions_created_since(since)
    users = await store.find_users({p.user_id for p in predictions})

    entries = rank_users(predictions, users, limit)
    logger.debug(
        "Leaderboard built",
        extra={
            "data": {
                "timeframe": timeframe,
                "predictions": len(predictions),
                "entries": len(entries),
            }
        },
    )
    return entries
