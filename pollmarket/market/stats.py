"""Per-user prediction records and per-poll prediction breakdowns."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime

from pollmarket.common.exceptions import NotFoundError
from pollmarket.common.schemas import (
    OptionSummary,
    PollRecord,
    PollSummary,
    PredictionRecord,
    TopPredictor,
    UserPredictionStats,
    UserRecord,
)
from pollmarket.market.leaderboard import calculate_roi, timeframe_start
from pollmarket.market.store import PredictionStore

TOP_PREDICTORS_PER_OPTION = 5


def summarize_user(
    user_id: str,
    timeframe: str,
    predictions: list[PredictionRecord],
) -> UserPredictionStats:
    """Roll a user's predictions up into a stats record. Pure function."""
    resolved = [p for p in predictions if p.is_resolved]
    total_stake = sum(p.points for p in predictions)
    total_payout = sum(p.payout or 0 for p in resolved)
    wins = [p for p in resolved if (p.payout or 0) > 0]

    win_rate = round(len(wins) / len(resolved) * 100, 2) if resolved else 0.0
    average_confidence = (
        round(sum(p.confidence for p in predictions) / len(predictions), 2)
        if predictions
        else 0.0
    )

    return UserPredictionStats(
        user_id=user_id,
        timeframe=timeframe,
        total_predictions=len(predictions),
        resolved_predictions=len(resolved),
        active_predictions=len(predictions) - len(resolved),
        total_stake=total_stake,
        total_payout=total_payout,
        net_profit=total_payout - total_stake,
        win_rate=win_rate,
        roi=calculate_roi(total_payout, total_stake),
        average_confidence=average_confidence,
        best_win=max((p.payout or 0 for p in wins), default=0),
    )


def summarize_poll(
    poll: PollRecord,
    predictions: list[PredictionRecord],
    users: dict[str, UserRecord],
) -> PollSummary:
    """Group a poll's predictions by option. Pure function."""
    by_option: dict[str, list[PredictionRecord]] = defaultdict(list)
    for prediction in predictions:
        by_option[prediction.option_id].append(prediction)

    options = []
    for option in poll.options:
        option_predictions = by_option.get(option.id, [])
        top = sorted(option_predictions, key=lambda p: (-p.points, p.created_at))
        options.append(
            OptionSummary(
                option_id=option.id,
                option=option.label,
                total_predictions=len(option_predictions),
                total_points=sum(p.points for p in option_predictions),
                average_confidence=(
                    round(
                        sum(p.confidence for p in option_predictions)
                        / len(option_predictions),
                        4,
                    )
                    if option_predictions
                    else 0.0
                ),
                unique_predictors=len({p.user_id for p in option_predictions}),
                top_predictors=[
                    TopPredictor(
                        user_id=p.user_id,
                        username=(
                            users[p.user_id].public_name if p.user_id in users else "Anonymous"
                        ),
                        points=p.points,
                        confidence=p.confidence,
                        reasoning=p.reasoning,
                    )
                    for p in top[:TOP_PREDICTORS_PER_OPTION]
                ],
            )
        )

    return PollSummary(
        poll_id=poll.id,
        total_predictions=len(predictions),
        total_volume=sum(p.points for p in predictions),
        unique_predictors=len({p.user_id for p in predictions}),
        options=options,
    )


async def get_user_stats(
    store: PredictionStore,
    user_id: str,
    timeframe: str = "all",
    *,
    now: datetime | None = None,
) -> UserPredictionStats:
    """Prediction record for one user over a timeframe.

    Raises:
        NotFoundError: Unknown user.
        MarketValidationError: Unknown timeframe.
    """
    since = timeframe_start(timeframe, now or datetime.now(UTC))
    if await store.find_user(user_id) is None:
        raise NotFoundError("User not found", context={"user_id": user_id})

    predictions = await store.find_user_predictions(user_id, since)
    return summarize_user(user_id, timeframe, predictions)


async def get_poll_summary(store: PredictionStore, poll_id: str) -> PollSummary:
    """Every prediction on a poll, resolved or not, grouped by option.

    Raises:
        NotFoundError: Unknown poll.
    """
    poll = await store.find_poll(poll_id)
    if poll is None:
        raise NotFoundError("Poll not found", context={"poll_id": poll_id})

    predictions = await store.find_poll_predictions(poll_id)
    users = await store.find_users({p.user_id for p in predictions})
    return summarize_poll(poll, predictions, users)
