"""Market health analytics for a single poll.

Metrics, all computed over the poll's open predictions (or the settled set
once the poll is resolved):

    total_volume           sum of staked points
    unique_predictors      distinct users with a prediction
    average_confidence     plain mean of confidence
    consensus_probability  confidence weighted by points * (1 + reputation/1000)
    market_efficiency      max(0, 1 - 4 * variance(confidence)), clamped to [0, 1]
    volatility             mean absolute change between consecutive snapshots
    liquidity_index        (min(volume/10000, 1) + min(predictors/100, 1)) / 2

A market with no predictions yields all-zero metrics, never an error.
"""

from __future__ import annotations

from pollmarket.common.config import get_settings
from pollmarket.common.exceptions import NotFoundError
from pollmarket.common.logging import get_logger
from pollmarket.common.schemas import (
    MarketAnalytics,
    PredictionRecord,
    SnapshotRecord,
    UserRecord,
)
from pollmarket.market.store import PredictionStore

logger = get_logger("ANALYTICS")

LIQUIDITY_VOLUME_CAP = 10_000
LIQUIDITY_PREDICTOR_CAP = 100
REPUTATION_SCALE = 1000


def calculate_consensus(
    predictions: list[PredictionRecord],
    users: dict[str, UserRecord],
) -> float:
    """Reputation- and stake-weighted mean confidence ("smart money")."""
    total_weight = 0.0
    weighted_sum = 0.0
    for prediction in predictions:
        user = users.get(prediction.user_id)
        reputation = user.reputation if user is not None else 0
        weight = prediction.points * (1 + reputation / REPUTATION_SCALE)
        total_weight += weight
        weighted_sum += prediction.confidence * weight

    if total_weight <= 0:
        return 0.0
    return weighted_sum / total_weight


def calculate_efficiency(confidences: list[float]) -> float:
    """Agreement score: 1 when everyone agrees, falling with dispersion."""
    if not confidences:
        return 0.0
    if len(confidences) == 1:
        return 1.0

    mean = sum(confidences) / len(confidences)
    variance = sum((c - mean) ** 2 for c in confidences) / len(confidences)
    return min(1.0, max(0.0, 1 - variance * 4))


def calculate_volatility(snapshots: list[SnapshotRecord]) -> float:
    """Mean absolute percentage-point move between consecutive snapshots.

    Args:
        snapshots: Snapshots in chronological order.
    """
    if len(snapshots) < 2:
        return 0.0

    changes = [
        abs(current.percentage - previous.percentage)
        for previous, current in zip(snapshots, snapshots[1:])
    ]
    return sum(changes) / len(changes)


def calculate_liquidity_index(total_volume: int, predictor_count: int) -> float:
    volume_score = min(total_volume / LIQUIDITY_VOLUME_CAP, 1.0)
    predictor_score = min(predictor_count / LIQUIDITY_PREDICTOR_CAP, 1.0)
    return (volume_score + predictor_score) / 2


def calculate_analytics(
    predictions: list[PredictionRecord],
    users: dict[str, UserRecord],
    snapshots: list[SnapshotRecord],
) -> MarketAnalytics:
    """Derive all market metrics from already-loaded data. Pure function."""
    if not predictions:
        return MarketAnalytics(volatility=calculate_volatility(snapshots))

    total_volume = sum(p.points for p in predictions)
    unique_predictors = len({p.user_id for p in predictions})
    confidences = [p.confidence for p in predictions]

    return MarketAnalytics(
        total_volume=total_volume,
        unique_predictors=unique_predictors,
        average_confidence=sum(confidences) / len(confidences),
        consensus_probability=calculate_consensus(predictions, users),
        market_efficiency=calculate_efficiency(confidences),
        volatility=calculate_volatility(snapshots),
        liquidity_index=calculate_liquidity_index(total_volume, unique_predictors),
    )


async def get_market_analytics(store: PredictionStore, poll_id: str) -> MarketAnalytics:
    """Load a poll's predictions, their users and snapshots, and score the market.

    Raises:
        NotFoundError: If the poll does not exist.
    """
    poll = await store.find_poll(poll_id)
    if poll is None:
        raise NotFoundError("Poll not found", context={"poll_id": poll_id})

    if poll.resolved_at is not None:
        predictions = await store.find_poll_predictions(poll_id)
    else:
        predictions = await store.find_unresolved_predictions(poll_id)

    users = await store.find_users({p.user_id for p in predictions})
    snapshots = await store.find_historical_snapshots(
        poll_id, get_settings().volatility_snapshot_limit
    )

    analytics = calculate_analytics(predictions, users, snapshots)
    logger.debug(
        "Market analytics computed",
        extra={"data": {"poll_id": poll_id, **analytics.model_dump()}},
    )
    return analytics
