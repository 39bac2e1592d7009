"""Market odds: per-option probabilities from pooled user forecasts.

Each option's raw score blends its share of the staked volume with the
stake-weighted confidence of the predictions on it:

    raw = volume_share * VOLUME_WEIGHT + weighted_confidence * CONFIDENCE_WEIGHT

Raw scores are then scaled so that the probabilities over all options sum
to (1 - HOUSE_EDGE). A poll nobody has predicted on prices every option at
0 with implied odds of "∞:1".

Stakes are integer points; probabilities are floats and purely advisory.

Usage:
    from pollmarket.market.odds import get_market_odds

    odds = await get_market_odds(store, "poll-1")
    favourite = odds[0]
"""

from __future__ import annotations

import time
from collections import defaultdict
from datetime import UTC, datetime, timedelta

from pollmarket.common.config import get_settings
from pollmarket.common.exceptions import NotFoundError
from pollmarket.common.logging import get_logger
from pollmarket.common.metrics import ODDS_COMPUTE_DURATION_SECONDS
from pollmarket.common.schemas import MarketOdds, PollRecord, PredictionRecord, Trend
from pollmarket.market.store import PredictionStore

logger = get_logger("ODDS")

INFINITE_ODDS = "∞:1"
CERTAIN_ODDS = "1:∞"
# Probabilities this close to 0 or 1 are float noise from normalisation
_PROBABILITY_TOLERANCE = 1e-9


def format_implied_odds(probability: float) -> str:
    """Render a probability as a fractional-odds display string.

    Examples:
        0.25 -> "3.0:1"   (odds against)
        0.8  -> "1:4.0"   (odds on)
        0.0  -> "∞:1"
        1.0  -> "1:∞"
    """
    if probability <= _PROBABILITY_TOLERANCE:
        return INFINITE_ODDS
    if probability >= 1 - _PROBABILITY_TOLERANCE:
        return CERTAIN_ODDS

    odds = (1 / probability) - 1
    if odds >= 1:
        return f"{odds:.1f}:1"
    return f"1:{1 / odds:.1f}"


def weighted_confidence(predictions: list[PredictionRecord]) -> float:
    """Stake-weighted mean confidence (0.0 when nothing is staked)."""
    total_points = sum(p.points for p in predictions)
    if total_points == 0:
        return 0.0
    return sum(p.confidence * p.points for p in predictions) / total_points


def calculate_trend(confidences: list[float], threshold: float = 0.05) -> Trend:
    """Compare mean confidence of the older half against the newer half.

    Args:
        confidences: Confidence values in chronological order.
        threshold: Minimum shift in mean confidence that counts as movement.

    Returns:
        "up", "down", or "stable". Fewer than two samples is always "stable".
    """
    if len(confidences) < 2:
        return "stable"

    midpoint = len(confidences) // 2
    first_half = confidences[:midpoint]
    second_half = confidences[midpoint:]
    first_avg = sum(first_half) / len(first_half)
    second_avg = sum(second_half) / len(second_half)

    if second_avg > first_avg + threshold:
        return "up"
    if second_avg < first_avg - threshold:
        return "down"
    return "stable"


def calculate_odds(
    poll: PollRecord,
    predictions: list[PredictionRecord],
    recent: list[PredictionRecord] | None = None,
    *,
    house_edge: float | None = None,
    volume_weight: float | None = None,
    confidence_weight: float | None = None,
    trend_threshold: float | None = None,
) -> list[MarketOdds]:
    """Price every option of a poll from its predictions.

    Pure function: no I/O. Parameters left as None fall back to Settings.

    Args:
        poll: The poll and its options.
        predictions: The predictions that make up the market.
        recent: Predictions inside the trend window, oldest first.
        house_edge: Fraction of probability mass withheld by the house.
        volume_weight: Weight of an option's share of staked volume.
        confidence_weight: Weight of an option's stake-weighted confidence.
        trend_threshold: Mean-confidence shift that counts as a trend.

    Returns:
        One MarketOdds per option, sorted by probability (highest first).
    """
    settings = get_settings()
    house_edge = settings.house_edge if house_edge is None else house_edge
    volume_weight = settings.volume_weight if volume_weight is None else volume_weight
    confidence_weight = (
        settings.confidence_weight if confidence_weight is None else confidence_weight
    )
    trend_threshold = settings.trend_threshold if trend_threshold is None else trend_threshold

    by_option: dict[str, list[PredictionRecord]] = defaultdict(list)
    for prediction in predictions:
        by_option[prediction.option_id].append(prediction)

    recent_by_option: dict[str, list[float]] = defaultdict(list)
    for prediction in sorted(recent or [], key=lambda p: p.created_at):
        recent_by_option[prediction.option_id].append(prediction.confidence)

    total_volume = sum(p.points for p in predictions)

    raw: dict[str, float] = {}
    for option in poll.options:
        option_predictions = by_option.get(option.id, [])
        volume = sum(p.points for p in option_predictions)
        if not option_predictions or total_volume == 0:
            raw[option.id] = 0.0
            continue
        volume_share = volume / total_volume
        raw[option.id] = (
            volume_share * volume_weight
            + weighted_confidence(option_predictions) * confidence_weight
        )

    raw_total = sum(raw.values())
    scale = (1 - house_edge) / raw_total if raw_total > 0 else 0.0

    results = []
    for option in poll.options:
        option_predictions = by_option.get(option.id, [])
        probability = min(raw[option.id] * scale, 1.0)
        results.append(
            MarketOdds(
                option_id=option.id,
                option=option.label,
                probability=probability,
                implied_odds=format_implied_odds(probability),
                volume=sum(p.points for p in option_predictions),
                trend=calculate_trend(recent_by_option.get(option.id, []), trend_threshold),
                confidence=weighted_confidence(option_predictions),
            )
        )
        logger.debug(
            "Option priced",
            extra={
                "data": {
                    "poll_id": poll.id,
                    "option_id": option.id,
                    "raw": round(raw[option.id], 6),
                    "probability": round(probability, 6),
                }
            },
        )

    results.sort(key=lambda o: o.probability, reverse=True)
    return results


async def get_market_odds(
    store: PredictionStore,
    poll_id: str,
    *,
    now: datetime | None = None,
) -> list[MarketOdds]:
    """Compute live odds for a poll.

    Active polls are priced from their unresolved predictions. A resolved
    poll's odds are frozen: they are priced from the predictions that were
    settled at resolution.

    Raises:
        NotFoundError: If the poll does not exist.
    """
    started = time.perf_counter()
    settings = get_settings()
    now = now or datetime.now(UTC)

    poll = await store.find_poll(poll_id)
    if poll is None:
        raise NotFoundError("Poll not found", context={"poll_id": poll_id})

    if poll.resolved_at is not None:
        predictions = await store.find_poll_predictions(poll_id)
        window_end = poll.resolved_at
    else:
        predictions = await store.find_unresolved_predictions(poll_id)
        window_end = now

    since = window_end - timedelta(hours=settings.trend_window_hours)
    recent = [
        p
        for p in await store.find_predictions_since(poll_id, since)
        if p.created_at <= window_end
    ]

    odds = calculate_odds(poll, predictions, recent)
    ODDS_COMPUTE_DURATION_SECONDS.observe(time.perf_counter() - started)

    logger.debug(
        "Market odds computed",
        extra={
            "data": {
                "poll_id": poll_id,
                "options": len(odds),
                "predictions": len(predictions),
                "frozen": poll.resolved_at is not None,
            }
        },
    )
    return odds
