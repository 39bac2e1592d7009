"""Poll resolution: the one-shot Active -> Resolved transition and its payouts.

Settlement is pari-mutuel with a house edge. For a winning prediction:

    base_payout  = points / winning_pool * total_pool * (1 - HOUSE_EDGE)
    final_payout = floor(base_payout * (1 + confidence * 0.1))

Losing predictions are settled with payout 0. When nobody picked the
winning option the house keeps the whole pool: every prediction is still
settled (payout 0) so predictions and poll stay in lock-step, but no
reputation moves.

Reputation deltas:
    winner: +floor(payout * 0.1 * (1 + confidence))
    loser:  -floor(points * 0.01)

CRITICAL: Points and payouts are integers. All payout arithmetic runs in
Decimal and is floored once, at the end, per prediction.

Exactly-once is enforced by the store's compare-and-swap on resolved_at,
issued inside the same atomic() block as the settlement writes, so a crash
or a losing race leaves no partial resolution behind.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import ROUND_FLOOR, Decimal

from pollmarket.common.config import get_settings
from pollmarket.common.exceptions import (
    AlreadyResolvedError,
    MarketValidationError,
    NotFoundError,
)
from pollmarket.common.logging import get_logger
from pollmarket.common.metrics import PAYOUT_POINTS_TOTAL, POLLS_RESOLVED_TOTAL
from pollmarket.common.schemas import (
    PredictionRecord,
    PredictionSettlement,
    ResolutionSummary,
)
from pollmarket.market.store import PredictionStore

logger = get_logger("RESOLVE")

CONFIDENCE_BONUS_RATE = Decimal("0.1")
WINNER_REPUTATION_RATE = Decimal("0.1")
LOSER_REPUTATION_RATE = Decimal("0.01")


def _dec(value: float | int) -> Decimal:
    """Convert through str so 0.95 stays 0.95 instead of its binary expansion."""
    return Decimal(str(value))


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def calculate_payout(
    points: int,
    confidence: float,
    total_pool: int,
    winning_pool: int,
    house_edge: float,
) -> int:
    """Payout in points for one winning prediction.

    Raises:
        ValueError: If winning_pool is not positive.
    """
    if winning_pool <= 0:
        msg = f"winning_pool must be positive, got {winning_pool}"
        raise ValueError(msg)

    base = _dec(points) * _dec(total_pool) * (1 - _dec(house_edge)) / _dec(winning_pool)
    bonus = 1 + _dec(confidence) * CONFIDENCE_BONUS_RATE
    return _floor(base * bonus)


def winner_reputation_delta(payout: int, confidence: float) -> int:
    return _floor(_dec(payout) * WINNER_REPUTATION_RATE * (1 + _dec(confidence)))


def loser_reputation_delta(points: int) -> int:
    return -_floor(_dec(points) * LOSER_REPUTATION_RATE)


def calculate_settlements(
    predictions: list[PredictionRecord],
    winning_option_id: str,
    house_edge: float,
) -> tuple[list[PredictionSettlement], int, int]:
    """Settle every prediction of a poll against the winning option.

    Pure function: no I/O.

    Returns:
        (settlements, total_pool, winning_pool). Settlements cover every
        input prediction, winners and losers alike.
    """
    total_pool = sum(p.points for p in predictions)
    winning_pool = sum(p.points for p in predictions if p.option_id == winning_option_id)
    house_keeps_pool = winning_pool == 0

    settlements = []
    for prediction in predictions:
        is_winner = prediction.option_id == winning_option_id
        if house_keeps_pool:
            payout, delta = 0, 0
        elif is_winner:
            payout = calculate_payout(
                prediction.points,
                prediction.confidence,
                total_pool,
                winning_pool,
                house_edge,
            )
            delta = winner_reputation_delta(payout, prediction.confidence)
        else:
            payout, delta = 0, loser_reputation_delta(prediction.points)

        settlements.append(
            PredictionSettlement(
                prediction_id=prediction.id,
                user_id=prediction.user_id,
                option_id=prediction.option_id,
                points=prediction.points,
                confidence=prediction.confidence,
                payout=payout,
                is_winner=is_winner and not house_keeps_pool,
                reputation_delta=delta,
            )
        )

    return settlements, total_pool, winning_pool


async def resolve_poll(
    store: PredictionStore,
    poll_id: str,
    winning_option_id: str,
    resolution_source: str,
    *,
    house_edge: float | None = None,
    now: datetime | None = None,
) -> ResolutionSummary:
    """Close a poll, pay out its predictions, and adjust reputations.

    Args:
        store: Prediction store.
        poll_id: Poll to resolve.
        winning_option_id: The option that turned out correct.
        resolution_source: Where the outcome came from (free text, required).
        house_edge: Override for Settings.house_edge.
        now: Resolution timestamp (defaults to the current UTC time).

    Returns:
        ResolutionSummary describing every settlement that was written.

    Raises:
        NotFoundError: Poll or winning option does not exist.
        MarketValidationError: resolution_source is blank.
        AlreadyResolvedError: The poll was resolved before, or a concurrent
            resolution won the race. Nothing is written in that case.
    """
    house_edge = get_settings().house_edge if house_edge is None else house_edge
    resolved_at = now or datetime.now(UTC)

    if not resolution_source or not resolution_source.strip():
        raise MarketValidationError(
            "resolution_source is required", context={"poll_id": poll_id}
        )

    poll = await store.find_poll(poll_id)
    if poll is None:
        raise NotFoundError("Poll not found", context={"poll_id": poll_id})
    if poll.resolved_at is not None:
        POLLS_RESOLVED_TOTAL.labels(outcome="conflict").inc()
        raise AlreadyResolvedError(
            "Poll already resolved",
            context={"poll_id": poll_id, "resolved_at": poll.resolved_at.isoformat()},
        )
    if winning_option_id not in poll.option_ids:
        raise NotFoundError(
            "Winning option does not belong to this poll",
            context={"poll_id": poll_id, "option_id": winning_option_id},
        )

    async with store.atomic():
        claimed = await store.mark_poll_resolved(
            poll_id, winning_option_id, resolution_source.strip(), resolved_at
        )
        if not claimed:
            POLLS_RESOLVED_TOTAL.labels(outcome="conflict").inc()
            raise AlreadyResolvedError(
                "Poll already resolved", context={"poll_id": poll_id}
            )

        predictions = await store.find_unresolved_predictions(poll_id)
        settlements, total_pool, winning_pool = calculate_settlements(
            predictions, winning_option_id, house_edge
        )
        await store.batch_update_predictions(settlements, resolved_at)

        for settlement in settlements:
            if settlement.reputation_delta != 0:
                await store.adjust_user_reputation(
                    settlement.user_id, settlement.reputation_delta
                )

    total_paid = sum(s.payout for s in settlements)
    winners = sum(1 for s in settlements if s.is_winner)
    retained_by_house = winning_pool == 0 and total_pool > 0

    if not settlements:
        POLLS_RESOLVED_TOTAL.labels(outcome="empty").inc()
    elif retained_by_house:
        POLLS_RESOLVED_TOTAL.labels(outcome="house_kept").inc()
        logger.info(
            "No winning predictions, pool retained by house",
            extra={"data": {"poll_id": poll_id, "total_pool": total_pool}},
        )
    else:
        POLLS_RESOLVED_TOTAL.labels(outcome="paid").inc()
    PAYOUT_POINTS_TOTAL.inc(total_paid)

    logger.info(
        "Poll resolved",
        extra={
            "data": {
                "poll_id": poll_id,
                "winning_option_id": winning_option_id,
                "source": resolution_source,
                "total_pool": total_pool,
                "winning_pool": winning_pool,
                "total_paid": total_paid,
                "winners": winners,
                "losers": len(settlements) - winners,
            }
        },
    )

    return ResolutionSummary(
        poll_id=poll_id,
        winning_option_id=winning_option_id,
        resolution_source=resolution_source.strip(),
        resolved_at=resolved_at,
        total_pool=total_pool,
        winning_pool=winning_pool,
        total_paid=total_paid,
        winners=winners,
        losers=len(settlements) - winners,
        retained_by_house=retained_by_house,
        settlements=settlements,
    )
