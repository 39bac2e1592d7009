"""Prediction submission: validation and the insert-or-replace write.

A user holds at most one prediction per poll. Re-submitting replaces the
previous choice, confidence, stake and reasoning in a single atomic upsert
at the storage boundary; this module never reads-then-writes to enforce
uniqueness.

Validation order (first failure wins):
    1. poll_id / option_id / user_id present          -> MarketValidationError
    2. confidence in [0, 1]                           -> MarketValidationError
    3. points an integer in [MIN, MAX]                -> MarketValidationError
    4. poll exists, option belongs to the poll        -> NotFoundError
    5. poll not resolved and still active             -> PollInactiveError
    6. poll not past expires_at                       -> PollExpiredError
    7. user exists with reputation >= points          -> NotFoundError / InsufficientBalanceError

Steps 4-7 read a snapshot. The upsert repeats the open-poll check in the
same write, so a resolution landing after step 5 still rejects the
submission with PollInactiveError instead of reopening a settled row.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime

from pollmarket.common.config import get_settings
from pollmarket.common.exceptions import (
    InsufficientBalanceError,
    MarketValidationError,
    NotFoundError,
    PollExpiredError,
    PollInactiveError,
    PollMarketError,
)
from pollmarket.common.logging import get_logger
from pollmarket.common.metrics import (
    PREDICTION_POINTS_STAKED_TOTAL,
    PREDICTIONS_SUBMITTED_TOTAL,
)
from pollmarket.common.schemas import PollRecord, PredictionRecord, PredictionUpsert
from pollmarket.market.store import PredictionStore

logger = get_logger("PREDICT")


def validate_prediction_input(
    user_id: str | None,
    poll_id: str | None,
    option_id: str | None,
    confidence: float,
    points: int,
    *,
    min_points: int | None = None,
    max_points: int | None = None,
) -> None:
    """Check the caller-supplied fields before touching the store.

    Raises:
        MarketValidationError: On the first invalid field.
    """
    settings = get_settings()
    min_points = settings.min_prediction_points if min_points is None else min_points
    max_points = settings.max_prediction_points if max_points is None else max_points

    missing = [
        name
        for name, value in (("user_id", user_id), ("poll_id", poll_id), ("option_id", option_id))
        if not value
    ]
    if missing:
        raise MarketValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            context={"missing": missing},
        )

    if (
        isinstance(confidence, bool)
        or not isinstance(confidence, (int, float))
        or math.isnan(confidence)
        or not 0 <= confidence <= 1
    ):
        raise MarketValidationError(
            "Confidence must be between 0 and 1", context={"confidence": confidence}
        )

    if isinstance(points, bool) or not isinstance(points, int):
        raise MarketValidationError(
            "Points must be a whole number", context={"points": points}
        )
    if not min_points <= points <= max_points:
        raise MarketValidationError(
            f"Points must be between {min_points} and {max_points}",
            context={"points": points},
        )


def check_poll_open(poll: PollRecord, now: datetime) -> None:
    """Raise if the poll no longer accepts predictions."""
    if poll.resolved_at is not None or not poll.is_active:
        raise PollInactiveError(
            "Poll is not active",
            context={"poll_id": poll.id, "resolved": poll.resolved_at is not None},
        )
    if poll.expires_at is not None and poll.expires_at <= now:
        raise PollExpiredError(
            "Poll has expired",
            context={"poll_id": poll.id, "expires_at": poll.expires_at.isoformat()},
        )


async def create_or_update_prediction(
    store: PredictionStore,
    user_id: str,
    poll_id: str,
    option_id: str,
    confidence: float,
    points: int,
    reasoning: str | None = None,
    *,
    now: datetime | None = None,
) -> PredictionRecord:
    """Validate and persist a user's prediction on a poll.

    Returns:
        The stored prediction, reflecting this submission's values.

    Raises:
        MarketValidationError, NotFoundError, PollInactiveError,
        PollExpiredError, InsufficientBalanceError.
    """
    now = now or datetime.now(UTC)
    try:
        validate_prediction_input(user_id, poll_id, option_id, confidence, points)

        poll = await store.find_poll(poll_id)
        if poll is None:
            raise NotFoundError("Poll not found", context={"poll_id": poll_id})
        if option_id not in poll.option_ids:
            raise NotFoundError(
                "Option does not belong to this poll",
                context={"poll_id": poll_id, "option_id": option_id},
            )
        check_poll_open(poll, now)

        user = await store.find_user(user_id)
        if user is None:
            raise NotFoundError("User not found", context={"user_id": user_id})
        if user.reputation < points:
            raise InsufficientBalanceError(
                "Insufficient points for this stake",
                context={"user_id": user_id, "available": user.reputation, "points": points},
            )

        async with store.atomic():
            prediction = await store.upsert_prediction(
                PredictionUpsert(
                    user_id=user_id,
                    poll_id=poll_id,
                    option_id=option_id,
                    confidence=float(confidence),
                    points=points,
                    reasoning=reasoning or None,
                    created_at=now,
                )
            )
            if prediction is None:
                raise PollInactiveError(
                    "Poll closed before the prediction was stored",
                    context={"poll_id": poll_id, "resolved": True},
                )
    except PollMarketError as exc:
        PREDICTIONS_SUBMITTED_TOTAL.labels(outcome=type(exc).__name__).inc()
        raise

    PREDICTIONS_SUBMITTED_TOTAL.labels(outcome="accepted").inc()
    PREDICTION_POINTS_STAKED_TOTAL.inc(points)
    logger.info(
        "Prediction upserted",
        extra={
            "data": {
                "prediction_id": prediction.id,
                "user_id": user_id,
                "poll_id": poll_id,
                "option_id": option_id,
                "confidence": confidence,
                "points": points,
            }
        },
    )
    return prediction
