"""Tests for pollmarket.market.resolution -- exactly-once settlement.

Reference market:
    alice -> opt-a, confidence 0.9, 100 points
    bob   -> opt-b, confidence 0.4,  50 points
Resolved for opt-a:
    alice payout     = floor(100/100 * 150 * 0.95 * 1.09) = floor(155.325) = 155
    alice reputation = +floor(155 * 0.1 * 1.9) = +29
    bob payout       = 0
    bob reputation   = -floor(50 * 0.01) = 0
"""

from __future__ import annotations

import asyncio
import math
from datetime import timedelta

import pytest

from pollmarket.common.exceptions import (
    AlreadyResolvedError,
    MarketValidationError,
    NotFoundError,
)
from pollmarket.common.schemas import ResolutionSummary
from pollmarket.market.resolution import (
    calculate_payout,
    calculate_settlements,
    loser_reputation_delta,
    resolve_poll,
    winner_reputation_delta,
)
from tests.factories import BASE_TIME, make_poll, make_prediction, make_user
from tests.fakes import FakePredictionStore

RESOLVED_AT = BASE_TIME + timedelta(days=1)


def _seed_reference(store: FakePredictionStore) -> None:
    store.add_prediction(make_prediction("alice", "poll-1", "opt-a", confidence=0.9, points=100))
    store.add_prediction(make_prediction("bob", "poll-1", "opt-b", confidence=0.4, points=50))


def _payouts(store: FakePredictionStore) -> dict[str, int | None]:
    return {p.user_id: p.payout for p in store.predictions.values()}


# ---------------------------------------------------------------------------
# Pure payout math
# ---------------------------------------------------------------------------
class TestPayoutMath:
    def test_reference_payout(self) -> None:
        assert calculate_payout(100, 0.9, 150, 100, 0.05) == 155

    def test_payout_is_floored(self) -> None:
        """30 * 100 * 0.95 / 70 = 40.71..."""
        assert calculate_payout(30, 0.0, 100, 70, 0.05) == 40

    def test_payout_requires_positive_winning_pool(self) -> None:
        with pytest.raises(ValueError, match="winning_pool"):
            calculate_payout(10, 0.5, 100, 0, 0.05)

    def test_winner_reputation(self) -> None:
        assert winner_reputation_delta(155, 0.9) == 29

    def test_loser_reputation(self) -> None:
        assert loser_reputation_delta(50) == 0
        assert loser_reputation_delta(500) == -5
        assert loser_reputation_delta(1000) == -10

    def test_base_payouts_conserve_pool(self) -> None:
        """With zero confidence the winners split exactly pool * (1 - edge)."""
        predictions = [
            make_prediction("u1", "poll-1", "opt-a", confidence=0.0, points=30),
            make_prediction("u2", "poll-1", "opt-a", confidence=0.0, points=30),
            make_prediction("u3", "poll-1", "opt-a", confidence=0.0, points=40),
            make_prediction("u4", "poll-1", "opt-b", confidence=0.0, points=100),
        ]

        settlements, total_pool, winning_pool = calculate_settlements(
            predictions, "opt-a", 0.05
        )

        assert (total_pool, winning_pool) == (200, 100)
        assert [s.payout for s in settlements] == [57, 57, 76, 0]
        assert sum(s.payout for s in settlements) <= total_pool * 0.95

    def test_confidence_bonus_bounded_by_ten_percent(self) -> None:
        predictions = [
            make_prediction("u1", "poll-1", "opt-a", confidence=1.0, points=30),
            make_prediction("u2", "poll-1", "opt-a", confidence=1.0, points=30),
            make_prediction("u3", "poll-1", "opt-a", confidence=1.0, points=40),
            make_prediction("u4", "poll-1", "opt-b", confidence=0.2, points=100),
        ]

        settlements, total_pool, _ = calculate_settlements(predictions, "opt-a", 0.05)

        total_paid = sum(s.payout for s in settlements)
        assert total_paid == 62 + 62 + 83
        assert total_paid <= math.floor(total_pool * 0.95 * 1.1)

    def test_losers_settle_at_zero(self) -> None:
        predictions = [
            make_prediction("u1", "poll-1", "opt-a", points=10),
            make_prediction("u2", "poll-1", "opt-b", points=500),
        ]

        settlements, _, _ = calculate_settlements(predictions, "opt-a", 0.05)

        loser = settlements[1]
        assert loser.payout == 0
        assert loser.is_winner is False
        assert loser.reputation_delta == -5

    def test_no_winner_settles_everyone_at_zero(self) -> None:
        predictions = [
            make_prediction("u1", "poll-1", "opt-b", points=10),
            make_prediction("u2", "poll-1", "opt-b", points=500),
        ]

        settlements, total_pool, winning_pool = calculate_settlements(
            predictions, "opt-a", 0.05
        )

        assert (total_pool, winning_pool) == (510, 0)
        assert all(s.payout == 0 for s in settlements)
        assert all(s.reputation_delta == 0 for s in settlements)
        assert not any(s.is_winner for s in settlements)


# ---------------------------------------------------------------------------
# resolve_poll (store-backed)
# ---------------------------------------------------------------------------
class TestResolvePoll:
    @pytest.mark.asyncio
    async def test_reference_scenario(self, ab_store: FakePredictionStore) -> None:
        _seed_reference(ab_store)

        summary = await resolve_poll(ab_store, "poll-1", "opt-a", "AP", now=RESOLVED_AT)

        assert _payouts(ab_store) == {"alice": 155, "bob": 0}
        assert ab_store.users["alice"].reputation == 1029
        assert ab_store.users["bob"].reputation == 1000
        assert summary.total_pool == 150
        assert summary.winning_pool == 100
        assert summary.total_paid == 155
        assert (summary.winners, summary.losers) == (1, 1)
        assert summary.retained_by_house is False

    @pytest.mark.asyncio
    async def test_poll_and_predictions_move_in_lock_step(
        self, ab_store: FakePredictionStore
    ) -> None:
        _seed_reference(ab_store)

        await resolve_poll(ab_store, "poll-1", "opt-a", "AP", now=RESOLVED_AT)

        poll = ab_store.polls["poll-1"]
        assert poll.resolved_at == RESOLVED_AT
        assert poll.resolution_result == "opt-a"
        assert poll.resolution_source == "AP"
        assert poll.is_active is False
        for prediction in ab_store.predictions.values():
            assert prediction.is_resolved is True
            assert prediction.resolved_at == RESOLVED_AT

    @pytest.mark.asyncio
    async def test_second_resolution_is_rejected(self, ab_store: FakePredictionStore) -> None:
        _seed_reference(ab_store)
        await resolve_poll(ab_store, "poll-1", "opt-a", "AP", now=RESOLVED_AT)
        reputations = {uid: u.reputation for uid, u in ab_store.users.items()}

        with pytest.raises(AlreadyResolvedError):
            await resolve_poll(ab_store, "poll-1", "opt-b", "Reuters")

        assert _payouts(ab_store) == {"alice": 155, "bob": 0}
        assert {uid: u.reputation for uid, u in ab_store.users.items()} == reputations
        assert ab_store.polls["poll-1"].resolution_result == "opt-a"

    @pytest.mark.asyncio
    async def test_concurrent_resolutions_pay_once(self, ab_store: FakePredictionStore) -> None:
        _seed_reference(ab_store)

        results = await asyncio.gather(
            resolve_poll(ab_store, "poll-1", "opt-a", "AP"),
            resolve_poll(ab_store, "poll-1", "opt-a", "AP"),
            return_exceptions=True,
        )

        summaries = [r for r in results if isinstance(r, ResolutionSummary)]
        conflicts = [r for r in results if isinstance(r, AlreadyResolvedError)]
        assert len(summaries) == 1
        assert len(conflicts) == 1
        assert ab_store.users["alice"].reputation == 1029
        assert _payouts(ab_store) == {"alice": 155, "bob": 0}

    @pytest.mark.asyncio
    async def test_no_winner_house_keeps_pool(self, ab_store: FakePredictionStore) -> None:
        ab_store.add_prediction(make_prediction("alice", "poll-1", "opt-b", points=100))
        ab_store.add_prediction(make_prediction("bob", "poll-1", "opt-b", points=500))

        summary = await resolve_poll(ab_store, "poll-1", "opt-a", "AP")

        assert summary.retained_by_house is True
        assert summary.total_paid == 0
        assert _payouts(ab_store) == {"alice": 0, "bob": 0}
        assert all(p.is_resolved for p in ab_store.predictions.values())
        assert ab_store.users["alice"].reputation == 1000
        assert ab_store.users["bob"].reputation == 1000

    @pytest.mark.asyncio
    async def test_poll_without_predictions_resolves(self, ab_store: FakePredictionStore) -> None:
        summary = await resolve_poll(ab_store, "poll-1", "opt-a", "AP")

        assert summary.total_pool == 0
        assert summary.settlements == []
        assert summary.retained_by_house is False
        assert ab_store.polls["poll-1"].resolved_at is not None

    @pytest.mark.asyncio
    async def test_unknown_poll(self, store: FakePredictionStore) -> None:
        with pytest.raises(NotFoundError):
            await resolve_poll(store, "missing", "opt-a", "AP")

    @pytest.mark.asyncio
    async def test_option_from_another_poll(self, ab_store: FakePredictionStore) -> None:
        with pytest.raises(NotFoundError):
            await resolve_poll(ab_store, "poll-1", "opt-z", "AP")
        assert ab_store.polls["poll-1"].resolved_at is None

    @pytest.mark.asyncio
    async def test_blank_source_is_rejected(self, ab_store: FakePredictionStore) -> None:
        with pytest.raises(MarketValidationError):
            await resolve_poll(ab_store, "poll-1", "opt-a", "   ")
        assert ab_store.polls["poll-1"].resolved_at is None

    @pytest.mark.asyncio
    async def test_failure_mid_settlement_leaves_no_partial_writes(self) -> None:
        class FailingStore(FakePredictionStore):
            async def adjust_user_reputation(self, user_id: str, delta: int) -> None:
                raise RuntimeError("connection lost")

        failing = FailingStore()
        failing.add_poll(make_poll("poll-1", option_ids=("opt-a", "opt-b")))
        failing.add_user(make_user("alice"))
        failing.add_user(make_user("bob"))
        _seed_reference(failing)

        with pytest.raises(RuntimeError, match="connection lost"):
            await resolve_poll(failing, "poll-1", "opt-a", "AP")

        assert failing.polls["poll-1"].resolved_at is None
        assert all(not p.is_resolved for p in failing.predictions.values())
        assert all(p.payout is None for p in failing.predictions.values())
        assert failing.users["alice"].reputation == 1000
        assert failing.rollbacks == 1

