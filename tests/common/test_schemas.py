"""Tests for Pydantic schemas (interface contracts)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pollmarket.common.schemas import (
    MarketOdds,
    OptionRecord,
    PredictionSettlement,
    UserRecord,
)
from tests.factories import make_poll


class TestOptionRecord:
    def test_label_uses_text(self):
        assert OptionRecord(id="o1", poll_id="p1", text="Yes").label == "Yes"

    def test_label_falls_back_to_position(self):
        assert OptionRecord(id="o1", poll_id="p1", order_index=2).label == "Option 3"


class TestPollRecord:
    def test_option_ids(self):
        assert make_poll(option_ids=("a", "b")).option_ids == {"a", "b"}


class TestUserRecord:
    @pytest.mark.parametrize(
        ("username", "display_name", "expected"),
        [
            ("alice", "Alice A.", "alice"),
            (None, "Alice A.", "Alice A."),
            (None, None, "Anonymous"),
        ],
    )
    def test_public_name(self, username, display_name, expected):
        user = UserRecord(id="u1", username=username, display_name=display_name)
        assert user.public_name == expected


class TestPredictionSettlement:
    def test_negative_payout_rejected(self):
        with pytest.raises(ValidationError):
            PredictionSettlement(
                prediction_id="p",
                user_id="u",
                option_id="o",
                points=10,
                confidence=0.5,
                payout=-1,
                is_winner=False,
                reputation_delta=0,
            )


class TestMarketOdds:
    @pytest.mark.parametrize("probability", [-0.01, 1.01])
    def test_probability_bounds(self, probability):
        with pytest.raises(ValidationError):
            MarketOdds(
                option_id="o",
                option="O",
                probability=probability,
                implied_odds="1.0:1",
                volume=0,
                trend="stable",
                confidence=0.0,
            )

    def test_trend_values(self):
        with pytest.raises(ValidationError):
            MarketOdds(
                option_id="o",
                option="O",
                probability=0.5,
                implied_odds="1.0:1",
                volume=0,
                trend="sideways",
                confidence=0.0,
            )
