"""Prediction market engine: odds, analytics, resolution, and rankings.

Turns many independent user forecasts (option, confidence, stake) into
live market odds, settles polls pari-mutuel style once the outcome is
known, and ranks users by realized profit.

Public API:
    - store: PredictionStore repository interface and its SQL implementation
    - odds: per-option probabilities, implied odds, and trend
    - analytics: consensus, efficiency, volatility, and liquidity metrics
    - resolution: exactly-once poll resolution and payout settlement
    - leaderboard: users ranked by net profit over a timeframe
    - predictions: validated insert-or-replace of a user's prediction
    - stats: per-user records and per-poll breakdowns
    - cache: in-process TTL cache of computed odds
    - service: PredictionMarketService facade used by the HTTP layer
"""

from __future__ import annotations

from pollmarket.market.analytics import calculate_analytics, get_market_analytics
from pollmarket.market.cache import OddsCache, odds_cache
from pollmarket.market.leaderboard import get_leaderboard, rank_users
from pollmarket.market.odds import calculate_odds, format_implied_odds, get_market_odds
from pollmarket.market.predictions import create_or_update_prediction
from pollmarket.market.resolution import calculate_payout, calculate_settlements, resolve_poll
from pollmarket.market.stats import get_poll_summary, get_user_stats
from pollmarket.market.store import PredictionStore, SqlPredictionStore
from pollmarket.market.service import PredictionMarketService

__all__ = [
    "OddsCache",
    "PredictionMarketService",
    "PredictionStore",
    "SqlPredictionStore",
    "calculate_analytics",
    "calculate_odds",
    "calculate_payout",
    "calculate_settlements",
    "create_or_update_prediction",
    "format_implied_odds",
    "get_leaderboard",
    "get_market_analytics",
    "get_market_odds",
    "get_poll_summary",
    "get_user_stats",
    "odds_cache",
    "rank_users",
    "resolve_poll",
]
