"""In-process TTL cache of computed market odds, keyed by poll id.

Never authoritative: every entry can be recomputed from stored predictions.
Entries are dropped on every prediction write and on resolution, expire
after ``odds_cache_ttl_seconds``, and the least recently used poll is
evicted once ``odds_cache_max_entries`` is reached.

A read that misses takes a generation token before computing. invalidate()
moves the poll to a new generation, so odds computed from data read before
an invalidation are discarded by set() instead of being cached.

Usage:
    from pollmarket.market.cache import odds_cache

    cached = odds_cache.get(poll_id)
    if cached is None:
        token = odds_cache.generation(poll_id)
        cached = await get_market_odds(store, poll_id)
        odds_cache.set(poll_id, cached, generation=token)
"""

from __future__ import annotations

import itertools
import time
from collections.abc import Callable

from cachetools import TTLCache

from pollmarket.common.config import get_settings
from pollmarket.common.logging import get_logger
from pollmarket.common.metrics import ODDS_CACHE_LOOKUPS_TOTAL
from pollmarket.common.schemas import MarketOdds

logger = get_logger("CACHE")

# Generation markers outlive odds entries by this factor
_GENERATION_TTL_FACTOR = 10
_MIN_GENERATION_TTL_SECONDS = 60.0


class OddsCache:
    """Bounded TTL map of poll id -> odds.

    Args:
        ttl_seconds: Lifetime of an entry. 0 disables caching.
        max_entries: Polls held before least-recently-used eviction.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.ttl_seconds = (
            settings.odds_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        self.max_entries = (
            settings.odds_cache_max_entries if max_entries is None else max_entries
        )
        self._entries: TTLCache[str, list[MarketOdds]] = TTLCache(
            maxsize=self.max_entries, ttl=max(self.ttl_seconds, 0), timer=clock
        )
        self._generations: TTLCache[str, int] = TTLCache(
            maxsize=self.max_entries,
            ttl=max(self.ttl_seconds * _GENERATION_TTL_FACTOR, _MIN_GENERATION_TTL_SECONDS),
            timer=clock,
        )
        self._counter = itertools.count(1)

    def get(self, poll_id: str) -> list[MarketOdds] | None:
        odds = self._entries.get(poll_id)
        if odds is not None:
            ODDS_CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
            logger.debug("Odds cache hit", extra={"data": {"poll_id": poll_id}})
            return list(odds)

        ODDS_CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
        logger.debug("Odds cache miss", extra={"data": {"poll_id": poll_id}})
        return None

    def generation(self, poll_id: str) -> int:
        """Token to pass to set() for odds about to be computed."""
        return self._generations.get(poll_id, 0)

    def set(
        self, poll_id: str, odds: list[MarketOdds], generation: int | None = None
    ) -> bool:
        """Store odds unless the poll was invalidated since ``generation``.

        Returns:
            Whether the odds were cached.
        """
        if self.ttl_seconds <= 0:
            return False
        if generation is not None and generation != self.generation(poll_id):
            logger.debug(
                "Stale odds discarded",
                extra={"data": {"poll_id": poll_id, "generation": generation}},
            )
            return False
        self._entries[poll_id] = list(odds)
        return True

    def invalidate(self, poll_id: str) -> None:
        self._generations[poll_id] = next(self._counter)
        if self._entries.pop(poll_id, None) is not None:
            logger.debug("Odds cache invalidated", extra={"data": {"poll_id": poll_id}})

    def clear(self) -> None:
        self._entries.clear()
        self._generations.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)


# Shared by every request in the process
odds_cache = OddsCache()
