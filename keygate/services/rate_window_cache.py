"""In-memory, bucket-keyed request counters.

The cache mirrors the durable ``requests_1m`` counter for the current process
so that warmed keys are admitted without a database round trip. Entries are
keyed by ``(key, bucket_id)``: a new bucket always starts from a cache miss,
which is the only reset signal the cache relies on. Expiry only reclaims
memory, either lazily when a stripe is seeded or through ``run_periodic_sweep``.

Notes:
- Per-process only: each worker keeps its own view.
- Thread-safe: entries are spread over a fixed array of lock stripes, so the
  read-check-increment of one entry is atomic for threads and coroutines alike.
  Hit/miss/eviction counters live in the stripes and are updated under the
  same lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

CacheKey = tuple[str, int]


@dataclass
class _WindowEntry:
    count: int
    limit: int
    expires_at: float


@dataclass(frozen=True)
class CacheDecision:
    """Outcome of consuming one unit from a cached window.

    Attributes:
        allowed: Whether the request was admitted.
        count: Window count after the decision (unchanged when denied).
        limit: Rate limit recorded for the key when the entry was seeded.
    """

    allowed: bool
    count: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class _Stripe:
    __slots__ = ("lock", "entries", "hits", "misses", "evictions")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[CacheKey, _WindowEntry] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0


class RateWindowCache:
    """Striped-lock map from ``(key, bucket)`` to an admission count."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 61.0,
        stripes: int = 64,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry after seeding (one window plus slack).
            stripes: Number of independent locks.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If ttl_seconds or stripes are invalid.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if stripes < 1:
            raise ValueError("stripes must be >= 1")

        self._ttl = ttl_seconds
        self._clock = clock
        self._stripes = [_Stripe() for _ in range(stripes)]

    def __repr__(self) -> str:  # pragma: no cover - representation only
        stats = self.stats()
        return (
            f"RateWindowCache(ttl_seconds={self._ttl}, stripes={len(self._stripes)}, "
            f"size={stats['entries']}, hits={stats['hits']}, misses={stats['misses']})"
        )

    def __len__(self) -> int:
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total

    def _stripe_for(self, cache_key: CacheKey) -> _Stripe:
        return self._stripes[hash(cache_key) % len(self._stripes)]

    def try_consume(self, key: str, bucket: int) -> CacheDecision | None:
        """Admit one request against the cached window, if there is one.

        Args:
            key: Presented API key.
            bucket: Current bucket id (``floor(now / window)``).

        Returns:
            CacheDecision on a hit, None on a miss (no entry or expired).
        """
        cache_key = (key, bucket)
        stripe = self._stripe_for(cache_key)
        now = self._clock()

        with stripe.lock:
            entry = stripe.entries.get(cache_key)
            if entry is None or now > entry.expires_at:
                if entry is not None:
                    del stripe.entries[cache_key]
                    stripe.evictions += 1
                stripe.misses += 1
                return None

            stripe.hits += 1
            if entry.count >= entry.limit:
                return CacheDecision(allowed=False, count=entry.count, limit=entry.limit)

            entry.count += 1
            return CacheDecision(allowed=True, count=entry.count, limit=entry.limit)

    def seed(self, key: str, bucket: int, *, count: int, limit: int) -> None:
        """Record the durable post-increment count for a window.

        Never lowers a live entry: when two seeds race, the higher count wins.

        Args:
            key: Presented API key.
            bucket: Bucket id the count belongs to.
            count: Post-increment ``requests_1m`` read from the durable store.
            limit: The key's ``rate_limit``.
        """
        cache_key = (key, bucket)
        stripe = self._stripe_for(cache_key)
        now = self._clock()

        with stripe.lock:
            self._evict_expired_locked(stripe, now)
            entry = stripe.entries.get(cache_key)
            if entry is not None:
                entry.count = max(entry.count, count)
                entry.limit = limit
                return
            stripe.entries[cache_key] = _WindowEntry(
                count=count,
                limit=limit,
                expires_at=now + self._ttl,
            )

        logger.debug("rate_cache.seeded", extra={"bucket": bucket, "count": count, "limit": limit})

    def peek(self, key: str, bucket: int) -> int | None:
        """Return the cached count for a window without consuming."""
        cache_key = (key, bucket)
        stripe = self._stripe_for(cache_key)
        with stripe.lock:
            entry = stripe.entries.get(cache_key)
            if entry is None or self._clock() > entry.expires_at:
                return None
            return entry.count

    def sweep(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        removed = 0
        for stripe in self._stripes:
            with stripe.lock:
                removed += self._evict_expired_locked(stripe, now)
        return removed

    def stats(self) -> dict[str, int | float]:
        """Return lightweight cache metrics without exposing keys."""
        entries = hits = misses = evictions = 0
        for stripe in self._stripes:
            with stripe.lock:
                entries += len(stripe.entries)
                hits += stripe.hits
                misses += stripe.misses
                evictions += stripe.evictions
        return {
            "ttl_seconds": self._ttl,
            "stripes": len(self._stripes),
            "entries": entries,
            "hits": hits,
            "misses": misses,
            "evictions": evictions,
        }

    @staticmethod
    def _evict_expired_locked(stripe: _Stripe, now: float) -> int:
        expired = [k for k, entry in stripe.entries.items() if now > entry.expires_at]
        for cache_key in expired:
            del stripe.entries[cache_key]
        stripe.evictions += len(expired)
        return len(expired)


async def run_periodic_sweep(cache: RateWindowCache, interval_seconds: float) -> None:
    """Sweep expired windows every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = cache.sweep()
        if removed:
            logger.debug("rate_cache.swept", extra={"removed": removed, **cache.stats()})
