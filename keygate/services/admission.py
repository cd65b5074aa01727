"""Per-request admission decisions.

The controller answers "may this key make one more request in the current
minute bucket?" using two layers:

- RateWindowCache: a warmed ``(key, bucket)`` entry is consumed in memory and
  the durable store is not touched. A cache entry only exists after the key
  was authenticated in that bucket.
- Credential store: on a cache miss the key is resolved, its ``requests_1m`` is
  checked against ``rate_limit`` and, when admitted, the durable counters are
  bumped with an atomic increment-with-ceiling. The cache is then seeded with
  the post-increment count.

Cache misses for the same ``(key, bucket)`` are serialized inside one process
(single-flight) and the cache is re-checked once the lock is held, so racing
requests never admit more than ``rate_limit`` in a bucket from one instance.

Denials never mutate any counter. ``requests_1h`` and ``requests_1d`` are
informational accumulators: they are incremented on durable admissions and
never checked here.

Known gap: ``requests_1m`` is reset by an external job. If that job lags behind
a bucket rollover, the first miss of the new bucket reads the stale count. The
cache never resets the durable counter itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from keygate.adapters.store.base import AbstractCredentialStore
from keygate.core.errors import AuthenticationAppError, StoreTimeoutAppError
from keygate.core.logging import hash_secret
from keygate.services.authenticator import INVALID_KEY_MESSAGE, MISSING_KEY_MESSAGE, Authenticator
from keygate.services.rate_window_cache import CacheDecision, CacheKey, RateWindowCache
from keygate.services.timeouts import with_store_timeout

logger = logging.getLogger(__name__)

SOURCE_CACHE = "cache"
SOURCE_STORE = "store"


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of one admission check.

    Attributes:
        allowed: Whether the request is admitted.
        limit: The key's per-minute rate limit.
        remaining: Requests left in the current bucket (0 when denied).
        reset_ms: Epoch milliseconds after which to retry (denials only).
        source: Which layer decided: "cache" or "store".
    """

    allowed: bool
    limit: int
    remaining: int
    reset_ms: int | None
    source: str


@dataclass
class _FlightSlot:
    lock: asyncio.Lock
    holders: int = 0


class _SingleFlight:
    """Per-key asyncio locks that are dropped once nobody waits on them."""

    def __init__(self) -> None:
        self._slots: dict[CacheKey, _FlightSlot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    @asynccontextmanager
    async def hold(self, cache_key: CacheKey) -> AsyncIterator[None]:
        slot = self._slots.get(cache_key)
        if slot is None:
            slot = self._slots[cache_key] = _FlightSlot(lock=asyncio.Lock())
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                self._slots.pop(cache_key, None)


class AdmissionController:
    """Cache-first, store-backed fixed-window admission control."""

    def __init__(
        self,
        *,
        store: AbstractCredentialStore,
        cache: RateWindowCache,
        authenticator: Authenticator | None = None,
        window_seconds: int = 60,
        store_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Durable credential store.
            cache: Process-local window cache.
            authenticator: Resolver used on cache misses; built over ``store`` if omitted.
            window_seconds: Bucket length (one minute for ``requests_1m``).
            store_timeout_seconds: Deadline for each durable call.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If window_seconds is invalid.
        """
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._store = store
        self._cache = cache
        self._authenticator = authenticator or Authenticator(store, timeout_seconds=store_timeout_seconds)
        self._window_seconds = window_seconds
        self._store_timeout_seconds = store_timeout_seconds
        self._clock = clock
        self._single_flight = _SingleFlight()

    def bucket_for(self, now: float) -> int:
        """Return the fixed bucket id containing ``now``."""
        return int(now // self._window_seconds)

    async def admit(self, presented_key: str | None) -> AdmissionDecision:
        """Decide whether one request for ``presented_key`` is admitted.

        Returns:
            AdmissionDecision; a denial is a normal outcome, not an error.

        Raises:
            AuthenticationAppError: If the key is missing, unknown or inactive,
                or the store timed out (fail closed).
        """
        if not presented_key:
            raise AuthenticationAppError(code="missing_api_key", message=MISSING_KEY_MESSAGE)

        now = self._clock()
        bucket = self.bucket_for(now)

        hit = self._cache.try_consume(presented_key, bucket)
        if hit is not None:
            return self._log(self._from_cache(hit, bucket), presented_key)

        async with self._single_flight.hold((presented_key, bucket)):
            # Another request may have seeded the window while we waited.
            hit = self._cache.try_consume(presented_key, bucket)
            if hit is not None:
                return self._log(self._from_cache(hit, bucket), presented_key)

            decision = await self._admit_from_store(presented_key, bucket, now)
            return self._log(decision, presented_key)

    def _from_cache(self, hit: CacheDecision, bucket: int) -> AdmissionDecision:
        if not hit.allowed:
            return AdmissionDecision(
                allowed=False,
                limit=hit.limit,
                remaining=0,
                reset_ms=(bucket + 1) * self._window_seconds * 1000,
                source=SOURCE_CACHE,
            )
        return AdmissionDecision(
            allowed=True,
            limit=hit.limit,
            remaining=hit.remaining,
            reset_ms=None,
            source=SOURCE_CACHE,
        )

    async def _admit_from_store(self, presented_key: str, bucket: int, now: float) -> AdmissionDecision:
        record = await self._authenticator.resolve(presented_key)
        denied = AdmissionDecision(
            allowed=False,
            limit=record.rate_limit,
            remaining=0,
            reset_ms=int((now + self._window_seconds) * 1000),
            source=SOURCE_STORE,
        )

        if record.requests_1m >= record.rate_limit:
            return denied

        try:
            new_count = await with_store_timeout(
                self._store.increment_usage(
                    presented_key,
                    used_at=datetime.fromtimestamp(now, tz=timezone.utc),
                ),
                timeout_seconds=self._store_timeout_seconds,
                operation="increment_usage",
            )
        except StoreTimeoutAppError as exc:
            raise AuthenticationAppError(
                code="store_timeout",
                message=INVALID_KEY_MESSAGE,
                details={"key_hash": hash_secret(presented_key), "operation": "increment_usage"},
            ) from exc

        if new_count is None:
            # Ceiling reached by another instance between the read and the update.
            return denied

        self._cache.seed(presented_key, bucket, count=new_count, limit=record.rate_limit)
        return AdmissionDecision(
            allowed=True,
            limit=record.rate_limit,
            remaining=max(0, record.rate_limit - new_count),
            reset_ms=None,
            source=SOURCE_STORE,
        )

    def _log(self, decision: AdmissionDecision, presented_key: str) -> AdmissionDecision:
        extra = {
            "key_hash": hash_secret(presented_key),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "source": decision.source,
        }
        if decision.allowed:
            logger.debug("admission.allowed", extra=extra)
        else:
            logger.info("admission.rate_limited", extra={**extra, "reset_ms": decision.reset_ms})
        return decision
