"""Tests for AdmissionController: cache-first fixed-window admission."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from keygate.adapters.store.base import CredentialRecord
from keygate.adapters.store.in_memory import InMemoryCredentialStore
from keygate.core.errors import AuthenticationAppError
from keygate.services.admission import SOURCE_CACHE, SOURCE_STORE, AdmissionController
from keygate.services.rate_window_cache import RateWindowCache

from conftest import FakeTime, TEST_KEY, make_record


class CountingStore(InMemoryCredentialStore):
    """In-memory store that counts durable calls and can be slowed down."""

    def __init__(self, records=None, delay: float = 0.0) -> None:
        super().__init__(records)
        self.delay = delay
        self.get_calls = 0
        self.increment_calls = 0

    async def get(self, key: str) -> CredentialRecord | None:
        self.get_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return await super().get(key)

    async def increment_usage(self, key: str, *, used_at: datetime) -> int | None:
        self.increment_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return await super().increment_usage(key, used_at=used_at)


class HangingStore(InMemoryCredentialStore):
    """Store whose selected operations never answer in time."""

    def __init__(self, records=None, *, hang_get: bool = False, hang_increment: bool = False) -> None:
        super().__init__(records)
        self.hang_get = hang_get
        self.hang_increment = hang_increment

    async def get(self, key: str) -> CredentialRecord | None:
        if self.hang_get:
            await asyncio.sleep(10)
        return await super().get(key)

    async def increment_usage(self, key: str, *, used_at: datetime) -> int | None:
        if self.hang_increment:
            await asyncio.sleep(10)
        return await super().increment_usage(key, used_at=used_at)


class RacedStore(InMemoryCredentialStore):
    """Reads show headroom but another instance wins the conditional update."""

    async def increment_usage(self, key: str, *, used_at: datetime) -> int | None:
        return None


def _controller(store, fake_time: FakeTime, cache: RateWindowCache | None = None, **kwargs) -> AdmissionController:
    if cache is None:
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
    return AdmissionController(store=store, cache=cache, clock=fake_time.time, **kwargs)


class TestDurablePath:
    """Cache misses resolve the key and bump the durable counters."""

    @pytest.mark.asyncio
    async def test_miss_admits_bumps_counters_and_seeds_cache(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=5)])
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        controller = _controller(store, fake_time, cache)

        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is True
        assert decision.limit == 5
        assert decision.remaining == 4
        assert decision.source == SOURCE_STORE
        record = await store.get(TEST_KEY)
        assert record.requests_1m == 1
        assert record.requests_1h == 1
        assert record.requests_1d == 1
        assert record.total_requests == 1
        assert record.last_used is not None
        assert cache.peek(TEST_KEY, controller.bucket_for(fake_time.time())) == 1

    @pytest.mark.asyncio
    async def test_durable_count_at_limit_denies_without_mutation(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=5, requests_1m=5, total_requests=40)])
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        controller = _controller(store, fake_time, cache)

        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.limit == 5
        assert decision.source == SOURCE_STORE
        assert decision.reset_ms == int((fake_time.time() + 60) * 1000)
        record = await store.get(TEST_KEY)
        assert record.requests_1m == 5
        assert record.total_requests == 40
        assert record.last_used is None
        assert store.increment_calls == 0
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_lost_conditional_update_is_a_denial(self, fake_time: FakeTime):
        store = RacedStore([make_record(rate_limit=5, requests_1m=4)])
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        controller = _controller(store, fake_time, cache)

        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_hourly_and_daily_counters_are_not_enforced(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=5, requests_1h=10**6, requests_1d=10**7)])
        controller = _controller(store, fake_time)

        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is True


class TestCachePath:
    """Warmed windows are decided without touching the durable store."""

    @pytest.mark.asyncio
    async def test_hit_skips_store(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=5)])
        controller = _controller(store, fake_time)

        await controller.admit(TEST_KEY)
        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is True
        assert decision.remaining == 3
        assert decision.source == SOURCE_CACHE
        assert store.get_calls == 1
        assert store.increment_calls == 1

    @pytest.mark.asyncio
    async def test_last_request_of_minute_then_rate_limited(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=1000, requests_1m=999)])
        controller = _controller(store, fake_time)
        bucket = controller.bucket_for(fake_time.time())

        first = await controller.admit(TEST_KEY)
        second = await controller.admit(TEST_KEY)

        assert first.allowed is True
        assert first.remaining == 0
        assert first.limit == 1000
        assert second.allowed is False
        assert second.remaining == 0
        assert second.limit == 1000
        assert second.source == SOURCE_CACHE
        assert second.reset_ms == (bucket + 1) * 60 * 1000

    @pytest.mark.asyncio
    async def test_exactly_rate_limit_requests_admitted(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=4)])
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        controller = _controller(store, fake_time, cache)
        bucket = controller.bucket_for(fake_time.time())

        decisions = [await controller.admit(TEST_KEY) for _ in range(5)]

        assert [d.allowed for d in decisions] == [True, True, True, True, False]
        assert [d.remaining for d in decisions] == [3, 2, 1, 0, 0]
        assert cache.peek(TEST_KEY, bucket) == 4

    @pytest.mark.parametrize("count", [0, 3, 4])
    @pytest.mark.asyncio
    async def test_cache_and_store_paths_agree(self, fake_time: FakeTime, count: int):
        limit = 4
        cold = _controller(CountingStore([make_record(rate_limit=limit, requests_1m=count)]), fake_time)

        warm_cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        warm = _controller(CountingStore([make_record(rate_limit=limit, requests_1m=count)]), fake_time, warm_cache)
        warm_cache.seed(TEST_KEY, warm.bucket_for(fake_time.time()), count=count, limit=limit)

        from_store = await cold.admit(TEST_KEY)
        from_cache = await warm.admit(TEST_KEY)

        assert from_store.source == SOURCE_STORE
        assert from_cache.source == SOURCE_CACHE
        assert from_store.allowed == from_cache.allowed
        assert from_store.remaining == from_cache.remaining
        assert from_store.limit == from_cache.limit


class TestBucketRollover:
    """A new minute bucket always starts from the durable store."""

    @pytest.mark.asyncio
    async def test_new_bucket_misses_cache(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=3)])
        controller = _controller(store, fake_time)

        for _ in range(3):
            await controller.admit(TEST_KEY)
        assert (await controller.admit(TEST_KEY)).allowed is False

        # Simulates the external job resetting the minute counter.
        store._records[TEST_KEY].requests_1m = 0
        fake_time.advance(60)

        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is True
        assert decision.source == SOURCE_STORE
        assert decision.remaining == 2
        assert store.get_calls == 2
        assert store._records[TEST_KEY].total_requests == 2

    @pytest.mark.asyncio
    async def test_stale_durable_count_is_honoured_after_rollover(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=3, requests_1m=3)])
        controller = _controller(store, fake_time)
        fake_time.advance(60)

        decision = await controller.admit(TEST_KEY)

        assert decision.allowed is False
        assert decision.source == SOURCE_STORE


class TestConcurrency:
    """Racing requests for one key never exceed the limit in a bucket."""

    @pytest.mark.asyncio
    async def test_two_racing_misses_at_limit_minus_one_admit_one(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=5, requests_1m=4)], delay=0.01)
        controller = _controller(store, fake_time)

        results = await asyncio.gather(controller.admit(TEST_KEY), controller.admit(TEST_KEY))

        assert sorted(d.allowed for d in results) == [False, True]
        assert (await store.get(TEST_KEY)).requests_1m == 5

    @pytest.mark.asyncio
    async def test_two_racing_hits_at_limit_minus_one_admit_one(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=5)])
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        controller = _controller(store, fake_time, cache)
        cache.seed(TEST_KEY, controller.bucket_for(fake_time.time()), count=4, limit=5)

        results = await asyncio.gather(controller.admit(TEST_KEY), controller.admit(TEST_KEY))

        assert sorted(d.allowed for d in results) == [False, True]
        assert store.get_calls == 0

    @pytest.mark.asyncio
    async def test_burst_admits_exactly_rate_limit(self, fake_time: FakeTime):
        store = CountingStore([make_record(rate_limit=10)], delay=0.005)
        controller = _controller(store, fake_time)

        results = await asyncio.gather(*(controller.admit(TEST_KEY) for _ in range(25)))

        assert sum(d.allowed for d in results) == 10
        assert store.increment_calls == 1
        assert (await store.get(TEST_KEY)).requests_1m == 1


class TestRejections:
    """Unauthenticated outcomes raise instead of returning a decision."""

    @pytest.mark.parametrize("presented", [None, ""])
    @pytest.mark.asyncio
    async def test_missing_key(self, fake_time: FakeTime, presented):
        controller = _controller(CountingStore(), fake_time)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await controller.admit(presented)

        assert exc_info.value.code == "missing_api_key"
        assert exc_info.value.client_message == "No API key provided"

    @pytest.mark.asyncio
    async def test_unknown_key(self, fake_time: FakeTime):
        controller = _controller(CountingStore(), fake_time)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await controller.admit(TEST_KEY)

        assert exc_info.value.client_message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_inactive_key_never_touches_counters(self, fake_time: FakeTime):
        store = CountingStore([make_record(active=False)])
        controller = _controller(store, fake_time)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await controller.admit(TEST_KEY)

        assert exc_info.value.code == "inactive_api_key"
        assert store.increment_calls == 0
        assert (await store.get(TEST_KEY)).total_requests == 0

    @pytest.mark.asyncio
    async def test_read_timeout_fails_closed(self, fake_time: FakeTime):
        store = HangingStore([make_record()], hang_get=True)
        controller = _controller(store, fake_time, store_timeout_seconds=0.01)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await controller.admit(TEST_KEY)

        assert exc_info.value.code == "store_timeout"
        assert exc_info.value.client_message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_increment_timeout_fails_closed_without_seeding(self, fake_time: FakeTime):
        store = HangingStore([make_record()], hang_increment=True)
        cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
        controller = _controller(store, fake_time, cache, store_timeout_seconds=0.01)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await controller.admit(TEST_KEY)

        assert exc_info.value.code == "store_timeout"
        assert len(cache) == 0


def test_invalid_window_raises(fake_time: FakeTime) -> None:
    with pytest.raises(ValueError):
        _controller(CountingStore(), fake_time, window_seconds=0)


def test_bucket_for_uses_fixed_minute_windows(fake_time: FakeTime) -> None:
    controller = _controller(CountingStore(), fake_time)

    assert controller.bucket_for(59.999) == 0
    assert controller.bucket_for(60.0) == 1
    assert controller.bucket_for(1_000_020.0) == 16_667


@pytest.mark.asyncio
async def test_controller_uses_the_empty_cache_it_was_given(fake_time: FakeTime) -> None:
    cache = RateWindowCache(ttl_seconds=61.0, clock=fake_time.time)
    controller = _controller(CountingStore([make_record(rate_limit=5)]), fake_time, cache)
    assert len(cache) == 0

    await controller.admit(TEST_KEY)

    assert cache.peek(TEST_KEY, controller.bucket_for(fake_time.time())) == 1
