"""Unit tests for sliding-window rate limiting primitives."""

from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from iam_core.core.rate_limit import (
    InMemorySlidingWindowStore,
    RateLimitSweeper,
    RedisSlidingWindowStore,
    SlidingWindowRateLimiter,
    extract_client_ip,
)


class _MillisClock:
    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms


class _InMemoryRateLimitRedis:
    """In-memory Redis-like sorted sets for store tests."""

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, int]] = {}

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        """Delete scores <= max and return removed count."""
        del min
        bucket = self._buckets.get(key, {})
        to_remove = [member for member, score in bucket.items() if score <= max]
        for member in to_remove:
            del bucket[member]
        return len(to_remove)

    async def zcard(self, key: str) -> int:
        return len(self._buckets.get(key, {}))

    async def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> list:
        ordered = sorted(self._buckets.get(key, {}).items(), key=lambda item: item[1])
        selected = ordered[start : end + 1]
        if withscores:
            return [(member, float(score)) for member, score in selected]
        return [member for member, _ in selected]

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        bucket = self._buckets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            if member not in bucket:
                added += 1
            bucket[member] = score
        return added

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        del key, ttl_seconds
        return True


class _BrokenRedis(_InMemoryRateLimitRedis):
    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        raise RedisConnectionError("redis down")


def _limiter(
    clock: _MillisClock,
    max_requests: int = 3,
    window_ms: int = 60_000,
    namespace: str = "auth",
    store: InMemorySlidingWindowStore | RedisSlidingWindowStore | None = None,
) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        namespace,
        max_requests,
        window_ms,
        store if store is not None else InMemorySlidingWindowStore(),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_allows_up_to_limit_then_rejects() -> None:
    """Three hits pass, the fourth inside the window is rejected."""
    clock = _MillisClock()
    limiter = _limiter(clock)

    decisions = [await limiter.hit("10.0.0.1") for _ in range(3)]
    assert [decision.allowed for decision in decisions] == [True, True, True]
    assert [decision.remaining for decision in decisions] == [2, 1, 0]

    clock.now_ms += 10_000
    rejected = await limiter.hit("10.0.0.1")
    assert rejected.allowed is False
    assert rejected.remaining == 0
    assert rejected.limit == 3
    assert rejected.retry_after == 50


@pytest.mark.asyncio
async def test_window_slides_and_recovers() -> None:
    """Once the oldest hit leaves the window, one more request is allowed."""
    clock = _MillisClock()
    limiter = _limiter(clock)
    for _ in range(3):
        await limiter.hit("10.0.0.1")
    assert (await limiter.hit("10.0.0.1")).allowed is False

    clock.now_ms += 60_001
    recovered = await limiter.hit("10.0.0.1")
    assert recovered.allowed is True


@pytest.mark.asyncio
async def test_rejected_hits_do_not_extend_the_window() -> None:
    """Hammering while blocked does not push recovery further out."""
    clock = _MillisClock()
    limiter = _limiter(clock, max_requests=1)
    await limiter.hit("10.0.0.1")
    for _ in range(5):
        clock.now_ms += 1_000
        assert (await limiter.hit("10.0.0.1")).allowed is False

    clock.now_ms = 1_000_000 + 60_001
    assert (await limiter.hit("10.0.0.1")).allowed is True


@pytest.mark.asyncio
async def test_retry_after_is_at_least_one_second() -> None:
    clock = _MillisClock()
    limiter = _limiter(clock, max_requests=1, window_ms=1_000)
    await limiter.hit("10.0.0.1")
    clock.now_ms += 999

    rejected = await limiter.hit("10.0.0.1")

    assert rejected.allowed is False
    assert rejected.retry_after == 1


@pytest.mark.asyncio
async def test_reset_at_is_epoch_seconds_of_window_end() -> None:
    clock = _MillisClock(start_ms=1_700_000_000_500)
    limiter = _limiter(clock)

    decision = await limiter.hit("10.0.0.1")

    assert decision.reset_at == 1_700_000_061


@pytest.mark.asyncio
async def test_clients_and_namespaces_are_isolated() -> None:
    """Limits are counted per client IP and per limiter namespace."""
    clock = _MillisClock()
    store = InMemorySlidingWindowStore()
    auth = _limiter(clock, max_requests=1, namespace="auth", store=store)
    global_ = _limiter(clock, max_requests=1, namespace="global", store=store)

    assert (await auth.hit("10.0.0.1")).allowed
    assert not (await auth.hit("10.0.0.1")).allowed
    assert (await auth.hit("10.0.0.2")).allowed
    assert (await global_.hit("10.0.0.1")).allowed


def test_limiter_rejects_non_positive_configuration() -> None:
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter("auth", 0, 1_000, InMemorySlidingWindowStore())
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter("auth", 1, 0, InMemorySlidingWindowStore())


@pytest.mark.asyncio
async def test_sweep_drops_idle_keys_only() -> None:
    clock = _MillisClock()
    store = InMemorySlidingWindowStore()
    limiter = _limiter(clock, store=store)
    await limiter.hit("10.0.0.1")
    clock.now_ms += 50_000
    await limiter.hit("10.0.0.2")
    assert len(store) == 2

    removed = store.sweep(clock.now_ms + 20_000, max_window_ms=60_000)

    assert removed == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_sweeper_runs_periodically_and_stops_cleanly() -> None:
    """The sweep task prunes on its interval and cancellation is awaited."""
    clock = _MillisClock()
    store = InMemorySlidingWindowStore()
    await _limiter(clock, store=store).hit("10.0.0.1")
    clock.now_ms += 120_000
    sweeper = RateLimitSweeper(store, interval_seconds=0.01, max_window_ms=60_000, clock=clock)

    sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if len(store) == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert len(store) == 0
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_sweeper_stop_without_start_is_noop() -> None:
    sweeper = RateLimitSweeper(InMemorySlidingWindowStore(), interval_seconds=1, max_window_ms=1)

    await sweeper.stop()

    assert sweeper.running is False


@pytest.mark.asyncio
async def test_redis_store_enforces_limit() -> None:
    clock = _MillisClock()
    limiter = _limiter(clock, max_requests=2, store=RedisSlidingWindowStore(_InMemoryRateLimitRedis()))

    assert (await limiter.hit("10.0.0.1")).allowed
    clock.now_ms += 5_000
    assert (await limiter.hit("10.0.0.1")).allowed
    clock.now_ms += 5_000
    rejected = await limiter.hit("10.0.0.1")

    assert rejected.allowed is False
    assert rejected.retry_after == 50


@pytest.mark.asyncio
async def test_redis_store_fails_open() -> None:
    """Backend outages allow traffic instead of blocking every client."""
    limiter = _limiter(
        _MillisClock(), max_requests=1, store=RedisSlidingWindowStore(_BrokenRedis())
    )

    assert (await limiter.hit("10.0.0.1")).allowed
    assert (await limiter.hit("10.0.0.1")).allowed


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({"x-forwarded-for": "203.0.113.7, 10.0.0.1"}, "203.0.113.7"),
        ({"x-forwarded-for": " ", "x-real-ip": "198.51.100.2"}, "198.51.100.2"),
        ({"x-real-ip": "198.51.100.2"}, "198.51.100.2"),
        ({}, "unknown"),
    ],
)
def test_extract_client_ip(headers: dict[str, str], expected: str) -> None:
    assert extract_client_ip(headers) == expected
