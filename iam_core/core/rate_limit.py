"""Sliding-window rate limiting keyed by client IP."""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from typing import Protocol
from uuid import uuid4

import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)

MillisClock = Callable[[], int]


def _millis_clock() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int = 0


@dataclass(frozen=True)
class WindowState:
    """Hit count inside the window and the oldest in-window hit, after a check."""

    allowed: bool
    count: int
    oldest_ms: int | None


class SlidingWindowStore(Protocol):
    """Storage for per-key hit timestamps."""

    async def hit(self, key: str, now_ms: int, window_ms: int, limit: int) -> WindowState:
        """Prune, count and record one hit unless the limit is reached."""


class InMemorySlidingWindowStore:
    """Process-local timestamp lists; counters are lost on restart."""

    def __init__(self) -> None:
        self._hits: dict[str, list[int]] = {}
        self._lock = Lock()

    async def hit(self, key: str, now_ms: int, window_ms: int, limit: int) -> WindowState:
        window_start = now_ms - window_ms
        with self._lock:
            timestamps = [ts for ts in self._hits.get(key, []) if ts > window_start]
            if len(timestamps) >= limit:
                self._hits[key] = timestamps
                return WindowState(allowed=False, count=len(timestamps), oldest_ms=timestamps[0])
            timestamps.append(now_ms)
            self._hits[key] = timestamps
            return WindowState(allowed=True, count=len(timestamps), oldest_ms=timestamps[0])

    def sweep(self, now_ms: int, max_window_ms: int) -> int:
        """Drop timestamps older than the longest window; returns keys removed."""
        cutoff = now_ms - max_window_ms
        removed = 0
        with self._lock:
            for key in list(self._hits):
                kept = [ts for ts in self._hits[key] if ts > cutoff]
                if kept:
                    self._hits[key] = kept
                else:
                    del self._hits[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)


class SlidingWindowRedis(Protocol):
    """Protocol for Redis operations used by the rate limiter."""

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        """Delete members with score inside an inclusive range."""

    async def zcard(self, key: str) -> int:
        """Return sorted-set cardinality."""

    async def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> list:
        """Return a slice of the sorted set."""

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        """Add one or more scored members to sorted set."""

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Apply TTL to key."""


class RedisSlidingWindowStore:
    """Sorted-set window shared across instances; fails open when Redis is down."""

    def __init__(self, redis_client: SlidingWindowRedis, key_prefix: str = "rate_limit") -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix

    async def hit(self, key: str, now_ms: int, window_ms: int, limit: int) -> WindowState:
        bucket_key = f"{self._key_prefix}:{key}"
        try:
            await self._redis.zremrangebyscore(bucket_key, "-inf", now_ms - window_ms)
            current_count = await self._redis.zcard(bucket_key)
            oldest = await self._redis.zrange(bucket_key, 0, 0, withscores=True)
            oldest_ms = int(oldest[0][1]) if oldest else None
            if current_count >= limit:
                return WindowState(allowed=False, count=current_count, oldest_ms=oldest_ms)
            await self._redis.zadd(bucket_key, {f"{now_ms}:{uuid4().hex}": now_ms})
            await self._redis.expire(bucket_key, math.ceil(window_ms / 1000))
        except RedisError as exc:
            logger.warning("rate_limit_backend_unavailable", key=bucket_key, error=str(exc))
            return WindowState(allowed=True, count=0, oldest_ms=None)
        return WindowState(
            allowed=True,
            count=current_count + 1,
            oldest_ms=oldest_ms if oldest_ms is not None else now_ms,
        )


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per ``window_ms`` for each client in a namespace."""

    def __init__(
        self,
        namespace: str,
        max_requests: int,
        window_ms: int,
        store: SlidingWindowStore,
        clock: MillisClock = _millis_clock,
    ) -> None:
        if max_requests < 1 or window_ms < 1:
            raise ValueError("Rate limit and window must be positive.")
        self.namespace = namespace
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._store = store
        self._clock = clock

    async def hit(self, client_ip: str) -> RateLimitDecision:
        """Count one request from a client and decide whether it may proceed."""
        now_ms = self._clock()
        state = await self._store.hit(
            f"{self.namespace}:{client_ip}", now_ms, self.window_ms, self.max_requests
        )
        reset_at = math.ceil((now_ms + self.window_ms) / 1000)
        if state.allowed:
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=max(self.max_requests - state.count, 0),
                reset_at=reset_at,
            )

        oldest_ms = state.oldest_ms if state.oldest_ms is not None else now_ms
        retry_after = max(math.ceil((oldest_ms + self.window_ms - now_ms) / 1000), 1)
        return RateLimitDecision(
            allowed=False,
            limit=self.max_requests,
            remaining=0,
            reset_at=reset_at,
            retry_after=retry_after,
        )


class RateLimitSweeper:
    """Periodically prune the in-memory store; owned by the application lifespan."""

    def __init__(
        self,
        store: InMemorySlidingWindowStore,
        interval_seconds: float,
        max_window_ms: int,
        clock: MillisClock = _millis_clock,
    ) -> None:
        self._store = store
        self._interval_seconds = interval_seconds
        self._max_window_ms = max_window_ms
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="rate-limit-sweeper")

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def sweep_once(self) -> int:
        removed = self._store.sweep(self._clock(), self._max_window_ms)
        if removed:
            logger.debug("rate_limit_swept", removed_keys=removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            self.sweep_once()


def extract_client_ip(headers: Mapping[str, str]) -> str:
    """Resolve the client IP: first X-Forwarded-For entry, then X-Real-IP, then ``unknown``."""
    forwarded_for = (headers.get("x-forwarded-for") or "").strip()
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return "unknown"
