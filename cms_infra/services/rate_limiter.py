import logging
import math
import time
from typing import Awaitable, Callable, Dict, Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from cms_infra.core import redis as redis_store
from cms_infra.schemas.rate_limit import HitResult

log = logging.getLogger(__name__)

Clock = Callable[[], float]
ClientProvider = Callable[[], Awaitable[Optional[Redis]]]

# Errors that mean the store itself is unreachable, not that one command failed
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class CounterUnavailable(Exception):
    """The shared counter store can't answer right now."""


class Counter(Protocol):
    async def hit(self, key: str, limit: int, window_sec: int) -> HitResult: ...


async def _ready_client() -> Optional[Redis]:
    return redis_store.get_redis() if await redis_store.ensure_ready() else None


class SharedCounter:
    """
    Fixed-window counter in Redis. All hits in the same window land on
    `rate:<key>:<floor(now / window)>`, so old windows expire on their own.

    A connection failure calls `on_unavailable`, which by default takes the store out
    of rotation until a ping succeeds again; until then `client_provider` returns None.
    """

    def __init__(
        self,
        client_provider: ClientProvider = _ready_client,
        clock: Clock = time.time,
        on_unavailable: Callable[[], None] = redis_store.mark_unavailable,
    ):
        self._client_provider = client_provider
        self._clock = clock
        self._on_unavailable = on_unavailable

    async def hit(self, key: str, limit: int, window_sec: int) -> HitResult:
        client = await self._client_provider()
        if client is None:
            raise CounterUnavailable("shared counter store is not ready")

        now = int(self._clock())
        bucket_key = f"rate:{key}:{now // window_sec}"

        # INCR and EXPIRE NX go out as one MULTI/EXEC; only the first hit of a window sets the TTL
        pipe = client.pipeline(transaction=True)
        pipe.incr(bucket_key)
        pipe.expire(bucket_key, window_sec, nx=True)
        try:
            result = await pipe.execute()
        except CONNECTION_ERRORS as e:
            self._on_unavailable()
            raise CounterUnavailable(f"shared counter store unreachable: {e}") from e
        if not result:
            raise CounterUnavailable("shared counter store returned an empty result")

        count = int(result[0])
        return HitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            limit=limit,
            reset_seconds=window_sec - (now % window_sec),
        )


class _Bucket:
    __slots__ = ("count", "reset_at")

    def __init__(self, count: int, reset_at: float):
        self.count = count
        self.reset_at = reset_at  # epoch milliseconds


class LocalCounter:
    """
    In-process fallback counter. Each process keeps its own buckets and they are
    never reconciled with the shared store or with other processes.

    At most `max_keys` buckets are kept. Buckets sit in the order they were (re)started,
    so expired ones collect at the front and are dropped from there; when the map is
    full of live buckets the oldest one goes, which only ever lets extra hits through.
    """

    def __init__(self, clock: Clock = time.time, max_keys: int = 10_000):
        self._clock = clock
        self._max_keys = max_keys
        self._buckets: Dict[str, _Bucket] = {}

    def __len__(self):
        return len(self._buckets)

    def __contains__(self, key: str):
        return key in self._buckets

    async def hit(self, key: str, limit: int, window_sec: int) -> HitResult:
        # No awaits below: on the event loop this whole update runs uninterrupted
        now_ms = self._clock() * 1000
        window_ms = window_sec * 1000
        bucket = self._buckets.get(key)

        if bucket is None or bucket.reset_at <= now_ms:
            self._buckets.pop(key, None)
            self._make_room(now_ms)
            self._buckets[key] = _Bucket(1, now_ms + window_ms)
            return HitResult(allowed=True, remaining=limit - 1, limit=limit, reset_seconds=math.ceil(window_sec))

        bucket.count += 1
        return HitResult(
            allowed=bucket.count <= limit,
            remaining=max(0, limit - bucket.count),
            limit=limit,
            reset_seconds=max(1, math.ceil((bucket.reset_at - now_ms) / 1000)),
        )

    def _make_room(self, now_ms: float):
        while self._buckets:
            oldest_key = next(iter(self._buckets))
            if self._buckets[oldest_key].reset_at > now_ms and len(self._buckets) < self._max_keys:
                return
            del self._buckets[oldest_key]


class FallbackCounter:
    """Asks `primary` first and answers from `fallback` on any primary failure."""

    def __init__(self, primary: Counter, fallback: Counter):
        self.primary = primary
        self.fallback = fallback

    async def hit(self, key: str, limit: int, window_sec: int) -> HitResult:
        try:
            return await self.primary.hit(key, limit, window_sec)
        except Exception as e:
            log.debug(f"Shared counter failed for {key}, using local fallback: {e}")
        return await self.fallback.hit(key, limit, window_sec)


class RateLimiter:
    """Answers "is this key over quota in this window" for the quota gate."""

    def __init__(self, counter: Counter):
        self.counter = counter

    async def hit(self, key: str, limit: int, window_sec: int) -> HitResult:
        # limit <= 0 disables limiting for the key; remaining mirrors the given limit as-is
        if limit <= 0:
            return HitResult(allowed=True, remaining=limit, limit=limit, reset_seconds=0)
        return await self.counter.hit(key, limit, window_sec)


_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter: Redis when it is ready, local buckets otherwise."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(FallbackCounter(SharedCounter(), LocalCounter()))
    return _limiter


def reset_rate_limiter():
    global _limiter
    _limiter = None
