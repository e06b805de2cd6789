import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cms_infra.core import redis as redis_store
from cms_infra.services.rate_limiter import (
    CounterUnavailable,
    FallbackCounter,
    LocalCounter,
    RateLimiter,
    SharedCounter,
    get_rate_limiter,
    reset_rate_limiter,
)
from cms_infra.testing.testing_mocks import FakeClock, mock_redis_client

# 1_700_000_000 sits 20 s into a 60 s window
WINDOW_INDEX = 1_700_000_000 // 60


class TestLocalCounter:

    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_denies(self):
        limiter = RateLimiter(LocalCounter(clock=FakeClock()))

        results = [await limiter.hit("user:u1:GET:/posts", 3, 60) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert all(r.limit == 3 for r in results)
        assert results[0].reset_seconds == 60

    @pytest.mark.asyncio
    async def test_reset_counts_down_within_window(self):
        clock = FakeClock()
        counter = LocalCounter(clock=clock)

        await counter.hit("k", 5, 60)
        clock.advance(45.5)
        result = await counter.hit("k", 5, 60)

        assert result.reset_seconds == 15

    @pytest.mark.asyncio
    async def test_window_rolls_over(self):
        clock = FakeClock()
        counter = LocalCounter(clock=clock)
        for _ in range(2):
            await counter.hit("k", 2, 10)
        assert not (await counter.hit("k", 2, 10)).allowed

        clock.advance(10)
        result = await counter.hit("k", 2, 10)

        assert result.allowed
        assert result.remaining == 1
        assert result.reset_seconds == 10

    @pytest.mark.asyncio
    async def test_keys_are_counted_independently(self):
        counter = LocalCounter(clock=FakeClock())
        await counter.hit("a", 1, 60)

        assert not (await counter.hit("a", 1, 60)).allowed
        assert (await counter.hit("b", 1, 60)).allowed

    @pytest.mark.asyncio
    async def test_expired_buckets_evicted_when_full(self):
        clock = FakeClock()
        counter = LocalCounter(clock=clock, max_keys=2)
        await counter.hit("a", 5, 1)
        await counter.hit("b", 5, 60)
        clock.advance(2)

        await counter.hit("c", 5, 60)

        assert len(counter) == 2
        assert "a" not in counter

    @pytest.mark.asyncio
    async def test_live_buckets_never_exceed_max_keys(self):
        counter = LocalCounter(clock=FakeClock(), max_keys=3)

        for i in range(10):
            await counter.hit(f"ip:10.0.0.{i}:GET:/posts", 5, 60)

        assert len(counter) == 3
        assert "ip:10.0.0.9:GET:/posts" in counter
        assert "ip:10.0.0.0:GET:/posts" not in counter

    @pytest.mark.asyncio
    async def test_dropped_bucket_starts_over(self):
        counter = LocalCounter(clock=FakeClock(), max_keys=1)
        await counter.hit("a", 1, 60)
        assert not (await counter.hit("a", 1, 60)).allowed

        await counter.hit("b", 1, 60)

        assert (await counter.hit("a", 1, 60)).allowed

    @pytest.mark.asyncio
    async def test_restarted_window_moves_to_the_back(self):
        clock = FakeClock()
        counter = LocalCounter(clock=clock, max_keys=2)
        await counter.hit("a", 5, 10)
        await counter.hit("b", 5, 60)
        clock.advance(10)
        await counter.hit("a", 5, 10)

        await counter.hit("c", 5, 60)

        assert "a" in counter
        assert "b" not in counter


class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_zero_limit_disables_limiting(self):
        counter = AsyncMock()
        result = await RateLimiter(counter).hit("k", 0, 60)

        assert result.allowed
        assert result.remaining == 0
        assert result.reset_seconds == 0
        counter.hit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_negative_limit_passes_through_as_given(self):
        result = await RateLimiter(AsyncMock()).hit("k", -5, 60)

        assert result.allowed
        assert result.remaining == -5
        assert result.limit == -5


class TestSharedCounter:

    @pytest.mark.asyncio
    async def test_counts_in_fixed_window_bucket(self):
        client, pipe = mock_redis_client(execute_result=[1, True])
        counter = SharedCounter(client_provider=AsyncMock(return_value=client), clock=FakeClock())

        result = await counter.hit("user:u1:GET:/posts", 3, 60)

        bucket_key = f"rate:user:u1:GET:/posts:{WINDOW_INDEX}"
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.incr.assert_called_once_with(bucket_key)
        pipe.expire.assert_called_once_with(bucket_key, 60, nx=True)
        assert result.allowed
        assert result.remaining == 2
        assert result.reset_seconds == 40

    @pytest.mark.asyncio
    async def test_denies_past_limit(self):
        client, _ = mock_redis_client(execute_result=[4, False])
        counter = SharedCounter(client_provider=AsyncMock(return_value=client), clock=FakeClock())

        result = await counter.hit("k", 3, 60)

        assert not result.allowed
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_not_ready_raises(self):
        counter = SharedCounter(client_provider=AsyncMock(return_value=None))
        with pytest.raises(CounterUnavailable):
            await counter.hit("k", 3, 60)

    @pytest.mark.asyncio
    async def test_empty_result_raises(self):
        client, _ = mock_redis_client(execute_result=[])
        counter = SharedCounter(client_provider=AsyncMock(return_value=client))
        with pytest.raises(CounterUnavailable):
            await counter.hit("k", 3, 60)


class TestFallback:

    @pytest.mark.asyncio
    async def test_store_error_falls_back_to_local(self):
        client, _ = mock_redis_client(execute_error=ConnectionError("redis gone"))
        clock = FakeClock()
        local = LocalCounter(clock=clock)
        shared = SharedCounter(AsyncMock(return_value=client), clock, on_unavailable=MagicMock())
        limiter = RateLimiter(FallbackCounter(shared, local))

        first = await limiter.hit("k", 2, 60)
        second = await limiter.hit("k", 2, 60)
        third = await limiter.hit("k", 2, 60)

        assert (first.remaining, second.remaining) == (1, 0)
        assert not third.allowed
        assert len(local) == 1

    @pytest.mark.asyncio
    async def test_not_ready_store_falls_back_to_local(self):
        limiter = RateLimiter(FallbackCounter(SharedCounter(AsyncMock(return_value=None)), LocalCounter(clock=FakeClock())))

        result = await limiter.hit("k", 5, 60)

        assert result.allowed
        assert result.remaining == 4

    @pytest.mark.asyncio
    async def test_healthy_store_does_not_touch_local(self):
        client, _ = mock_redis_client(execute_result=[1, True])
        local = LocalCounter(clock=FakeClock())
        limiter = RateLimiter(FallbackCounter(SharedCounter(AsyncMock(return_value=client), FakeClock()), local))

        await limiter.hit("k", 5, 60)

        assert len(local) == 0


class TestStoreOutage:

    @pytest.mark.asyncio
    async def test_connection_failure_stops_hitting_the_store(self):
        client, pipe = mock_redis_client(execute_error=ConnectionError("redis gone"))
        client.ping = AsyncMock(side_effect=ConnectionError("redis gone"))
        limiter = RateLimiter(FallbackCounter(SharedCounter(clock=FakeClock()), LocalCounter(clock=FakeClock())))

        with patch.object(redis_store, "_client", client), \
             patch.object(redis_store, "_ready", True), \
             patch.object(redis_store, "_retry_at", 0.0):
            results = [await limiter.hit("k", 10, 60) for _ in range(5)]
            ready = redis_store.is_ready()

        assert pipe.execute.await_count == 1
        client.ping.assert_not_awaited()
        assert not ready
        assert [r.remaining for r in results] == [9, 8, 7, 6, 5]

    @pytest.mark.asyncio
    async def test_command_error_keeps_store_in_rotation(self):
        client, pipe = mock_redis_client(execute_error=ValueError("bad reply"))
        on_unavailable = MagicMock()
        counter = SharedCounter(AsyncMock(return_value=client), FakeClock(), on_unavailable=on_unavailable)

        with pytest.raises(ValueError):
            await counter.hit("k", 10, 60)

        on_unavailable.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_skipped_until_retry_time(self):
        client, pipe = mock_redis_client(execute_result=[1, True])
        client.ping = AsyncMock(return_value=True)

        with patch.object(redis_store, "_client", client), \
             patch.object(redis_store, "_ready", False), \
             patch.object(redis_store, "_retry_at", time.monotonic() + 60):
            with pytest.raises(CounterUnavailable):
                await SharedCounter(clock=FakeClock()).hit("k", 10, 60)

        client.ping.assert_not_awaited()
        pipe.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_successful_ping_puts_store_back(self):
        client, pipe = mock_redis_client(execute_result=[1, True])
        client.ping = AsyncMock(return_value=True)

        with patch.object(redis_store, "_client", client), \
             patch.object(redis_store, "_ready", False), \
             patch.object(redis_store, "_retry_at", 0.0):
            result = await SharedCounter(clock=FakeClock()).hit("k", 10, 60)
            ready = redis_store.is_ready()

        client.ping.assert_awaited_once()
        pipe.execute.assert_awaited_once()
        assert ready
        assert result.remaining == 9

    @pytest.mark.asyncio
    async def test_failed_ping_pushes_next_attempt_out(self):
        client, _ = mock_redis_client()
        client.ping = AsyncMock(side_effect=ConnectionError("still down"))

        with patch.object(redis_store, "_client", client), \
             patch.object(redis_store, "_ready", False), \
             patch.object(redis_store, "_retry_at", 0.0):
            assert not await redis_store.ensure_ready(retry_after=30)
            assert not await redis_store.ensure_ready(retry_after=30)

        client.ping.assert_awaited_once()


class TestProcessLimiter:

    def setup_method(self):
        reset_rate_limiter()

    def teardown_method(self):
        reset_rate_limiter()

    def test_limiter_is_shared(self):
        assert get_rate_limiter() is get_rate_limiter()

    @pytest.mark.asyncio
    async def test_uses_local_counter_when_redis_is_not_configured(self):
        with patch.object(redis_store, "_client", None), patch.object(redis_store, "_ready", False):
            result = await get_rate_limiter().hit("k", 3, 60)

        assert result.allowed
        assert result.remaining == 2


class TestRedisLifecycle:

    @pytest.mark.asyncio
    async def test_empty_url_leaves_store_unready(self):
        assert await redis_store.init_redis("") is None
        assert not redis_store.is_ready()

    @pytest.mark.asyncio
    async def test_failed_ping_leaves_store_unready(self):
        client = AsyncMock()
        client.ping.side_effect = ConnectionError("refused")

        with patch.object(redis_store, "from_url", return_value=client):
            assert await redis_store.init_redis("redis://localhost:6399/0") is None

        client.aclose.assert_awaited_once()
        assert not redis_store.is_ready()

    @pytest.mark.asyncio
    async def test_connect_and_close(self):
        client = AsyncMock()

        with patch.object(redis_store, "from_url", return_value=client):
            assert await redis_store.init_redis("redis://localhost:6379/0") is client
        assert redis_store.is_ready()
        assert redis_store.get_redis() is client

        await redis_store.close_redis()

        client.aclose.assert_awaited_once()
        assert not redis_store.is_ready()
        assert redis_store.get_redis() is None
