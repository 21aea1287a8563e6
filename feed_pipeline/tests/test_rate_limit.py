"""
Tests for the fixed-window rate limiter.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from feed_pipeline.exceptions import CacheUnavailable
from feed_pipeline.rate_limit import RateLimitConfig, RateLimiter


@pytest.fixture
def limiter(memory_cache):
    return RateLimiter(memory_cache)


class TestRateLimitWindow:

    @pytest.mark.asyncio
    async def test_allows_up_to_max_then_denies(self, limiter):
        config = RateLimitConfig(max_requests=3, window_ms=60_000)

        results = [await limiter.check("client", config) for _ in range(4)]

        assert [(r.allowed, r.remaining) for r in results] == [
            (True, 2), (True, 1), (True, 0), (False, 0),
        ]

    @pytest.mark.asyncio
    async def test_retry_after_is_remaining_window(self, limiter, clock):
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        await limiter.check("client", config)
        clock.advance(45)

        denied = await limiter.check("client", config)

        assert denied.allowed is False
        assert denied.retry_after == 15

    @pytest.mark.asyncio
    async def test_later_requests_do_not_extend_window(self, limiter, memory_cache, clock):
        config = RateLimitConfig(max_requests=10, window_ms=60_000)
        await limiter.check("client", config)
        clock.advance(40)
        await limiter.check("client", config)

        assert await memory_cache.ttl("ratelimit:client") == 20

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, limiter, clock):
        config = RateLimitConfig(max_requests=1, window_ms=1_000)
        await limiter.check("client", config)
        assert (await limiter.check("client", config)).allowed is False

        clock.advance(1)
        result = await limiter.check("client", config)
        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_subjects_are_independent(self, limiter):
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        assert (await limiter.check("a", config)).allowed
        assert (await limiter.check("b", config)).allowed
        assert not (await limiter.check("a", config)).allowed

    @pytest.mark.asyncio
    async def test_key_prefix(self, limiter, memory_cache):
        config = RateLimitConfig(max_requests=5, window_ms=60_000, key_prefix="ratelimit:summarizer")
        await limiter.check("global", config)
        assert await memory_cache.get("ratelimit:summarizer:global") == "1"

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_over_admit(self, limiter):
        config = RateLimitConfig(max_requests=5, window_ms=60_000)

        results = await asyncio.gather(*(limiter.check("burst", config) for _ in range(20)))

        assert sum(r.allowed for r in results) == 5

    def test_window_seconds_rounds_up(self):
        assert RateLimitConfig(1, 1500).window_seconds == 2
        assert RateLimitConfig(1, 10).window_seconds == 1


class TestRateLimitFailOpen:

    @pytest.mark.asyncio
    async def test_cache_error_allows_request(self):
        cache = AsyncMock()
        cache.get.side_effect = CacheUnavailable("down")
        limiter = RateLimiter(cache)

        result = await limiter.check("client", RateLimitConfig(max_requests=10, window_ms=60_000))

        assert result.allowed is True
        assert result.remaining == 9


class TestRateLimitStatus:

    @pytest.mark.asyncio
    async def test_status_does_not_count(self, limiter):
        config = RateLimitConfig(max_requests=2, window_ms=60_000)
        await limiter.check("client", config)

        status = await limiter.status("client", config)
        again = await limiter.status("client", config)

        assert status.remaining == again.remaining == 1

    @pytest.mark.asyncio
    async def test_reset_clears_counter(self, limiter):
        config = RateLimitConfig(max_requests=1, window_ms=60_000)
        await limiter.check("client", config)
        await limiter.reset("client")

        assert (await limiter.check("client", config)).allowed is True
