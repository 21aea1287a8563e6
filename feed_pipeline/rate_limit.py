"""
Rate limiting for expensive downstream calls.

Fixed-window counters stored in the shared cache, keyed "{prefix}:{subject}".
The first request in a window sets the window length; later requests increment
through the cache's atomic incr and never extend it. A cache failure fails open.
"""

import logging
import math
import time
from dataclasses import dataclass

from .cache import CacheBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_ms: int
    key_prefix: str = "ratelimit"

    @property
    def window_seconds(self) -> int:
        return max(1, math.ceil(self.window_ms / 1000))


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int | None = None


class RateLimiter:
    """Best-effort fixed-window limiter backed by a CacheBackend."""

    def __init__(self, cache: CacheBackend):
        self.cache = cache

    async def check(self, subject: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one request for subject and report whether it is allowed."""
        key = f"{config.key_prefix}:{subject}"

        try:
            current = int(await self.cache.get(key) or 0)
            if current >= config.max_requests:
                return await self._deny(key, subject, config)

            count = await self.cache.incr(key)
            ttl = await self.cache.ttl(key)
            if count == 1 or ttl < 0:
                # First request in a fresh window
                await self.cache.expire(key, config.window_seconds)
                ttl = config.window_seconds

            if count > config.max_requests:
                # Lost a race with concurrent callers past the peek above
                return await self._deny(key, subject, config)

            remaining = config.max_requests - count
            logger.debug(
                f"Rate limit check passed for {key}",
                extra={"rate_key": key, "allowed": True, "remaining": remaining},
            )
            return RateLimitResult(
                allowed=True,
                remaining=remaining,
                reset_at=time.time() + ttl,
            )
        except Exception as e:
            logger.warning(
                f"Rate limit check failed, allowing request: {e}",
                extra={"rate_key": key, "error": str(e)},
            )
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - 1,
                reset_at=time.time() + config.window_seconds,
            )

    async def _deny(self, key: str, subject: str, config: RateLimitConfig) -> RateLimitResult:
        ttl = await self.cache.ttl(key)
        retry_after = ttl if ttl > 0 else config.window_seconds
        logger.info(
            f"Rate limit exceeded for {subject}",
            extra={"rate_key": key, "allowed": False, "retry_after": retry_after},
        )
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_at=time.time() + retry_after,
            retry_after=retry_after,
        )

    async def status(self, subject: str, config: RateLimitConfig) -> RateLimitResult:
        """Report the current window for subject without counting a request."""
        key = f"{config.key_prefix}:{subject}"
        current = int(await self.cache.get(key) or 0)
        ttl = await self.cache.ttl(key)

        return RateLimitResult(
            allowed=current < config.max_requests,
            remaining=max(0, config.max_requests - current),
            reset_at=time.time() + (ttl if ttl > 0 else config.window_seconds),
            retry_after=ttl if ttl > 0 else None,
        )

    async def reset(self, subject: str, key_prefix: str = "ratelimit") -> None:
        """Clear the counter for subject."""
        await self.cache.delete(f"{key_prefix}:{subject}")
