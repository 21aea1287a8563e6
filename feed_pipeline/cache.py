"""
Cache - Key/value store with per-key TTL and pluggable backends.

Provides:
- MemoryCache: In-process dict with lazy expiry plus a periodic sweep
- RedisCache: Networked store for production
- create_cache: Picks a backend from configuration

Both backends share TTL semantics: no TTL never expires, reads past expiry
behave as absent, ttl() returns -1 for "no expiry" and -2 for "absent".
"""

import asyncio
import hashlib
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .exceptions import CacheUnavailable

logger = logging.getLogger(__name__)

NO_EXPIRY = -1
ABSENT = -2


@dataclass
class CacheEntry:
    key: str
    value: str
    created_at: datetime
    expires_at: float | None  # clock reading, not wall time


class CacheBackend(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a value from cache."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Set a value with optional TTL in seconds. No TTL (or 0) never expires."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a value from cache."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a live key exists."""

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds remaining, -1 for no expiry, -2 if absent."""

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer value, preserving its TTL."""

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        """Set a TTL on an existing key. Returns False if the key is absent."""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Remove expired entries. Returns count of removed entries."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the backend."""


class MemoryCache(CacheBackend):
    """In-process cache used when no external store is configured."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._sweeper: asyncio.Task | None = None

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._store.get(key)
        if entry is None:
            return None

        # Check expiration
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._store[key]
            return None

        return entry

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    async def get(self, key: str) -> str | None:
        entry = self._live_entry(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        self._store[key] = CacheEntry(
            key=key,
            value=value,
            created_at=datetime.now(),
            expires_at=self._expiry(ttl),
        )

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return ABSENT
        if entry.expires_at is None:
            return NO_EXPIRY
        return math.ceil(entry.expires_at - self._clock())

    async def incr(self, key: str) -> int:
        # No await between read and write, so this is atomic within the event loop
        entry = self._live_entry(key)
        if entry is None:
            await self.set(key, "1")
            return 1

        count = int(entry.value) + 1
        entry.value = str(count)
        return count

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._live_entry(key)
        if entry is None:
            return False
        entry.expires_at = self._expiry(ttl)
        return True

    async def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [
            key for key, entry in self._store.items()
            if entry.expires_at is not None and now >= entry.expires_at
        ]
        for key in expired:
            del self._store[key]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired cache entries", extra={"removed": len(expired)})
        return len(expired)

    def start_sweeper(self, interval: float = 60.0) -> None:
        """Periodically drop expired keys that are never read again."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(interval))

    async def _sweep_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            await self.cleanup_expired()

    async def close(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self._store.clear()

    @property
    def size(self) -> int:
        return len(self._store)


class RedisCache(CacheBackend):
    """
    Redis-backed cache for production deployments.

    Connection failures surface as CacheUnavailable and the caller decides how
    to degrade.
    """

    def __init__(self, url: str | None = None, client: "redis.Redis | None" = None):
        if client is None:
            if not url:
                raise ValueError("RedisCache requires a url or a client")
            client = redis.Redis.from_url(url, decode_responses=True)
        self._client = client

    async def _run(self, op, *args, **kwargs):
        try:
            return await op(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise CacheUnavailable(f"Redis unavailable: {e}") from e

    async def get(self, key: str) -> str | None:
        return await self._run(self._client.get, key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if ttl:
            await self._run(self._client.set, key, value, ex=ttl)
        else:
            await self._run(self._client.set, key, value)

    async def delete(self, key: str) -> None:
        await self._run(self._client.delete, key)

    async def exists(self, key: str) -> bool:
        return await self._run(self._client.exists, key) == 1

    async def ttl(self, key: str) -> int:
        return await self._run(self._client.ttl, key)

    async def incr(self, key: str) -> int:
        return await self._run(self._client.incr, key)

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._run(self._client.expire, key, ttl))

    async def cleanup_expired(self) -> int:
        # Redis evicts expired keys itself
        return 0

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(redis_url: str | None = None) -> CacheBackend:
    """Factory function: Redis when a URL is configured, in-process otherwise."""
    if redis_url:
        logger.info("Initializing Redis cache")
        return RedisCache(url=redis_url)

    logger.info("Initializing in-process cache")
    return MemoryCache()


def cache_key(prefix: str, content: str) -> str:
    """Deterministic cache key for arbitrary content."""
    digest = hashlib.md5(content.encode()).hexdigest()
    return f"{prefix}:{digest}"
