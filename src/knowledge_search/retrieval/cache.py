"""Key/value caches with expiry for memoizing search results."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

from knowledge_search.errors import CacheUnavailable


class Cache(Protocol):
    """String cache contract. Not a source of truth."""

    async def get(self, key: str) -> str | None:
        """Return the cached value, or None when absent or expired."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store `value` under `key`; last write wins."""


class InMemoryCache:
    """Process-local cache. Expired entries are dropped on read and purged on write."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        for expired in [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]:
            del self._entries[expired]
        self._entries[key] = (value, now + ttl_seconds)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Cache backed by Redis `GET` / `SET EX`."""

    def __init__(self, url: str, client: redis.Redis | None = None) -> None:
        self.url = url
        self._client = client or redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"Redis GET failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"Redis SET failed: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()
