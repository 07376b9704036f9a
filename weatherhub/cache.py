"""
Cache stores.

The fetch pipeline only needs `get` and `set` with a TTL. Two backends:
- MemoryCache: in-process dict, used in development and tests
- RedisCache: shared networked cache, used when REDIS_URL is configured

Values are JSON-compatible payloads (dicts/lists), never model instances,
so both backends behave the same.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis

from .settings import Settings

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...


class MemoryCache:
    """TTL cache held in process memory. Expired entries read as absent."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._storage: Dict[str, Tuple[float, Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        item = self._storage.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= self._clock():
            self._storage.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._storage[key] = (self._clock() + ttl_seconds, value)

    def clear(self) -> None:
        self._storage.clear()


class RedisCache:
    """Redis-backed cache; values are stored as JSON strings with SETEX."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True, socket_connect_timeout=5))

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._client.setex(key, ttl_seconds, json.dumps(value, default=str))

    async def aclose(self) -> None:
        await self._client.aclose()


def build_cache(settings: Settings) -> CacheStore:
    if settings.redis_url:
        logger.info("Using Redis cache at %s", settings.redis_url)
        return RedisCache.from_url(settings.redis_url)
    logger.info("REDIS_URL not set, using in-memory cache")
    return MemoryCache()
