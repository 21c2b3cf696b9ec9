"""Durable cache tier backed by Redis.

Translations and article summaries live in one Redis hash per namespace
(field = cache key, value = content), which gives us batched reads (HMGET),
batched writes (HSET mapping, or pipelined HSETNX for add-only entries),
prefix listing and clear-all in single round trips.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Protocol

from redis.asyncio import Redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from feedai.config import get_settings
from feedai.exceptions import CacheWriteFailure

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None


def get_redis_client() -> Optional[Redis]:
    settings = get_settings()
    if not settings.redis_url:
        return None

    global _redis_client
    if _redis_client is None:
        retry = Retry(ExponentialBackoff(), retries=3)
        _redis_client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            retry=retry,
            retry_on_error=[ConnectionError, TimeoutError],
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        logger.info("Redis client initialized with retry logic")
    return _redis_client


class DurableCacheStore(Protocol):
    async def get_many(self, keys: Iterable[str]) -> dict[str, str]: ...

    async def get_by_prefix(self, prefix: str, limit: Optional[int] = None) -> dict[str, str]: ...

    async def set_many(self, entries: Mapping[str, str]) -> None: ...

    async def add_many(self, entries: Mapping[str, str]) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def count(self) -> int: ...


class RedisCacheStore:
    """DurableCacheStore over a single Redis hash.

    Reads raise RedisError to the caller (the cache tier logs and treats it
    as a miss); writes raise CacheWriteFailure.
    """

    def __init__(self, redis: Redis, namespace: Optional[str] = None) -> None:
        self._redis = redis
        self.namespace = namespace or get_settings().redis_cache_namespace

    async def get_many(self, keys: Iterable[str]) -> dict[str, str]:
        keys = list(keys)
        if not keys:
            return {}
        values = await self._redis.hmget(self.namespace, keys)
        return {key: value for key, value in zip(keys, values) if value is not None}

    async def get_by_prefix(self, prefix: str, limit: Optional[int] = None) -> dict[str, str]:
        entries: dict[str, str] = {}
        async for key, value in self._redis.hscan_iter(self.namespace, match=_escape_glob(prefix) + "*"):
            entries[key] = value
            if limit and len(entries) >= limit:
                break
        return entries

    async def set_many(self, entries: Mapping[str, str]) -> None:
        if not entries:
            return
        try:
            await self._redis.hset(self.namespace, mapping=dict(entries))
        except RedisError as exc:
            raise CacheWriteFailure(f"Failed to write {len(entries)} cache entries: {exc}") from exc

    async def add_many(self, entries: Mapping[str, str]) -> None:
        """Write entries whose keys are not stored yet; existing values are kept."""
        if not entries:
            return
        pipe = self._redis.pipeline(transaction=False)
        for key, value in entries.items():
            pipe.hsetnx(self.namespace, key, value)
        try:
            await pipe.execute()
        except RedisError as exc:
            raise CacheWriteFailure(f"Failed to add {len(entries)} cache entries: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.hdel(self.namespace, key)
        except RedisError as exc:
            raise CacheWriteFailure(f"Failed to delete cache key '{key}': {exc}") from exc

    async def clear(self) -> None:
        try:
            await self._redis.delete(self.namespace)
        except RedisError as exc:
            raise CacheWriteFailure(f"Failed to clear cache namespace '{self.namespace}': {exc}") from exc

    async def count(self) -> int:
        return int(await self._redis.hlen(self.namespace))


def _escape_glob(pattern: str) -> str:
    for char in ("\\", "*", "?", "[", "]"):
        pattern = pattern.replace(char, "\\" + char)
    return pattern


def get_durable_store() -> Optional[RedisCacheStore]:
    """Return the Redis-backed store, or None when Redis is not configured."""
    client = get_redis_client()
    if client is None:
        return None
    return RedisCacheStore(client)
