"""Preference storage for feature override maps.

Each preference is a JSON document stored as one field of a Redis hash
(``settings.redis_preferences_namespace``). Batch updates are written with a
single HSET so a bulk toggle costs one round trip.
"""

import json
import logging
from typing import Any, Mapping, Optional, Protocol

from redis.asyncio import Redis

from feedai.config import get_settings
from feedai.services.cache import get_redis_client

logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def get_many(self, keys: list[str]) -> dict[str, Any]: ...

    async def set_many(self, values: Mapping[str, Any]) -> None: ...


class InMemoryPreferenceStore:
    """Process-local store used when Redis is not configured."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self.values: dict[str, Any] = {}
        self.writes = 0
        for key, value in (initial or {}).items():
            self.values[key] = json.loads(json.dumps(value))

    async def get(self, key: str) -> Optional[Any]:
        value = self.values.get(key)
        return json.loads(json.dumps(value)) if value is not None else None

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        return {key: await self.get(key) for key in keys if key in self.values}

    async def set_many(self, values: Mapping[str, Any]) -> None:
        self.writes += 1
        for key, value in values.items():
            self.values[key] = json.loads(json.dumps(value))


class RedisPreferenceStore:
    def __init__(self, redis: Redis, namespace: Optional[str] = None) -> None:
        self._redis = redis
        self.namespace = namespace or get_settings().redis_preferences_namespace

    async def get(self, key: str) -> Optional[Any]:
        rows = await self.get_many([key])
        return rows.get(key)

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        if not keys:
            return {}
        raw = await self._redis.hmget(self.namespace, keys)
        values = {}
        for key, item in zip(keys, raw):
            if item is None:
                continue
            try:
                values[key] = json.loads(item)
            except ValueError:
                logger.warning(f"Ignoring malformed preference '{key}'")
        return values

    async def set_many(self, values: Mapping[str, Any]) -> None:
        if not values:
            return
        await self._redis.hset(
            self.namespace,
            mapping={key: json.dumps(value) for key, value in values.items()},
        )


def get_preference_store() -> PreferenceStore:
    client = get_redis_client()
    if client is None:
        logger.info("Redis not configured, preferences are kept in memory")
        return InMemoryPreferenceStore()
    return RedisPreferenceStore(client)
