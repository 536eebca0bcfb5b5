"""
Redis-backed CacheStorage.

Used for the token revocation list and one-time action tokens, so every API
process sharing the same Redis observes revocations made by any other.
Values are stored as JSON; TTLs use SETEX so expired entries prune themselves.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from tracker.storage.base import CacheStorage, StorageError

logger = logging.getLogger(__name__)


class RedisCacheStorage(CacheStorage):
    """CacheStorage on top of a redis.asyncio client."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheStorage:
        client = redis.from_url(url, decode_responses=True)
        logger.info(f"Cache: using Redis at {url.split('@')[-1]}")
        return cls(client)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        try:
            if ttl:
                await self._client.setex(key, ttl, json.dumps(value))
            else:
                await self._client.set(key, json.dumps(value))
        except RedisError as e:
            raise StorageError(f"Redis SET failed for {key}") from e

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            raise StorageError(f"Redis GET failed for {key}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding undecodable cache value at {key}")
            return None

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except RedisError as e:
            raise StorageError(f"Redis DEL failed for {key}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except RedisError as e:
            raise StorageError(f"Redis EXISTS failed for {key}") from e

    async def close(self) -> None:
        await self._client.aclose()
