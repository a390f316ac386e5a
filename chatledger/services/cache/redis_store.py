"""
Redis Expiring Store

ExpiringStoreInterface on redis.asyncio. Every key is written under the
configured namespace; keys() strips it again so callers only ever see
their own key names.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from chatledger.config import get_settings
from chatledger.services.cache.interface import CacheError, ExpiringStoreInterface


class RedisExpiringStore(ExpiringStoreInterface):
    """
    Redis-backed expiring store.

    Usage:
        store = RedisExpiringStore()                 # URL from settings
        store = RedisExpiringStore(client=my_client) # injected client
    """

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        namespace: Optional[str] = None,
    ):
        settings = get_settings().redis
        self._client = client or aioredis.Redis.from_url(settings.url, decode_responses=True)
        self._namespace = settings.namespace if namespace is None else namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client.get(self._key(key))
        except RedisError as e:
            raise CacheError(f"Redis GET failed: {e}") from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._client.set(self._key(key), value, ex=ttl_seconds)
        except RedisError as e:
            raise CacheError(f"Redis SET failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as e:
            raise CacheError(f"Redis DEL failed: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(self._key(key)))
        except RedisError as e:
            raise CacheError(f"Redis EXISTS failed: {e}") from e

    async def keys(self, prefix: str) -> list[str]:
        found = []
        strip = len(self._namespace)
        try:
            async for key in self._client.scan_iter(match=f"{self._key(prefix)}*", count=100):
                if isinstance(key, bytes):
                    key = key.decode("utf-8")
                found.append(key[strip:])
        except RedisError as e:
            raise CacheError(f"Redis SCAN failed: {e}") from e
        return found

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self._client.ttl(self._key(key))
        except RedisError as e:
            raise CacheError(f"Redis TTL failed: {e}") from e
        # -2 = missing, -1 = no expiry
        return remaining if remaining >= 0 else None

    async def close(self) -> None:
        await self._client.aclose()
