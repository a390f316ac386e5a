"""Expiring key-value store package."""

from chatledger.services.cache.interface import CacheError, ExpiringStoreInterface
from chatledger.services.cache.redis_store import RedisExpiringStore

__all__ = [
    "CacheError",
    "ExpiringStoreInterface",
    "RedisExpiringStore",
]
