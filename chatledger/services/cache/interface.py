"""
Expiring Key-Value Store Interface

The live conversation window and per-target session state are short
lived; they sit in an expiring store instead of the database. Values
are strings (JSON documents); callers own serialization.
"""

from abc import ABC, abstractmethod
from typing import Optional


class ExpiringStoreInterface(ABC):
    """Operations the context cache, session store and sweeper need."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Write value; ttl_seconds resets the expiry (None = no expiry)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def keys(self, prefix: str) -> list[str]:
        """All live keys starting with prefix."""
        pass

    @abstractmethod
    async def ttl(self, key: str) -> Optional[int]:
        """
        Seconds until key expires.

        Returns None if the key is missing or has no expiry.
        """
        pass


class CacheError(Exception):
    """The expiring store could not be reached or returned garbage."""
    pass
