"""
Per-Key Serialization

Message handling is cooperative per target: two messages for the same
chat never run concurrently, different chats run freely. KeyedLocks
hands out one asyncio.Lock per key and forgets it once nobody holds or
waits on it, so the registry stays as small as the set of busy chats.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLocks:
    """
    Registry of asyncio locks keyed by string.

    Usage:
        locks = KeyedLocks()
        async with locks.hold(f"chat:{chat_id}"):
            ...
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)
