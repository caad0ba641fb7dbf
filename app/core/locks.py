"""
Keyed in-process locks.

Serializes writes that must not interleave: quota check + case insert for
one condominium, and defense / decision / send on one case. The database
row lock (SELECT ... FOR UPDATE) covers multiple workers on PostgreSQL;
these locks cover concurrent requests inside one worker, which is all SQLite
gets.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


condominium_locks = KeyedLocks()
case_locks = KeyedLocks()
notification_locks = KeyedLocks()
