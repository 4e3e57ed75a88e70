"""Per-organization async locks.

Nonce and reputation mutations for one organization are serialized; work for
different organizations proceeds in parallel.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class OrgLockRegistry:
    """Lazily created ``asyncio.Lock`` per organization id.

    Entries are weakly referenced: a lock lives while some task holds or
    waits on it and is dropped once nothing refers to it, so the registry
    stays proportional to the organizations currently in flight.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, org_id: str) -> asyncio.Lock:
        lock = self._locks.get(org_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[org_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, org_id: str) -> AsyncIterator[None]:
        """Hold the lock for ``org_id`` for the duration of the block."""
        lock = self.get(org_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
