"""
LedgerCore - In-process ledger locks

Posting is single-writer per organization and reconciliation matching is
single-writer per account. These asyncio locks serialize writers inside one
process; the FOR UPDATE row locks taken by the services do the same across
processes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable

logger = logging.getLogger(__name__)


class KeyedLockRegistry:
    """Hands out one asyncio.Lock per key."""

    def __init__(self, name: str):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        """Acquire the locks for all keys, always in sorted order."""
        ordered = sorted(set(keys), key=str)
        acquired = []
        try:
            for key in ordered:
                lock = self.lock_for(key)
                if lock.locked():
                    logger.debug(f"Waiting for {self.name} lock on {key}")
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Global instances
posting_locks = KeyedLockRegistry("posting")
reconciliation_locks = KeyedLockRegistry("reconciliation")
