"""Per-key asyncio locks serializing replace operations on shared scopes."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

LOGGER = logging.getLogger(__name__)


class KeyedLockRegistry:
    """Hand out one :class:`asyncio.Lock` per key, discarding it when unused.

    Locks only serialize callers inside one process and event loop.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the context."""

        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if lock.locked():
                LOGGER.debug("Waiting for lock %s", key)
            async with lock:
                yield
        finally:
            remaining = self._waiters[key] - 1
            if remaining:
                self._waiters[key] = remaining
            else:
                del self._waiters[key]
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


def canonical_lock_key(transcript_set_id: str) -> str:
    return f"canonical:{transcript_set_id}"


def alignment_lock_key(project_id: str, transcript_set_id: str) -> str:
    return f"alignment:{project_id}:{transcript_set_id}"


__all__ = ["KeyedLockRegistry", "alignment_lock_key", "canonical_lock_key"]
