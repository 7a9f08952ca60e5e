"""Per-entity asyncio locks for risk notification read-modify-write cycles."""

from __future__ import annotations

import asyncio
import weakref


class EntityLockRegistry:
    """One lock per (entity_type, entity_id), created on first use.

    Entries are weak: a lock is dropped once no holder or waiter references
    it. Guards a single process only.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def lock(self, entity_type: str, entity_id: str) -> asyncio.Lock:
        key = (str(entity_type), str(entity_id))
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
