"""
Tests for the per-entity lock registry.
"""

import asyncio
import gc

import pytest

from escalation.locks import EntityLockRegistry

pytestmark = pytest.mark.asyncio


class TestEntityLockRegistry:
    async def test_same_entity_shares_lock(self):
        registry = EntityLockRegistry()
        held = registry.lock("provider", "stripe")

        assert registry.lock("provider", "stripe") is held
        assert registry.lock("merchant", "stripe") is not held

    async def test_ids_are_normalized_to_strings(self):
        registry = EntityLockRegistry()
        held = registry.lock("country", 57)
        assert registry.lock("country", "57") is held

    async def test_released_locks_are_evicted(self):
        registry = EntityLockRegistry()
        for entity_id in range(100):
            async with registry.lock("route", f"m|p|card|{entity_id}"):
                pass
        gc.collect()

        assert len(registry) == 0

    async def test_lock_kept_while_waiters_remain(self):
        registry = EntityLockRegistry()
        order = []

        async def worker(name):
            async with registry.lock("provider", "stripe"):
                order.append(name)
                await asyncio.sleep(0.01)

        await asyncio.gather(worker("first"), worker("second"))

        assert order == ["first", "second"]
        gc.collect()
        assert len(registry) == 0
