"""Tests for the per-key asyncio lock."""

import asyncio

import pytest

from yardbook.utils.locks import KeyedLock


@pytest.mark.unit
@pytest.mark.asyncio
class TestKeyedLock:

    async def test_same_key_serializes(self):
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("b-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_different_keys_interleave(self):
        locks = KeyedLock()
        order = []

        async def worker(key):
            async with locks.hold(key):
                order.append(f"{key}-in")
                await asyncio.sleep(0)
                order.append(f"{key}-out")

        await asyncio.gather(worker("b-1"), worker("b-2"))
        assert order == ["b-1-in", "b-2-in", "b-1-out", "b-2-out"]

    async def test_locks_are_dropped_when_idle(self):
        locks = KeyedLock()
        async with locks.hold("b-1"):
            assert locks.is_locked("b-1")
            assert len(locks) == 1
        assert not locks.is_locked("b-1")
        assert len(locks) == 0

    async def test_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("b-1"):
                raise RuntimeError("boom")
        assert len(locks) == 0
