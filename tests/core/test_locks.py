"""Tests for per-key asyncio locks."""

import asyncio

from app.core.locks import KeyedLock


class TestKeyedLock:
    """Serialization per key and cleanup of idle keys."""

    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name: str):
            async with locks.hold("coordinator"):
                events.append(f"{name}:start")
                await asyncio.sleep(0.01)
                events.append(f"{name}:end")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (
            ["a:start", "a:end", "b:start", "b:end"],
            ["b:start", "b:end", "a:start", "a:end"],
        )

    async def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        inside = asyncio.Event()
        released = asyncio.Event()

        async def first():
            async with locks.hold("coordinator"):
                inside.set()
                await released.wait()

        async def second():
            await inside.wait()
            async with locks.hold("engineer"):
                released.set()

        await asyncio.wait_for(asyncio.gather(first(), second()), timeout=1)

    async def test_idle_keys_are_dropped(self):
        locks = KeyedLock()
        async with locks.hold("u1"):
            assert len(locks) == 1
        assert len(locks) == 0

    async def test_lock_released_on_error(self):
        locks = KeyedLock()
        try:
            async with locks.hold("u1"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        async with locks.hold("u1"):
            pass
        assert len(locks) == 0
