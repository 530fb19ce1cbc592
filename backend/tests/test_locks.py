from __future__ import annotations

import asyncio

import pytest

from healthpulse.utils.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized() -> None:
    locks = KeyedLock()
    events = []

    async def worker(name: str) -> None:
        async with locks.hold("m1"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_keys_do_not_wait() -> None:
    locks = KeyedLock()
    inside = asyncio.Event()
    released = asyncio.Event()

    async def holder() -> None:
        async with locks.hold("m1"):
            inside.set()
            await released.wait()

    task = asyncio.create_task(holder())
    await inside.wait()

    async with locks.hold("m2"):
        assert locks.locked("m1")
        assert locks.locked("m2")

    released.set()
    await task


@pytest.mark.asyncio
async def test_entries_are_dropped_when_unused() -> None:
    locks = KeyedLock()

    async with locks.hold("m1"):
        assert len(locks) == 1

    assert len(locks) == 0
    assert not locks.locked("m1")


@pytest.mark.asyncio
async def test_entry_survives_while_someone_waits() -> None:
    locks = KeyedLock()
    first_in = asyncio.Event()
    release = asyncio.Event()

    async def first() -> None:
        async with locks.hold("m1"):
            first_in.set()
            await release.wait()

    async def second() -> None:
        async with locks.hold("m1"):
            pass

    t1 = asyncio.create_task(first())
    await first_in.wait()
    t2 = asyncio.create_task(second())
    await asyncio.sleep(0)

    release.set()
    await asyncio.gather(t1, t2)

    assert len(locks) == 0
