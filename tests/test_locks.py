"""Tests des verrous par livraison / Per-delivery lock tests."""

import asyncio

from delivery_tracking.services.locks import KeyedLocks


async def test_same_key_is_serialised():
    locks = KeyedLocks()
    order = []

    async def work(name: str):
        async with locks.hold(1):
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    await asyncio.gather(work("a"), work("b"))
    assert order == ["a-start", "a-end", "b-start", "b-end"]


async def test_different_keys_run_in_parallel():
    locks = KeyedLocks()
    both_inside = asyncio.Event()
    inside = set()

    async def work(key: int):
        async with locks.hold(key):
            inside.add(key)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), 1.0)

    await asyncio.gather(work(1), work(2))
    assert inside == {1, 2}


async def test_discard_keeps_held_lock():
    locks = KeyedLocks()
    async with locks.hold(7):
        locks.discard(7)
        assert len(locks) == 1
    locks.discard(7)
    assert len(locks) == 0


async def test_discard_right_after_release_keeps_waiter_serialised():
    locks = KeyedLocks()
    inside = 0
    seen = []

    async def critical():
        nonlocal inside
        inside += 1
        seen.append(inside)
        await asyncio.sleep(0.01)
        inside -= 1

    async def first():
        async with locks.hold(1):
            await critical()
        # Le suivant est reveille mais n'a pas encore repris / The waiter is woken but has not resumed yet
        locks.discard(1)
        async with locks.hold(1):
            await critical()

    async def waiter():
        async with locks.hold(1):
            await critical()

    await asyncio.gather(first(), waiter())
    assert seen == [1, 1, 1]
    assert len(locks) == 0


async def test_idle_entries_are_dropped():
    locks = KeyedLocks()
    for key in range(5):
        async with locks.hold(key):
            assert locks.in_use(key)
    assert len(locks) == 0
    assert not locks.in_use(0)
