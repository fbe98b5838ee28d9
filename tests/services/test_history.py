import asyncio

import pytest

from services.history import BoundedHistory, KeyedLocks


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_history_keeps_newest_entries_per_key():
    history = BoundedHistory(max_per_key=3)
    for i in range(5):
        history.add("alice", i)
    history.add("bob", "x")

    assert history.get("alice") == [2, 3, 4]
    assert history.get("bob") == ["x"]
    assert len(history) == 4


def test_history_ttl_sweep_drops_expired_and_empty_keys():
    clock = Ticker()
    history = BoundedHistory(max_per_key=10, ttl_seconds=60, clock=clock)
    history.add("alice", "old")
    clock.now = 50
    history.add("alice", "new")
    history.add("bob", "old")
    clock.now = 100

    assert history.sweep() == 1
    assert history.get("alice") == ["new"]

    clock.now = 200
    assert history.get("bob") == []
    assert history.sweep() == 1
    assert len(history) == 0


def test_history_expires_keys_that_are_never_read_again():
    clock = Ticker()
    history = BoundedHistory(max_per_key=10, ttl_seconds=60, clock=clock)
    for i in range(500):
        clock.now = i * 61
        history.add(f"user-{i}", "swap")

    assert len(history) <= 2
    assert history.get("user-0") == []
    assert history.get("user-499") == ["swap"]


def test_empty_injected_history_is_used():
    history = BoundedHistory(max_per_key=1)
    assert not history

    history.add("alice", 1)
    history.add("alice", 2)

    assert history.get("alice") == [2]


def test_history_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        BoundedHistory(max_per_key=0)


def test_keyed_locks_serialise_same_key_and_clean_up():
    locks = KeyedLocks()
    order = []

    async def worker(key, name):
        async with locks.hold(key):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    async def scenario():
        await asyncio.gather(worker("k", "a"), worker("k", "b"))

    asyncio.run(scenario())

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


def test_keyed_locks_different_keys_do_not_block():
    locks = KeyedLocks()
    order = []

    async def worker(key):
        async with locks.hold(key):
            order.append(f"{key}-in")
            await asyncio.sleep(0.01)
            order.append(f"{key}-out")

    async def scenario():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(scenario())

    assert order[:2] == ["a-in", "b-in"]
