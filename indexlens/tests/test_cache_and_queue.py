"""
Tests — TTL cache and rate-limited task queue
"""

import asyncio

import pytest

from indexlens.services import task_queue
from indexlens.services.cache import TTLCache
from indexlens.services.task_queue import RateLimitedTaskQueue


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# TTLCache
# ---------------------------------------------------------------------------

def test_cache_get_set_and_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl_s=60, clock=clock)
    cache.set("profile:AAPL", {"currency": "USD"})

    assert cache.get("profile:AAPL") == {"currency": "USD"}
    assert cache.ttl("profile:AAPL") == 60

    clock.now += 59
    assert "profile:AAPL" in cache
    clock.now += 1
    assert cache.get("profile:AAPL") is None
    assert cache.ttl("profile:AAPL") is None
    assert len(cache) == 0


def test_cache_per_key_ttl_and_invalidate():
    clock = FakeClock()
    cache = TTLCache(ttl_s=60, clock=clock)
    cache.set("a", 1, ttl_s=5)
    cache.set("b", 2)
    clock.now += 10
    assert cache.get("a", "gone") == "gone"
    assert cache.get("b") == 2

    cache.invalidate("b")
    assert cache.get("b") is None
    cache.set("c", 3)
    cache.invalidate()
    assert len(cache) == 0


def test_cache_get_or_load():
    cache = TTLCache(ttl_s=60, clock=FakeClock())
    calls = []

    async def loader():
        calls.append(1)
        return 1.27

    async def nothing():
        calls.append(1)
        return None

    async def run():
        first = await cache.get_or_load("fx:GBPUSD", loader)
        second = await cache.get_or_load("fx:GBPUSD", loader)
        await cache.get_or_load("fx:JPYUSD", nothing)
        await cache.get_or_load("fx:JPYUSD", nothing)
        return first, second

    assert asyncio.run(run()) == (1.27, 1.27)
    assert len(calls) == 3, "loader runs once per cached key; None is not cached"


def test_cache_get_or_load_remembers_missing_values():
    clock = FakeClock()
    cache = TTLCache(ttl_s=60, clock=clock)
    calls = []

    async def nothing():
        calls.append(1)
        return None

    async def run():
        await cache.get_or_load("first_trade:XYZ", nothing, cache_none=True)
        return await cache.get_or_load("first_trade:XYZ", nothing, cache_none=True)

    assert asyncio.run(run()) is None
    assert len(calls) == 1
    assert "first_trade:XYZ" in cache

    clock.now += 61
    asyncio.run(run())
    assert len(calls) == 2, "a cached miss expires like any other entry"


# ---------------------------------------------------------------------------
# RateLimitedTaskQueue
# ---------------------------------------------------------------------------

def test_queue_preserves_order_and_sleeps_between_tasks(monkeypatch):
    sleeps: list[float] = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(task_queue.asyncio, "sleep", fake_sleep)

    async def worker(x):
        return x * 2

    queue = RateLimitedTaskQueue(concurrency=1, delay_s=0.15)
    assert asyncio.run(queue.map(worker, [1, 2, 3])) == [2, 4, 6]
    assert sleeps == [0.15, 0.15], "pause between tasks, not after the last"


def test_queue_on_error_records_failure_and_continues():
    async def worker(x):
        if x == "BAD":
            raise RuntimeError("boom")
        return x

    queue = RateLimitedTaskQueue(concurrency=1, delay_s=0)
    results = asyncio.run(queue.map(worker, ["A", "BAD", "C"], on_error=lambda item, exc: f"{item}:{exc}"))
    assert results == ["A", "BAD:boom", "C"]


def test_queue_without_on_error_propagates():
    async def worker(x):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(RateLimitedTaskQueue(delay_s=0).map(worker, [1]))


def test_queue_respects_concurrency_limit():
    in_flight = 0
    peak = 0

    async def worker(x):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return x

    queue = RateLimitedTaskQueue(concurrency=2, delay_s=0)
    assert asyncio.run(queue.map(worker, range(6))) == list(range(6))
    assert peak == 2


def test_queue_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        RateLimitedTaskQueue(concurrency=0)
