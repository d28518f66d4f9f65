from __future__ import annotations

import pytest

from receiptbox.core.config import Settings
from receiptbox.services.cache import (
    MemoryFilterCache,
    NullFilterCache,
    RedisFilterCache,
    build_filter_cache,
    cache_key,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self, fail=False):
        self.store = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value

    async def scan_iter(self, pattern):
        if self.fail:
            raise ConnectionError("redis down")
        prefix = pattern.rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key

    async def delete(self, key):
        self.store.pop(key, None)


def test_cache_key_is_stable_and_owner_scoped():
    a = cache_key("u1", "filter", {"categories": ["A"], "has_summary": True})
    b = cache_key("u1", "filter", {"has_summary": True, "categories": ["A"]})
    c = cache_key("u2", "filter", {"categories": ["A"], "has_summary": True})
    assert a == b
    assert a != c
    assert a.startswith("bulk:u1:filter:")
    assert cache_key("u1", "options") == "bulk:u1:options"


@pytest.mark.asyncio
async def test_memory_cache_expires_entries():
    clock = FakeClock()
    cache = MemoryFilterCache(ttl=30, clock=clock)
    await cache.set("bulk:u1:options", {"x": 1})
    assert await cache.get("bulk:u1:options") == {"x": 1}
    clock.now += 30
    assert await cache.get("bulk:u1:options") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_memory_cache_drops_expired_entries_on_write():
    clock = FakeClock()
    cache = MemoryFilterCache(ttl=1, clock=clock)
    for i in range(1000):
        await cache.set(cache_key(f"u{i}", "filter", {"i": i}), {"i": i})
        clock.now += 10
    # only the most recent write can still be live
    assert len(cache) <= 1


@pytest.mark.asyncio
async def test_memory_cache_evicts_oldest_when_full():
    cache = MemoryFilterCache(ttl=60, max_entries=3)
    for key in ("a", "b", "c"):
        await cache.set(key, key)
    # rewriting "a" makes "b" the oldest
    await cache.set("a", "a2")
    await cache.set("d", "d")
    assert len(cache) == 3
    assert await cache.get("b") is None
    assert await cache.get("a") == "a2"
    assert await cache.get("d") == "d"


@pytest.mark.asyncio
async def test_memory_cache_returns_copies():
    cache = MemoryFilterCache(ttl=30)
    await cache.set("k", {"items": [1]})
    got = await cache.get("k")
    got["items"].append(2)
    assert await cache.get("k") == {"items": [1]}


@pytest.mark.asyncio
async def test_memory_cache_invalidate_owner_only_touches_that_owner():
    cache = MemoryFilterCache(ttl=30)
    await cache.set(cache_key("u1", "options"), 1)
    await cache.set(cache_key("u1", "filter", {}), 2)
    await cache.set(cache_key("u10", "options"), 3)
    await cache.invalidate_owner("u1")
    assert len(cache) == 1
    assert await cache.get(cache_key("u10", "options")) == 3


@pytest.mark.asyncio
async def test_zero_ttl_disables_storage():
    cache = MemoryFilterCache(ttl=0)
    await cache.set("k", 1)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_null_cache_never_hits():
    cache = NullFilterCache()
    await cache.set("k", 1)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_redis_cache_round_trip_and_invalidation():
    client = FakeRedis()
    cache = RedisFilterCache(client=client, ttl=60)
    await cache.set(cache_key("u1", "options"), {"categories": ["A"]})
    await cache.set(cache_key("u2", "options"), {"categories": ["B"]})
    assert await cache.get(cache_key("u1", "options")) == {"categories": ["A"]}
    await cache.invalidate_owner("u1")
    assert await cache.get(cache_key("u1", "options")) is None
    assert await cache.get(cache_key("u2", "options")) == {"categories": ["B"]}


@pytest.mark.asyncio
async def test_redis_failures_degrade_to_miss():
    cache = RedisFilterCache(client=FakeRedis(fail=True), ttl=60)
    await cache.set("k", 1)
    assert await cache.get("k") is None
    await cache.invalidate_owner("u1")


def test_build_filter_cache_selects_backend():
    assert isinstance(build_filter_cache("memory"), MemoryFilterCache)
    assert isinstance(build_filter_cache("redis"), RedisFilterCache)
    assert isinstance(build_filter_cache("none"), NullFilterCache)


def test_filter_cache_is_off_by_default():
    assert Settings.model_fields["FILTER_CACHE_BACKEND"].default == "none"
