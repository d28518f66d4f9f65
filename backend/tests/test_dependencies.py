from __future__ import annotations

import types

import pytest
from fastapi import HTTPException

from receiptbox.api import dependencies as deps
from receiptbox.services.cache import MemoryFilterCache


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def set(self, key, value, ex=None, nx=False):
        self.ops.append(("set", key, value, nx))

    def incrby(self, key, amount):
        self.ops.append(("incrby", key, amount))

    async def execute(self):
        out = []
        for op in self.ops:
            if op[0] == "set":
                _, key, value, nx = op
                if nx and key in self.redis.store:
                    out.append(None)
                else:
                    self.redis.store[key] = value
                    out.append(True)
            else:
                _, key, amount = op
                self.redis.store[key] = int(self.redis.store.get(key, 0)) + amount
                out.append(self.redis.store[key])
        return out


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self):
        return FakePipeline(self)

    async def ttl(self, key):
        return 42


def _request():
    return types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))


@pytest.mark.asyncio
async def test_rate_limit_allows_up_to_limit_then_429():
    client = FakeRedis()
    for _ in range(3):
        await deps.enforce_rate_limit(client, "u1", "bulk", limit=3, window_seconds=60)
    with pytest.raises(HTTPException) as exc:
        await deps.enforce_rate_limit(client, "u1", "bulk", limit=3, window_seconds=60)
    assert exc.value.status_code == 429
    assert exc.value.headers["Retry-After"] == "42"

    # other users have their own window
    await deps.enforce_rate_limit(client, "u2", "bulk", limit=3, window_seconds=60)


@pytest.mark.asyncio
async def test_bulk_rate_limit_can_be_disabled(monkeypatch):
    monkeypatch.setattr(deps.settings, "RATE_LIMIT_ENABLED", False)
    # No redis client is created when disabled
    request = _request()
    await deps.enforce_bulk_rate_limit(request, types.SimpleNamespace(id="u1"))
    assert not hasattr(request.app.state, "redis")


@pytest.mark.asyncio
async def test_bulk_rate_limit_uses_app_redis(monkeypatch):
    monkeypatch.setattr(deps.settings, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(deps.settings, "BULK_MUTATIONS_PER_MINUTE", 1)
    request = _request()
    request.app.state.redis = FakeRedis()
    user = types.SimpleNamespace(id="u1")
    await deps.enforce_bulk_rate_limit(request, user)
    with pytest.raises(HTTPException) as exc:
        await deps.enforce_bulk_rate_limit(request, user)
    assert exc.value.status_code == 429


@pytest.mark.asyncio
async def test_get_user_requires_authentication():
    with pytest.raises(HTTPException) as exc:
        await deps.get_user(None)
    assert exc.value.status_code == 401


def test_filter_cache_is_shared_per_app(monkeypatch):
    monkeypatch.setattr(deps.settings, "FILTER_CACHE_BACKEND", "memory")
    request = _request()
    first = deps.get_filter_cache(request)
    assert isinstance(first, MemoryFilterCache)
    assert deps.get_filter_cache(request) is first
