"""Short-lived caching of bulk filter results and filter options.

The query service takes a ``FilterCache`` as an explicit collaborator so
tests can pass a ``MemoryFilterCache`` (or ``NullFilterCache`` to turn
caching off) without touching any module state.

Usage guidelines:
- Keys are always namespaced with the owner id (see ``cache_key``).
- Keep TTLs short; filter results go stale as soon as receipts change.
- Invalidate on mutations (``invalidate_owner``) - the mutation service
  does this after every successful bulk update / delete.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional, Protocol, Tuple

from redis import asyncio as aioredis

from receiptbox.core.config import settings

logger = logging.getLogger(__name__)


def cache_key(owner_id: str, kind: str, payload: Any = None) -> str:
    """Return ``bulk:<owner>:<kind>[:<digest>]`` for a JSON-serialisable payload."""
    base = f"bulk:{owner_id}:{kind}"
    if payload is None:
        return base
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    return f"{base}:{digest}"


def owner_prefix(owner_id: str) -> str:
    return f"bulk:{owner_id}:"


class FilterCache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    async def invalidate_owner(self, owner_id: str) -> None: ...


class NullFilterCache:
    """Cache that never stores anything."""

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        return None

    async def invalidate_owner(self, owner_id: str) -> None:
        return None


class MemoryFilterCache:
    """Per-instance expiry map keyed by string.

    Values are stored as JSON text so callers always get a fresh copy and
    the stored shape matches the Redis backend. Expired entries are purged
    on every write and the map never holds more than ``max_entries``
    (oldest written is evicted first). Only suitable for a single worker:
    ``invalidate_owner`` cannot reach other processes' instances.
    """

    def __init__(self, ttl: Optional[int] = None, clock=time.monotonic, max_entries: int = 1024) -> None:
        self.ttl = ttl if ttl is not None else settings.FILTER_CACHE_TTL_SECONDS
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return
        now = self._clock()
        self._purge_expired(now)
        # re-inserting moves the key to the end of the eviction order
        self._entries.pop(key, None)
        while self._entries and len(self._entries) >= self.max_entries:
            self._entries.pop(next(iter(self._entries)))
        self._entries[key] = (now + ttl, json.dumps(value, default=str))

    def _purge_expired(self, now: float) -> None:
        for key in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[key]

    async def invalidate_owner(self, owner_id: str) -> None:
        prefix = owner_prefix(owner_id)
        for key in [k for k in self._entries if k.startswith(prefix)]:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisFilterCache:
    """Redis-backed cache. Every Redis failure degrades to a miss / no-op."""

    def __init__(self, client: Any = None, ttl: Optional[int] = None, url: Optional[str] = None) -> None:
        self.ttl = ttl if ttl is not None else settings.FILTER_CACHE_TTL_SECONDS
        self._url = url or settings.REDIS_URL
        self._client = client

    def _get_client(self):
        if self._client is None:
            try:
                self._client = aioredis.from_url(self._url, decode_responses=True)
            except Exception:  # pragma: no cover
                logger.warning("Redis filter cache unavailable at %s", self._url)
                self._client = None
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None
        try:
            raw = await client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception:
            logger.debug("filter cache get failed for %s", key, exc_info=True)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        client = self._get_client()
        if not client:
            return
        try:
            await client.set(key, json.dumps(value, default=str), ex=ttl or self.ttl)
        except Exception:
            logger.debug("filter cache set failed for %s", key, exc_info=True)

    async def invalidate_owner(self, owner_id: str) -> None:
        """Best-effort pattern deletion (SCAN + DEL)."""
        client = self._get_client()
        if not client:
            return
        try:
            async for key in client.scan_iter(f"{owner_prefix(owner_id)}*"):
                await client.delete(key)
        except Exception:
            logger.debug("filter cache invalidation failed for owner %s", owner_id, exc_info=True)


def build_filter_cache(backend: Optional[str] = None) -> FilterCache:
    """Construct the cache selected by ``FILTER_CACHE_BACKEND``."""
    backend = (backend or settings.FILTER_CACHE_BACKEND or "none").lower()
    if backend == "redis":
        return RedisFilterCache()
    if backend == "memory":
        return MemoryFilterCache()
    return NullFilterCache()


__all__ = [
    "FilterCache",
    "NullFilterCache",
    "MemoryFilterCache",
    "RedisFilterCache",
    "build_filter_cache",
    "cache_key",
    "owner_prefix",
]
