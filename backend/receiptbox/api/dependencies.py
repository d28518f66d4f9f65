"""Common dependencies for FastAPI routes.

This module defines shared dependency functions such as database access,
the per-app filter cache, service construction, rate-limiting helpers and
authentication helpers.
"""

from __future__ import annotations

import time
from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from receiptbox.core.config import settings
from receiptbox.core.database import get_db
from receiptbox.core.security import get_current_user
from receiptbox.models.tables import User
from receiptbox.services.cache import FilterCache, build_filter_cache
from receiptbox.services.mutation_service import BulkMutationService
from receiptbox.services.query_service import BulkQueryService

try:
    from redis import asyncio as aioredis  # type: ignore
except Exception:  # pragma: no cover - fallback if redis asyncio missing
    aioredis = None  # type: ignore


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


# -----------------------------------------------------------------------------
# Authentication


async def get_user(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Return the current user.  Raises if not authenticated."""
    if not current_user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return current_user


# -----------------------------------------------------------------------------
# Services


def get_filter_cache(request: Request) -> FilterCache:
    """Return the cache attached to the running app, creating it on first use."""
    cache = getattr(request.app.state, "filter_cache", None)
    if cache is None:
        cache = build_filter_cache()
        request.app.state.filter_cache = cache
    return cache


async def get_query_service(
    db: AsyncSession = Depends(get_db_session),
    cache: FilterCache = Depends(get_filter_cache),
) -> BulkQueryService:
    return BulkQueryService(db, cache=cache)


async def get_mutation_service(
    db: AsyncSession = Depends(get_db_session),
    cache: FilterCache = Depends(get_filter_cache),
) -> BulkMutationService:
    return BulkMutationService(db, cache=cache)


# -----------------------------------------------------------------------------
# Rate limiting helpers


async def get_redis_client(request: Request):
    """Return the app's async Redis client using `REDIS_URL`."""
    client = getattr(request.app.state, "redis", None)
    if client is None:
        if aioredis is None:
            raise HTTPException(status_code=503, detail="Redis not available for rate limiting")
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        request.app.state.redis = client
    return client


async def enforce_rate_limit(client, user_id: str, action: str, limit: int, window_seconds: int, cost: int = 1):
    """Fixed-window rate limit per user/action using Redis."""
    now = int(time.time())
    window_id = now // window_seconds
    key = f"rl:{action}:{user_id}:{window_id}"
    # Initialise window and increment atomically
    pipe = client.pipeline()
    pipe.set(key, 0, ex=window_seconds, nx=True)
    pipe.incrby(key, cost)
    try:
        _, count = await pipe.execute()
    except Exception:
        # Fallback: best-effort non-atomic
        try:
            count = await client.incrby(key, cost)
            await client.expire(key, window_seconds)
        except Exception:
            raise HTTPException(status_code=503, detail="Rate limiter unavailable")
    if int(count) > limit:
        ttl = await client.ttl(key)
        headers = {"Retry-After": str(max(1, int(ttl))) if isinstance(ttl, int) and ttl > 0 else "60"}
        raise HTTPException(status_code=429, detail="Rate limit exceeded", headers=headers)


async def enforce_bulk_rate_limit(request: Request, user: User = Depends(get_user)) -> None:
    """Per-user limit on bulk mutation requests."""
    if not settings.RATE_LIMIT_ENABLED:
        return
    client = await get_redis_client(request)
    await enforce_rate_limit(
        client,
        user.id,
        "bulk",
        limit=settings.BULK_MUTATIONS_PER_MINUTE,
        window_seconds=60,
    )
