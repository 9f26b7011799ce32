"""Shared Redis connection — used by the rate limiter.

Learn: One pool per process, opened in the app lifespan and closed on
shutdown. Redis is optional: when it never connected, get_redis() raises
RuntimeError and callers carry on without it (tests run that way).
"""

from typing import Optional

import redis.asyncio as aioredis

_redis: Optional[aioredis.Redis] = None


async def init_redis(url: str) -> aioredis.Redis:
    """Open the pool and ping it once so a bad URL fails at startup."""
    global _redis
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def ping(url: str) -> None:
    """One-off connectivity check (health endpoint); raises on failure."""
    client = aioredis.from_url(url)
    try:
        await client.ping()
    finally:
        await client.aclose()
