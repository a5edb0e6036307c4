"""Redis connection pool for the domain resolution cache.

The cache is optional: with REDIS_URL empty get_redis_pool() returns None
and the registry goes straight to the database.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.hrms.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis | None:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        if not settings.REDIS_URL:
            return None
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


def domain_cache_key(hostname: str) -> str:
    return f"tenant:domain:{hostname}"


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
