"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a shared connection pool
backs the results cache, so every API instance sees the same cached
student summaries and the same invalidations.  When REDIS_URL is unset
(local dev, tests) redis_pool is None and the cache runs in-process.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from classwork.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # cached summaries are JSON strings
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify Redis on startup and close the pool on shutdown.

    A failed ping is logged, not raised: the workflow endpoints never
    touch Redis, and /health reports the cache as degraded.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured; results cache is in-process")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
