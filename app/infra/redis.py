"""
Redis infrastructure configuration

Redis client management.
"""

from typing import Optional

from redis import asyncio as aioredis
from redis.asyncio import Redis

from app.core.config import settings

# Global redis pool
pool: Optional[aioredis.ConnectionPool] = None


async def init_redis_pool():
    """Initialize Redis connection pool"""
    global pool
    pool = aioredis.ConnectionPool.from_url(
        settings.redis_url,
        db=settings.redis_db,
        encoding="utf-8",
        decode_responses=True,
    )


async def close_redis_pool():
    """Close Redis connection pool"""
    global pool
    if pool:
        await pool.disconnect()
        pool = None


async def get_redis_client() -> Redis:
    """
    Client bound to the shared pool.
    Closing it does not close the pool, so long-lived services may hold one.
    """
    if pool is None:
        await init_redis_pool()
    return aioredis.Redis(connection_pool=pool)
