# masterbook/config/redis.py
"""Shared async Redis client for short-lived dashboard state"""
from typing import Optional

import redis.asyncio as redis

from masterbook.config.settings import get_settings

settings = get_settings()

_redis_pool: Optional[redis.ConnectionPool] = None


def get_redis_pool() -> redis.ConnectionPool:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            retry_on_timeout=True,
            decode_responses=True,
        )
    return _redis_pool


async def get_redis() -> redis.Redis:
    return redis.Redis(connection_pool=get_redis_pool())


async def close_redis() -> None:
    """Drop pooled connections on shutdown"""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


class RedisKeys:
    """Key patterns; every value stored under them carries a TTL"""

    # Outcome of the Google OAuth callback, polled once by the dashboard
    CALENDAR_OAUTH_RESULT = "calendar:{master_id}:oauth_result"
