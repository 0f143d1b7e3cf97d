"""
Redis client initialization and connection management.

Redis carries parcel events between workers when
``realtime_backend = "redis"``.
"""

import redis.asyncio as redis
from parceltrack.app.core.config import settings


def create_redis_client():
    """Create an async Redis client from settings."""
    return redis.from_url(
        settings.redis_url,
        decode_responses=settings.redis_decode_responses,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


async def ping_redis(client) -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await client.ping()
    except (redis.RedisError, OSError):
        return False
