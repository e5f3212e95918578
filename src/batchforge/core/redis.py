"""Redis connection management for BatchForge."""
from typing import Optional
from redis import Redis
from redis.exceptions import RedisError
from batchforge.config import get_settings

settings = get_settings()

# Synchronous Redis client (singleton)
_redis_client: Optional[Redis] = None


def get_redis() -> Redis:
    """
    Get synchronous Redis client (singleton).

    Returns:
        Redis: Synchronous Redis client instance

    Example:
        >>> redis = get_redis()
        >>> redis.zcard('batchforge:queue:executions')
        0
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
        )
    return _redis_client


def close_redis() -> None:
    """
    Close synchronous Redis connection.

    Closes the connection and clears the singleton.
    Should be called on application shutdown.
    """
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


def ping_redis(client: Optional[Redis] = None) -> bool:
    """
    Check Redis connectivity.

    Args:
        client: Client to check (defaults to the singleton)

    Returns:
        bool: True if Redis answered the ping
    """
    client = client or get_redis()
    try:
        return bool(client.ping())
    except RedisError:
        return False
