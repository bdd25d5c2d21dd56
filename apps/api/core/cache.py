"""
Redis access for the API process.

One lazily created client, shared by the rate limiter and the dashboard
cache. Every caller treats Redis as optional: if it cannot be reached the
request carries on without it.
"""
import json
import logging
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError

from core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Shared client, or None when Redis is down."""
    global _redis_client

    if _redis_client is None:
        try:
            client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
        except RedisError as e:
            logger.warning(f"Redis unavailable: {e}")
            return None
        logger.info("Redis connection established")
        _redis_client = client
    return _redis_client


def cached_json(key: str, ttl: int, build: Callable[[], Any]) -> Any:
    """
    Return the JSON value stored under ``key``, building and storing it on a miss.

    With CACHE_ENABLED off (tests, local dev) ``build`` runs every time.
    """
    client = get_redis_client() if settings.CACHE_ENABLED else None
    if client is None:
        return build()

    try:
        hit = client.get(key)
    except RedisError as e:
        logger.warning(f"Cache read failed for {key}: {e}")
        hit = None
    if hit:
        return json.loads(hit)

    value = build()
    try:
        client.setex(key, ttl, json.dumps(value, default=str))
    except RedisError as e:
        logger.warning(f"Cache write failed for {key}: {e}")
    return value
