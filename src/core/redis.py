"""
Shared Redis connection

Permission cache entries, SSO state and rate limit windows all live under
``settings.REDIS_PREFIX`` so several deployments can share one Redis.
"""
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    global _client

    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.debug(f"Connected Redis client to {settings.REDIS_URL}")

    return _client


def redis_key(*parts: str) -> str:
    """Namespace a key, e.g. ``redis_key("perm", user_id)`` -> ``flowstack:perm:<id>``"""
    return ":".join([settings.REDIS_PREFIX, *parts])


async def ping_redis() -> bool:
    try:
        return bool(await get_redis_client().ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


async def close_redis():
    global _client

    if _client is not None:
        await _client.close()
        _client = None
        logger.info("Redis connection closed")
