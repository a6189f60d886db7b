# stepguard/db/redis_client.py
import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


async def connect_to_redis(url: Optional[str]) -> Optional[redis.Redis]:
    """
    Open a Redis connection, or return None when Redis is not configured or
    unreachable. Callers treat None as "throttling disabled".
    """
    if not url:
        logger.info("REDIS_URL not set, request throttling disabled")
        return None

    rc = redis.from_url(url, decode_responses=True)
    try:
        await rc.ping()
    except redis.RedisError as e:
        logger.warning("Redis connection failed (%s), request throttling disabled", e)
        await rc.aclose()
        return None

    logger.info("Redis connected")
    return rc
