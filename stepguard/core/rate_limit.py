# stepguard/core/rate_limit.py
"""
Request throttler used by routes before they call into the core.

Sliding window per key on a Redis sorted set:
- members are request timestamps
- entries older than the window are trimmed on every check
"""

import logging
import time
import uuid
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RequestThrottler:
    def __init__(self, rc: Optional[Redis], limit: int, window_seconds: int, prefix: str):
        self.rc = rc
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    @property
    def enabled(self) -> bool:
        return self.rc is not None

    async def check_limit(self, key: str) -> bool:
        """Record one request for ``key`` and report whether it is within the limit."""
        if not self.enabled:
            return True

        redis_key = f"ratelimit:{self.prefix}:{key}"
        now = time.time()
        try:
            async with self.rc.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
                pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex}": now})
                pipe.zcard(redis_key)
                pipe.expire(redis_key, self.window_seconds)
                _, _, count, _ = await pipe.execute()
        except RedisError as e:
            # an outage of the throttle store must not lock users out
            logger.warning("Rate limit check failed for %s: %s", redis_key, e)
            return True

        return count <= self.limit
