"""
Shared Redis connection helper for the queue and lock backends.
"""

import redis
import structlog

from analytics_app.config import settings

logger = structlog.get_logger()


def connect_redis(socket_timeout: float = 5, decode_responses: bool = False) -> redis.Redis:
    """
    Open a client and check it answers.

    Raises:
        redis.RedisError: Server unreachable
    """
    client = redis.from_url(
        settings.redis_url,
        decode_responses=decode_responses,
        socket_connect_timeout=2,
        socket_timeout=socket_timeout,
    )
    client.ping()
    return client
