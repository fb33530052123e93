"""
Queue backend selection, cached per process.
"""

from enum import Enum
from typing import Optional

import redis
import structlog

from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue
from analytics_app.config import settings
from analytics_app.redis_client import connect_redis

logger = structlog.get_logger()


class QueueBackend(Enum):
    """QUEUE_BACKEND values"""
    REDIS_STREAMS = "redis_streams"
    MEMORY = "memory"


class QueueFactory:
    """
    Builds the tracking queue once and hands out the same instance.

    The middleware publishes and the embedded worker consumes, so both must
    see one object. An unreachable Redis degrades to the in-memory queue,
    which only the embedded worker can drain.
    """

    _instance: Optional[QueueStrategy] = None

    @classmethod
    def create(cls, backend: QueueBackend) -> QueueStrategy:
        if cls._instance is None:
            cls._instance = cls._build(backend)
        return cls._instance

    @staticmethod
    def _build(backend: QueueBackend) -> QueueStrategy:
        if backend == QueueBackend.MEMORY:
            logger.info("Tracking queue ready", backend=backend.value)
            return InMemoryQueue()

        if backend != QueueBackend.REDIS_STREAMS:
            raise ValueError(f"Unknown queue backend: {backend}")

        try:
            client = connect_redis(socket_timeout=5)
        except redis.RedisError as e:
            logger.warning("Redis unreachable, tracking queue is in-memory", error=str(e))
            return InMemoryQueue()

        logger.info("Tracking queue ready", backend=backend.value, stream=settings.queue_name)
        return RedisStreamQueue(client, settings.queue_consumer_group)

    @classmethod
    def clear_instance(cls):
        """Forget the cached queue (tests)"""
        cls._instance = None
