"""
Lock backend selection, cached per process.
"""

from enum import Enum
from typing import Optional

import redis
import structlog

from .strategies import LockStrategy, RedisLock, InMemoryLock
from analytics_app.config import settings
from analytics_app.redis_client import connect_redis

logger = structlog.get_logger()


class LockBackend(Enum):
    """LOCK_BACKEND values"""
    REDIS = "redis"
    MEMORY = "memory"


class LockFactory:
    """
    Builds the per-visitor lock once per process.

    Falling back to the in-memory lock keeps in-process requests serialized;
    across processes the unique active-session index is what remains.
    """

    _instance: Optional[LockStrategy] = None

    @classmethod
    def create(cls, backend: LockBackend) -> LockStrategy:
        if cls._instance is None:
            cls._instance = cls._build(backend)
        return cls._instance

    @staticmethod
    def _build(backend: LockBackend) -> LockStrategy:
        if backend == LockBackend.MEMORY:
            logger.info("Visitor lock ready", backend=backend.value)
            return InMemoryLock()

        if backend != LockBackend.REDIS:
            raise ValueError(f"Unknown lock backend: {backend}")

        try:
            client = connect_redis(socket_timeout=2)
        except redis.RedisError as e:
            logger.warning("Redis unreachable, visitor lock is in-memory", error=str(e))
            return InMemoryLock()

        logger.info("Visitor lock ready", backend=backend.value, timeout=settings.lock_timeout)
        return RedisLock(client, timeout=settings.lock_timeout, blocking_timeout=settings.lock_timeout)

    @classmethod
    def clear_instance(cls):
        """Forget the cached lock (tests)"""
        cls._instance = None
