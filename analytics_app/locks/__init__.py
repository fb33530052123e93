"""
Keyed lock module for per-visitor serialization.
Implements Strategy Pattern for flexible lock backends.
"""

from .strategies import LockStrategy, RedisLock, InMemoryLock
from .factory import LockFactory, LockBackend

__all__ = [
    "LockStrategy",
    "RedisLock",
    "InMemoryLock",
    "LockFactory",
    "LockBackend",
]
