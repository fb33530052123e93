"""
Persistence layer: async facades over the synchronous SQLAlchemy ORM.
"""

from .base import BaseStore
from .visitor_store import VisitorStore
from .session_store import SessionStore
from .fact_store import PageViewStore, EventStore

__all__ = [
    "BaseStore",
    "VisitorStore",
    "SessionStore",
    "PageViewStore",
    "EventStore",
]
