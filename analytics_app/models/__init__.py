"""
Database models for visitor analytics.

Visitor and VisitorSession are the mutable aggregates; PageView and
AnalyticsEvent are append-only facts that reference them.
"""

from .visitor import Visitor
from .session import VisitorSession
from .page_view import PageView
from .event import AnalyticsEvent, EventType

__all__ = ["Visitor", "VisitorSession", "PageView", "AnalyticsEvent", "EventType"]
