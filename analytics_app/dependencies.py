"""
FastAPI dependencies for dependency injection.

This module provides singleton instances of the queue, the per-visitor
lock and the services built on them, for routes, the middleware and the
embedded worker alike.
"""

from functools import lru_cache

from analytics_app.config import settings
from analytics_app.locks.factory import LockBackend, LockFactory
from analytics_app.locks.strategies import LockStrategy
from analytics_app.queue.factory import QueueBackend, QueueFactory
from analytics_app.queue.strategies import QueueStrategy


@lru_cache()
def get_queue() -> QueueStrategy:
    """
    Get queue instance (singleton).

    Factory gets config from settings internally.
    @lru_cache ensures this is called only once.
    """
    backend = QueueBackend(settings.queue_backend)
    return QueueFactory.create(backend)


@lru_cache()
def get_lock() -> LockStrategy:
    """Get the per-visitor lock (singleton)"""
    backend = LockBackend(settings.lock_backend)
    return LockFactory.create(backend)


@lru_cache()
def get_geolocator():
    """GeoIP reader is opened once per process"""
    from analytics_app.services.geolocator import GeoLocator
    return GeoLocator(settings.geoip_db_path)


@lru_cache()
def get_ingestion_service():
    """
    Get IngestionService with all dependencies injected.

    Used by the tracking worker, not by routes: page views and events reach
    ingestion through the queue only.
    """
    from analytics_app.services.ingestion_service import IngestionService
    from analytics_app.stores import EventStore, PageViewStore, SessionStore, VisitorStore

    return IngestionService(
        visitors=VisitorStore(),
        sessions=SessionStore(),
        page_views=PageViewStore(),
        events=EventStore(),
        locks=get_lock(),
        geolocator=get_geolocator(),
    )


@lru_cache()
def get_reporting_service():
    from analytics_app.services.reporting_service import ReportingService
    return ReportingService()


@lru_cache()
def get_broadcaster():
    """One broadcaster (and connection table) per process"""
    from analytics_app.services.realtime import RealtimeBroadcaster
    return RealtimeBroadcaster(get_reporting_service())


def reset_dependencies():
    """Drop every cached instance (for testing)"""
    for provider in (
        get_queue,
        get_lock,
        get_geolocator,
        get_ingestion_service,
        get_reporting_service,
        get_broadcaster,
    ):
        provider.cache_clear()
    QueueFactory.clear_instance()
    LockFactory.clear_instance()
