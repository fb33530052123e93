from datetime import timedelta
from typing import Dict, Optional

import structlog

from analytics_app.clock import utc_now
from analytics_app.config import settings
from analytics_app.exceptions import SessionNotFoundError, VisitorNotFoundError
from analytics_app.locks.strategies import LockStrategy
from analytics_app.models.event import AnalyticsEvent
from analytics_app.models.page_view import PageView
from analytics_app.models.visitor import Visitor
from analytics_app.schemas.tracking import (
    AnalyticsData,
    DeviceInfo,
    EventData,
    LocationInfo,
    PageViewEcho,
    RequestContext,
    UTMParameters,
)
from analytics_app.services.device_detector import DeviceDetector
from analytics_app.services.fingerprint import VisitorFingerprint
from analytics_app.services.geolocator import GeoLocator
from analytics_app.stores.fact_store import EventStore, PageViewStore
from analytics_app.stores.session_store import SessionStore
from analytics_app.stores.visitor_store import VisitorStore

logger = structlog.get_logger()

UTM_FIELDS = ["source", "medium", "campaign", "term", "content"]


class IngestionService:
    """
    Ingestion Service with dependency injection for stores and lock.

    Owns every write to the analytics tables:
    - Visitor upsert (find, then create-if-absent)
    - Session resolution (reuse active, or close old + start new)
    - Append-only page views and events

    The visitor/session part runs under a per-visitor lock; the store's
    partial unique index catches anything the lock does not serialize
    (e.g. an in-memory lock with several API processes).
    """

    def __init__(
        self,
        visitors: VisitorStore,
        sessions: SessionStore,
        page_views: PageViewStore,
        events: EventStore,
        locks: LockStrategy,
        fingerprinter: Optional[VisitorFingerprint] = None,
        detector: Optional[DeviceDetector] = None,
        geolocator: Optional[GeoLocator] = None,
        idle_timeout: int = None,
    ):
        """
        Initialize ingestion service with dependencies.

        Args:
            visitors: Visitor store
            sessions: Session store
            page_views: Page view store
            events: Event store
            locks: Keyed lock used to serialize a visitor's session transitions
            fingerprinter: Visitor/session ID generator
            detector: User-Agent classifier
            geolocator: IP extraction and geo lookup
            idle_timeout: Seconds of inactivity after which a session no longer matches
        """
        self.visitors = visitors
        self.sessions = sessions
        self.page_views = page_views
        self.events = events
        self.locks = locks
        self.fingerprinter = fingerprinter or VisitorFingerprint()
        self.detector = detector or DeviceDetector()
        self.geolocator = geolocator or GeoLocator(settings.geoip_db_path)
        if idle_timeout is None:
            idle_timeout = settings.session_idle_timeout
        self.idle_timeout = timedelta(seconds=idle_timeout)

    async def track_page_view(self, context: RequestContext, title: Optional[str] = None) -> AnalyticsData:
        """
        Record one page render.

        Process:
        1. Fingerprint, classify device, resolve geo, extract UTM
        2. Visitor upsert and session resolution (under the visitor lock)
        3. Append the PageView row
        4. Bump visitor and session counters

        Raises only on store errors; the caller treats those as non-fatal.
        """
        now = utc_now()
        ip = self.geolocator.extract_ip(context)
        fingerprint = self.fingerprinter.identify(ip, context)
        device = self.detector.classify(context.user_agent)
        location = self.geolocator.resolve(ip)
        utm = self.extract_utm(context.query_params)

        async with self.locks.hold(f"visitor:{fingerprint.visitor_id}"):
            visitor = await self.visitors.find(fingerprint.visitor_id)
            new_visitor = False
            if visitor is None:
                visitor, new_visitor = await self.visitors.create_if_absent(
                    self._build_visitor(fingerprint.visitor_id, ip, context, device, location, utm, now)
                )
            else:
                await self.visitors.touch(visitor.id, now)

            session = await self.sessions.find_active(
                visitor.visitor_id, fingerprint.session_id, now - self.idle_timeout
            )
            new_session = session is None
            if new_session:
                # A freshly created visitor already counts its first visit
                session = await self.sessions.start_session(
                    now,
                    count_visit=not new_visitor,
                    session_id=fingerprint.session_id,
                    visitor_id=visitor.visitor_id,
                    visitor_pk=visitor.id,
                    session_start=now,
                    entry_page=context.path,
                    exit_page=context.path,
                    referrer=context.referrer,
                    utm_source=utm.source,
                    utm_medium=utm.medium,
                    utm_campaign=utm.campaign,
                    utm_term=utm.term,
                    utm_content=utm.content,
                    browser=device.browser,
                    os=device.os,
                    device_type=device.device_type,
                    country=location.country,
                    city=location.city,
                    region=location.region,
                    timezone=location.timezone,
                    created_at=now,
                    updated_at=now,
                )

        page_title = title or context.title
        metrics = context.metrics
        await self.page_views.create(
            PageView(
                session_id=session.session_id,
                visitor_id=visitor.visitor_id,
                session_pk=session.id,
                visitor_pk=visitor.id,
                url=context.url,
                path=context.path,
                title=page_title,
                referrer=context.referrer,
                timestamp=now,
                time_spent=metrics.time_spent if metrics else None,
                scroll_depth=metrics.scroll_depth if metrics else None,
                load_time=metrics.load_time if metrics else None,
                exit_page=metrics.exit_page if metrics else False,
                user_agent=context.user_agent,
                ip_address=ip,
            )
        )

        await self.visitors.increment_page_views(visitor.id)
        await self.sessions.record_page_view(session.id, context.path, now)

        logger.debug(
            "Page view tracked",
            visitor_id=visitor.visitor_id,
            session_id=session.session_id,
            path=context.path,
            new_visitor=new_visitor,
            new_session=new_session,
        )

        return AnalyticsData(
            visitor_id=visitor.visitor_id,
            session_id=session.session_id,
            new_visitor=new_visitor,
            new_session=new_session,
            device_info=device,
            location_info=location,
            page_view=PageViewEcho(
                url=context.url,
                path=context.path,
                title=page_title,
                referrer=context.referrer,
            ),
        )

    async def track_event(self, context: RequestContext, event_data: EventData) -> AnalyticsEvent:
        """
        Record one interaction event.

        Precondition: a page view for the same fingerprint was tracked
        first. Events never create visitors or sessions.

        Raises:
            VisitorNotFoundError: No stored visitor for the resolved visitor_id
            SessionNotFoundError: No stored (or active) session to attach to
        """
        now = utc_now()
        ip = self.geolocator.extract_ip(context)
        visitor_id = event_data.visitor_id or self.fingerprinter.generate_visitor_id(ip, context)

        visitor = await self.visitors.find(visitor_id)
        if visitor is None:
            raise VisitorNotFoundError(f"Visitor {visitor_id} not found")

        if event_data.session_id:
            session = await self.sessions.find_by_session_id(event_data.session_id)
        else:
            session = await self.sessions.find_active(visitor.visitor_id, None, now - self.idle_timeout)
        # A session named by id must belong to the resolved visitor
        if session is None or session.visitor_id != visitor.visitor_id:
            raise SessionNotFoundError(
                f"Session {event_data.session_id or 'for visitor ' + visitor_id} not found"
            )

        event = await self.events.create(
            AnalyticsEvent(
                session_id=session.session_id,
                visitor_id=visitor.visitor_id,
                session_pk=session.id,
                visitor_pk=visitor.id,
                event_type=event_data.event_type.value,
                event_category=event_data.event_category,
                event_action=event_data.event_action,
                event_label=event_data.event_label,
                event_value=event_data.event_value,
                custom_data=event_data.custom_data,
                url=context.url,
                timestamp=now,
                user_agent=context.user_agent,
                ip_address=ip,
            )
        )

        await self.sessions.mark_engaged(session.id, now)
        await self.visitors.touch(visitor.id, now)

        logger.debug(
            "Event tracked",
            visitor_id=visitor.visitor_id,
            session_id=session.session_id,
            event_type=event.event_type,
        )
        return event

    @staticmethod
    def extract_utm(query_params: Dict[str, str]) -> UTMParameters:
        """utm_* query parameters, verbatim"""
        return UTMParameters(**{field: query_params.get(f"utm_{field}") or None for field in UTM_FIELDS})

    def _build_visitor(
        self,
        visitor_id: str,
        ip: str,
        context: RequestContext,
        device: DeviceInfo,
        location: LocationInfo,
        utm: UTMParameters,
        now,
    ) -> Visitor:
        return Visitor(
            visitor_id=visitor_id,
            ip_address=ip,
            user_agent=context.user_agent,
            country=location.country,
            city=location.city,
            region=location.region,
            timezone=location.timezone,
            browser=device.browser,
            browser_version=device.browser_version,
            os=device.os,
            os_version=device.os_version,
            device_type=device.device_type,
            language=self.detector.extract_language(context.header("accept-language")),
            referrer=context.referrer,
            utm_source=utm.source,
            utm_medium=utm.medium,
            utm_campaign=utm.campaign,
            first_visit=now,
            last_visit=now,
            visit_count=1,
            total_page_views=0,
            total_session_duration=0,
            is_bot=device.is_bot,
            created_at=now,
            updated_at=now,
        )
