import asyncio
from datetime import timedelta
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from analytics_app.clock import utc_now
from analytics_app.config import settings
from analytics_app.database.connection import SessionLocal
from analytics_app.exceptions import ReportingError, SessionNotFoundError, VisitorNotFoundError
from analytics_app.models.event import AnalyticsEvent
from analytics_app.models.page_view import PageView
from analytics_app.reports import aggregations
from analytics_app.schemas.reports import (
    ActiveVisitors,
    DashboardStats,
    DateRange,
    EventResponse,
    HealthStats,
    JourneyStep,
    Page,
    PageViewResponse,
    Pagination,
    RealtimeStats,
    SessionDetail,
    SessionResponse,
    VisitorDetail,
    VisitorResponse,
)
from analytics_app.stores.base import BaseStore

logger = structlog.get_logger()


def build_journey(page_views, events):
    """Page views and events of one session merged in time order"""
    steps = [
        JourneyStep(type="pageview", timestamp=pv.timestamp, path=pv.path, title=pv.title)
        for pv in page_views
    ]
    steps.extend(
        JourneyStep(
            type="event",
            timestamp=ev.timestamp,
            event_type=ev.event_type,
            event_category=ev.event_category,
            event_action=ev.event_action,
        )
        for ev in events
    )
    # sort is stable: a page view stays ahead of an event with the same timestamp
    return sorted(steps, key=lambda step: step.timestamp)


class ReportingService(BaseStore):
    """
    Read-only analytics queries.

    Every query runs in its own session on the default executor, so the
    independent parts of a report are awaited together with
    ``asyncio.gather``. Database errors become ``ReportingError`` and reach
    the admin caller; nothing here writes.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        super().__init__(session_factory)

    async def _run(self, func: Callable[..., Any], *args) -> Any:
        try:
            return await super()._run(func, *args)
        except SQLAlchemyError as e:
            logger.exception("Analytics query failed", query=getattr(func, "__name__", str(func)))
            raise ReportingError("Failed to retrieve analytics data") from e

    async def get_dashboard_stats(self, date_range: Optional[DateRange] = None) -> DashboardStats:
        """
        Dashboard summary over an inclusive date range.

        "Today" counters always use the current UTC day, whatever the range.
        """
        date_range = date_range or DateRange.from_query()
        today = DateRange.today()

        (
            total_visitors,
            total_page_views,
            total_sessions,
            avg_duration,
            bounced_sessions,
            visitors_today,
            page_views_today,
            top_pages,
            top_countries,
            device_breakdown,
            traffic_sources,
        ) = await asyncio.gather(
            self._run(aggregations.count_visitors, date_range),
            self._run(aggregations.count_page_views, date_range),
            self._run(aggregations.count_sessions, date_range),
            self._run(aggregations.average_session_duration, date_range),
            self._run(aggregations.count_bounced_sessions, date_range),
            self._run(aggregations.count_visitors, today),
            self._run(aggregations.count_page_views, today),
            self._run(aggregations.top_pages, date_range),
            self._run(aggregations.top_countries, date_range),
            self._run(aggregations.device_breakdown, date_range),
            self._run(aggregations.traffic_sources, date_range),
        )

        return DashboardStats(
            total_visitors=total_visitors,
            total_page_views=total_page_views,
            total_sessions=total_sessions,
            average_session_duration=int(round(avg_duration)),
            bounce_rate=aggregations.percentage(bounced_sessions, total_sessions),
            unique_visitors_today=visitors_today,
            page_views_today=page_views_today,
            top_pages=top_pages,
            top_countries=top_countries,
            device_breakdown=device_breakdown,
            traffic_sources=traffic_sources,
        )

    async def get_realtime_stats(self) -> RealtimeStats:
        now = utc_now()
        active_since = now - timedelta(seconds=settings.realtime_active_window)
        views_since = now - timedelta(seconds=settings.realtime_pageview_window)

        active_visitors, current_page_views, recent_events = await asyncio.gather(
            self._run(aggregations.count_active_sessions, active_since),
            self._run(aggregations.current_page_views, views_since),
            self._run(aggregations.recent_events, active_since),
        )
        return RealtimeStats(
            active_visitors=active_visitors,
            current_page_views=current_page_views,
            recent_events=[EventResponse.model_validate(event) for event in recent_events],
        )

    async def get_active_visitors(self, limit: int = 100) -> ActiveVisitors:
        since = utc_now() - timedelta(seconds=settings.realtime_active_window)
        sessions = await self._run(aggregations.active_sessions, since, limit)
        return ActiveVisitors(
            count=len(sessions),
            visitors=[SessionResponse.model_validate(s) for s in sessions],
        )

    async def list_visitors(
        self,
        page: int,
        limit: int,
        date_range: Optional[DateRange] = None,
        country: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> Page[VisitorResponse]:
        items, total = await self._run(
            aggregations.list_visitors, date_range, page, limit, country, device_type
        )
        return Page[VisitorResponse](
            items=[VisitorResponse.model_validate(v) for v in items],
            pagination=Pagination.of(page, limit, total),
        )

    async def get_visitor_detail(self, visitor_id: str) -> VisitorDetail:
        visitor, sessions, page_views, events = await asyncio.gather(
            self._run(aggregations.find_visitor, visitor_id),
            self._run(aggregations.sessions_of_visitor, visitor_id, 10),
            self._run(aggregations.page_views_of, PageView.visitor_id, visitor_id, 50),
            self._run(aggregations.events_of, AnalyticsEvent.visitor_id, visitor_id, 20),
        )
        if visitor is None:
            raise VisitorNotFoundError()
        return VisitorDetail(
            visitor=VisitorResponse.model_validate(visitor),
            sessions=[SessionResponse.model_validate(s) for s in sessions],
            page_views=[PageViewResponse.model_validate(pv) for pv in page_views],
            events=[EventResponse.model_validate(ev) for ev in events],
        )

    async def list_sessions(
        self,
        page: int,
        limit: int,
        date_range: Optional[DateRange] = None,
        country: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> Page[SessionResponse]:
        items, total = await self._run(
            aggregations.list_sessions, date_range, page, limit, country, device_type
        )
        return Page[SessionResponse](
            items=[SessionResponse.model_validate(s) for s in items],
            pagination=Pagination.of(page, limit, total),
        )

    async def get_session_detail(self, session_id: str) -> SessionDetail:
        session, page_views, events = await asyncio.gather(
            self._run(aggregations.find_session, session_id),
            self._run(aggregations.page_views_of, PageView.session_id, session_id, None, False),
            self._run(aggregations.events_of, AnalyticsEvent.session_id, session_id, None, False),
        )
        if session is None:
            raise SessionNotFoundError()
        return SessionDetail(
            session=SessionResponse.model_validate(session),
            page_views=[PageViewResponse.model_validate(pv) for pv in page_views],
            events=[EventResponse.model_validate(ev) for ev in events],
            journey=build_journey(page_views, events),
        )

    async def list_events(
        self,
        page: int,
        limit: int,
        date_range: Optional[DateRange] = None,
        event_type: Optional[str] = None,
    ) -> Page[EventResponse]:
        items, total = await self._run(aggregations.list_events, date_range, page, limit, event_type)
        return Page[EventResponse](
            items=[EventResponse.model_validate(e) for e in items],
            pagination=Pagination.of(page, limit, total),
        )

    async def run_report(self, report: Callable[..., Any], *args):
        """Run one named aggregation from ``analytics_app.reports.aggregations``"""
        return await self._run(report, *args)

    async def health(self) -> HealthStats:
        counts = await self._run(aggregations.table_counts)
        return HealthStats(timestamp=utc_now(), **counts)
