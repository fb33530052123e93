from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from analytics_app.dependencies import get_reporting_service
from analytics_app.models.event import EventType
from analytics_app.reports import aggregations
from analytics_app.schemas.reports import (
    ActiveVisitors,
    BotActivity,
    BrowserShare,
    CityStats,
    CountryShare,
    DailyTrend,
    DashboardStats,
    DateRange,
    DeviceStats,
    EventResponse,
    EventSummary,
    HealthStats,
    Page,
    PageStats,
    PopularPage,
    RealtimeStats,
    ReferrerCount,
    SessionDetail,
    SessionResponse,
    TrafficSource,
    VisitorDetail,
    VisitorResponse,
)
from analytics_app.security.auth import require_admin
from analytics_app.services.reporting_service import ReportingService

router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(require_admin)])

MAX_PAGE_SIZE = 100


def date_range(
    start_date: Optional[str] = Query(None, description="ISO date or datetime (UTC)"),
    end_date: Optional[str] = Query(None, description="ISO date or datetime; a bare date covers the whole day"),
) -> DateRange:
    try:
        return DateRange.from_query(start_date, end_date)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid date format",
        )


def optional_date_range(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
) -> Optional[DateRange]:
    """List filters apply a window only when one was asked for"""
    if not start_date and not end_date:
        return None
    return date_range(start_date, end_date)


class Paging:
    """page >= 1; limit >= 1, clamped to 100"""

    def __init__(self, page: int = Query(1, ge=1), limit: int = Query(20, ge=1)):
        self.page = page
        self.limit = min(limit, MAX_PAGE_SIZE)


@router.get("/dashboard", response_model=DashboardStats)
async def get_dashboard(
    window: DateRange = Depends(date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.get_dashboard_stats(window)


@router.get("/visitors", response_model=Page[VisitorResponse])
async def list_visitors(
    paging: Paging = Depends(),
    country: Optional[str] = None,
    device_type: Optional[str] = None,
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.list_visitors(paging.page, paging.limit, window, country, device_type)


@router.get("/visitors/{visitor_id}", response_model=VisitorDetail)
async def get_visitor(visitor_id: str, service: ReportingService = Depends(get_reporting_service)):
    """Visitor with its 10 latest sessions, 50 page views and 20 events"""
    return await service.get_visitor_detail(visitor_id)


@router.get("/sessions", response_model=Page[SessionResponse])
async def list_sessions(
    paging: Paging = Depends(),
    country: Optional[str] = None,
    device_type: Optional[str] = None,
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.list_sessions(paging.page, paging.limit, window, country, device_type)


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, service: ReportingService = Depends(get_reporting_service)):
    """Session with its page views, events and merged journey"""
    return await service.get_session_detail(session_id)


@router.get("/pages", response_model=List[PageStats])
async def get_page_stats(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.page_stats, window)


@router.get("/pages/popular", response_model=List[PopularPage])
async def get_popular_pages(
    limit: int = Query(10, ge=1),
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.popular_pages, window, min(limit, 50))


@router.get("/realtime", response_model=RealtimeStats)
async def get_realtime(service: ReportingService = Depends(get_reporting_service)):
    return await service.get_realtime_stats()


@router.get("/realtime/visitors", response_model=ActiveVisitors)
async def get_active_visitors(service: ReportingService = Depends(get_reporting_service)):
    return await service.get_active_visitors()


@router.get("/events", response_model=Page[EventResponse])
async def list_events(
    paging: Paging = Depends(),
    event_type: Optional[EventType] = None,
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.list_events(
        paging.page, paging.limit, window, event_type.value if event_type else None
    )


@router.get("/events/summary", response_model=List[EventSummary])
async def get_event_summary(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.event_summary, window)


@router.get("/geo/countries", response_model=List[CountryShare])
async def get_countries(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.top_countries, window, 20)


@router.get("/geo/cities", response_model=List[CityStats])
async def get_cities(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.city_stats, window)


@router.get("/devices", response_model=List[DeviceStats])
async def get_devices(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.device_stats, window)


@router.get("/browsers", response_model=List[BrowserShare])
async def get_browsers(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.browser_stats, window)


@router.get("/traffic/sources", response_model=List[TrafficSource])
async def get_traffic_sources(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.traffic_sources, window)


@router.get("/traffic/referrers", response_model=List[ReferrerCount])
async def get_referrers(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.top_referrers, window)


@router.get("/trends/daily", response_model=List[DailyTrend])
async def get_daily_trends(
    window: DateRange = Depends(date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.daily_trends, window)


@router.get("/security/bots", response_model=List[BotActivity])
async def get_bot_activity(
    window: Optional[DateRange] = Depends(optional_date_range),
    service: ReportingService = Depends(get_reporting_service),
):
    return await service.run_report(aggregations.bot_activity, window)


@router.get("/health", response_model=HealthStats)
async def analytics_health(service: ReportingService = Depends(get_reporting_service)):
    return await service.health()
