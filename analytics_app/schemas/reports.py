"""
Schemas for the reporting side.

Response models read straight from SQLAlchemy rows (``from_attributes``),
the same way list endpoints serialize model instances.
"""

import math
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from analytics_app.clock import to_naive_utc, utc_day_bounds, utc_now

DEFAULT_RANGE_DAYS = 30
END_OF_DAY = time(23, 59, 59, 999000)

T = TypeVar("T")


def _parse_moment(value: str):
    """ISO date ("2025-01-31") or datetime ("2025-01-31T10:00:00Z")"""
    value = value.strip()
    if len(value) == 10:
        return date.fromisoformat(value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(value))


class DateRange(BaseModel):
    """Inclusive [start, end] window in naive UTC"""

    start: datetime
    end: datetime

    @classmethod
    def from_query(cls, start_date: Optional[str] = None, end_date: Optional[str] = None) -> "DateRange":
        """
        Build a range from optional query strings.

        Missing start means 30 days before now, missing end means now. An
        end given as a bare date covers that whole day (23:59:59.999 UTC).

        Raises:
            ValueError: Unparseable date
        """
        now = utc_now()

        if start_date:
            start = _parse_moment(start_date)
            if not isinstance(start, datetime):
                start = datetime.combine(start, time.min)
        else:
            start = now - timedelta(days=DEFAULT_RANGE_DAYS)

        if end_date:
            end = _parse_moment(end_date)
            if not isinstance(end, datetime):
                end = datetime.combine(end, END_OF_DAY)
        else:
            end = now

        return cls(start=start, end=end)

    @classmethod
    def today(cls) -> "DateRange":
        """Fixed UTC midnight-to-midnight window"""
        start, next_midnight = utc_day_bounds()
        return cls(start=start, end=next_midnight - timedelta(microseconds=1))


def mask_ip(ip: Optional[str]) -> Optional[str]:
    """
    Hide the host part of an address.

    Examples:
        >>> mask_ip("203.0.113.77")
        '203.0.113.xxx'
    """
    if not ip:
        return ip
    if "." in ip and ":" not in ip:
        return ip.rsplit(".", 1)[0] + ".xxx"
    if ":" in ip:
        return ip.rsplit(":", 1)[0] + ":xxxx"
    return ip


# Dashboard building blocks

class TopPage(BaseModel):
    path: str
    views: int
    unique_visitors: int
    average_time_spent: float
    exit_rate: float = Field(..., description="Share of views flagged as exit page, in %")


class CountryShare(BaseModel):
    country: Optional[str]
    visitors: int
    percentage: float


class DeviceShare(BaseModel):
    device_type: str
    count: int
    percentage: float


class TrafficSource(BaseModel):
    source: str
    visitors: int
    percentage: float


class DashboardStats(BaseModel):
    total_visitors: int = 0
    total_page_views: int = 0
    total_sessions: int = 0
    average_session_duration: int = 0
    bounce_rate: float = 0.0
    unique_visitors_today: int = 0
    page_views_today: int = 0
    top_pages: List[TopPage] = Field(default_factory=list)
    top_countries: List[CountryShare] = Field(default_factory=list)
    device_breakdown: List[DeviceShare] = Field(default_factory=list)
    traffic_sources: List[TrafficSource] = Field(default_factory=list)


# Row models

class VisitorResponse(BaseModel):
    visitor_id: str
    ip_address: str
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    timezone: Optional[str] = None
    browser: str
    browser_version: Optional[str] = None
    os: str
    os_version: Optional[str] = None
    device_type: str
    language: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    first_visit: datetime
    last_visit: datetime
    visit_count: int
    total_page_views: int
    total_session_duration: int
    is_bot: bool

    @field_validator("ip_address")
    @classmethod
    def mask_address(cls, value):
        return mask_ip(value)

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    session_id: str
    visitor_id: str
    session_start: datetime
    session_end: Optional[datetime] = None
    duration: int
    page_views: int
    bounced: bool
    entry_page: str
    exit_page: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    browser: str
    os: str
    device_type: str
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    timezone: Optional[str] = None
    is_active: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PageViewResponse(BaseModel):
    session_id: str
    visitor_id: str
    url: str
    path: str
    title: Optional[str] = None
    referrer: Optional[str] = None
    timestamp: datetime
    time_spent: Optional[int] = None
    scroll_depth: Optional[int] = None
    load_time: Optional[int] = None
    exit_page: bool

    model_config = ConfigDict(from_attributes=True)


class EventResponse(BaseModel):
    session_id: str
    visitor_id: str
    event_type: str
    event_category: str
    event_action: str
    event_label: Optional[str] = None
    event_value: Optional[float] = None
    custom_data: Optional[Dict[str, Any]] = None
    url: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class JourneyStep(BaseModel):
    """One entry of a session's merged, time-ordered journey"""
    type: str  # "pageview" | "event"
    timestamp: datetime
    path: Optional[str] = None
    title: Optional[str] = None
    event_type: Optional[str] = None
    event_category: Optional[str] = None
    event_action: Optional[str] = None


class VisitorDetail(BaseModel):
    visitor: VisitorResponse
    sessions: List[SessionResponse]
    page_views: List[PageViewResponse]
    events: List[EventResponse]


class SessionDetail(BaseModel):
    session: SessionResponse
    page_views: List[PageViewResponse]
    events: List[EventResponse]
    journey: List[JourneyStep]


# Pagination

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def of(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


class Page(BaseModel, Generic[T]):
    items: List[T]
    pagination: Pagination


# Realtime

class PathCount(BaseModel):
    path: str
    count: int


class RealtimeStats(BaseModel):
    active_visitors: int = 0
    current_page_views: List[PathCount] = Field(default_factory=list)
    recent_events: List[EventResponse] = Field(default_factory=list)


class ActiveVisitors(BaseModel):
    count: int
    visitors: List[SessionResponse]


# Breakdown reports

class PageStats(BaseModel):
    path: str
    views: int
    unique_visitors: int
    average_time_spent: float
    average_scroll_depth: float
    exit_rate: float


class PopularPage(BaseModel):
    path: str
    views: int
    unique_visitors: int


class CityStats(BaseModel):
    country: Optional[str] = None
    city: Optional[str] = None
    visitors: int


class DeviceStats(BaseModel):
    device_type: str
    browser: str
    os: str
    visitors: int


class BrowserShare(BaseModel):
    browser: str
    visitors: int
    percentage: float


class ReferrerCount(BaseModel):
    referrer: str
    sessions: int


class DailyTrend(BaseModel):
    date: str  # YYYY-MM-DD (UTC)
    page_views: int
    unique_visitors: int


class BotActivity(BaseModel):
    browser: str
    visitors: int
    last_seen: Optional[datetime] = None


class EventSummary(BaseModel):
    event_type: str
    event_category: str
    event_action: str
    count: int


class HealthStats(BaseModel):
    status: str = "healthy"
    timestamp: datetime
    visitors: int
    sessions: int
    page_views: int
    events: int
