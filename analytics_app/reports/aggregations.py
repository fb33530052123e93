"""
Named aggregation queries, one per report.

Each function takes an open SQLAlchemy session plus its parameters and
returns typed rows. Nothing here commits or writes. Group ordering is
count descending, then the group key, so ties come back in a stable order.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import case, distinct, func
from sqlalchemy.orm import Query, Session

from analytics_app.models.event import AnalyticsEvent
from analytics_app.models.page_view import PageView
from analytics_app.models.session import VisitorSession
from analytics_app.models.visitor import Visitor
from analytics_app.schemas.reports import (
    BotActivity,
    BrowserShare,
    CityStats,
    CountryShare,
    DailyTrend,
    DateRange,
    DeviceShare,
    DeviceStats,
    EventSummary,
    PageStats,
    PathCount,
    PopularPage,
    ReferrerCount,
    TopPage,
    TrafficSource,
)


def percentage(part: int, total: int) -> float:
    """part / total as a percentage rounded to 2 places; 0 for an empty total"""
    if not total:
        return 0.0
    return round(part / total * 100, 2)


def _between(query: Query, column, date_range: Optional[DateRange]) -> Query:
    if date_range is None:
        return query
    return query.filter(column >= date_range.start, column <= date_range.end)


def _human_visitors(db: Session, date_range: Optional[DateRange]) -> Query:
    query = db.query(Visitor).filter(Visitor.is_bot == False)  # noqa: E712
    return _between(query, Visitor.created_at, date_range)


# Counters

def count_visitors(db: Session, date_range: Optional[DateRange] = None) -> int:
    """Non-bot visitors first seen inside the range"""
    return _human_visitors(db, date_range).count()


def count_page_views(db: Session, date_range: Optional[DateRange] = None) -> int:
    return _between(db.query(PageView), PageView.timestamp, date_range).count()


def count_sessions(db: Session, date_range: Optional[DateRange] = None) -> int:
    return _between(db.query(VisitorSession), VisitorSession.session_start, date_range).count()


def count_bounced_sessions(db: Session, date_range: Optional[DateRange] = None) -> int:
    query = db.query(VisitorSession).filter(VisitorSession.bounced == True)  # noqa: E712
    return _between(query, VisitorSession.session_start, date_range).count()


def count_events(db: Session, date_range: Optional[DateRange] = None) -> int:
    return _between(db.query(AnalyticsEvent), AnalyticsEvent.timestamp, date_range).count()


def average_session_duration(db: Session, date_range: Optional[DateRange] = None) -> float:
    """Mean duration of sessions with a non-zero duration"""
    query = db.query(func.avg(VisitorSession.duration)).filter(VisitorSession.duration > 0)
    value = _between(query, VisitorSession.session_start, date_range).scalar()
    return float(value or 0)


# Dashboard breakdowns

def top_pages(db: Session, date_range: Optional[DateRange] = None, limit: int = 10) -> List[TopPage]:
    views = func.count(PageView.id)
    query = db.query(
        PageView.path,
        views,
        func.count(distinct(PageView.visitor_id)),
        func.avg(func.coalesce(PageView.time_spent, 0)),
        func.sum(case((PageView.exit_page == True, 1), else_=0)),  # noqa: E712
    ).group_by(PageView.path)
    rows = _between(query, PageView.timestamp, date_range).order_by(views.desc(), PageView.path).limit(limit)
    return [
        TopPage(
            path=path,
            views=count,
            unique_visitors=unique,
            average_time_spent=round(float(avg_time or 0), 2),
            exit_rate=percentage(exits or 0, count),
        )
        for path, count, unique, avg_time, exits in rows
    ]


def top_countries(db: Session, date_range: Optional[DateRange] = None, limit: int = 10) -> List[CountryShare]:
    total = count_visitors(db, date_range)
    visitors = func.count(Visitor.id)
    query = _human_visitors(db, date_range).with_entities(Visitor.country, visitors).group_by(Visitor.country)
    rows = query.order_by(visitors.desc(), Visitor.country).limit(limit)
    return [
        CountryShare(country=country, visitors=count, percentage=percentage(count, total))
        for country, count in rows
    ]


def device_breakdown(db: Session, date_range: Optional[DateRange] = None) -> List[DeviceShare]:
    total = count_visitors(db, date_range)
    count = func.count(Visitor.id)
    query = _human_visitors(db, date_range).with_entities(Visitor.device_type, count).group_by(Visitor.device_type)
    return [
        DeviceShare(device_type=device_type, count=n, percentage=percentage(n, total))
        for device_type, n in query.order_by(count.desc(), Visitor.device_type)
    ]


def traffic_sources(db: Session, date_range: Optional[DateRange] = None, limit: int = 10) -> List[TrafficSource]:
    """Sessions grouped by UTM source, else "referral" when a referrer exists, else "direct" """
    source = case(
        (VisitorSession.utm_source.isnot(None), VisitorSession.utm_source),
        (VisitorSession.referrer.isnot(None), "referral"),
        else_="direct",
    )
    total = count_sessions(db, date_range)
    sessions = func.count(VisitorSession.id)
    query = db.query(source, sessions).group_by(source)
    rows = _between(query, VisitorSession.session_start, date_range).order_by(sessions.desc(), source).limit(limit)
    return [
        TrafficSource(source=name, visitors=count, percentage=percentage(count, total))
        for name, count in rows
    ]


# Realtime

def count_active_sessions(db: Session, since: datetime) -> int:
    return (
        db.query(VisitorSession)
        .filter(VisitorSession.is_active == True, VisitorSession.updated_at >= since)  # noqa: E712
        .count()
    )


def current_page_views(db: Session, since: datetime, limit: int = 10) -> List[PathCount]:
    count = func.count(PageView.id)
    rows = (
        db.query(PageView.path, count)
        .filter(PageView.timestamp >= since)
        .group_by(PageView.path)
        .order_by(count.desc(), PageView.path)
        .limit(limit)
    )
    return [PathCount(path=path, count=n) for path, n in rows]


def recent_events(db: Session, since: datetime, limit: int = 20) -> List[AnalyticsEvent]:
    return (
        db.query(AnalyticsEvent)
        .filter(AnalyticsEvent.timestamp >= since)
        .order_by(AnalyticsEvent.timestamp.desc(), AnalyticsEvent.id.desc())
        .limit(limit)
        .all()
    )


def active_sessions(db: Session, since: datetime, limit: int = 100) -> List[VisitorSession]:
    return (
        db.query(VisitorSession)
        .filter(VisitorSession.is_active == True, VisitorSession.updated_at >= since)  # noqa: E712
        .order_by(VisitorSession.updated_at.desc())
        .limit(limit)
        .all()
    )


# Lists

def list_visitors(
    db: Session,
    date_range: Optional[DateRange],
    page: int,
    limit: int,
    country: Optional[str] = None,
    device_type: Optional[str] = None,
) -> Tuple[List[Visitor], int]:
    query = _human_visitors(db, date_range)
    if country:
        query = query.filter(Visitor.country == country)
    if device_type:
        query = query.filter(Visitor.device_type == device_type)
    total = query.count()
    items = query.order_by(Visitor.last_visit.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total


def list_sessions(
    db: Session,
    date_range: Optional[DateRange],
    page: int,
    limit: int,
    country: Optional[str] = None,
    device_type: Optional[str] = None,
) -> Tuple[List[VisitorSession], int]:
    query = _between(db.query(VisitorSession), VisitorSession.session_start, date_range)
    if country:
        query = query.filter(VisitorSession.country == country)
    if device_type:
        query = query.filter(VisitorSession.device_type == device_type)
    total = query.count()
    items = query.order_by(VisitorSession.session_start.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total


def list_events(
    db: Session,
    date_range: Optional[DateRange],
    page: int,
    limit: int,
    event_type: Optional[str] = None,
) -> Tuple[List[AnalyticsEvent], int]:
    query = _between(db.query(AnalyticsEvent), AnalyticsEvent.timestamp, date_range)
    if event_type:
        query = query.filter(AnalyticsEvent.event_type == event_type)
    total = query.count()
    items = query.order_by(AnalyticsEvent.timestamp.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total


# Detail lookups

def find_visitor(db: Session, visitor_id: str) -> Optional[Visitor]:
    return db.query(Visitor).filter(Visitor.visitor_id == visitor_id).first()


def find_session(db: Session, session_id: str) -> Optional[VisitorSession]:
    return db.query(VisitorSession).filter(VisitorSession.session_id == session_id).first()


def sessions_of_visitor(db: Session, visitor_id: str, limit: int = 10) -> List[VisitorSession]:
    return (
        db.query(VisitorSession)
        .filter(VisitorSession.visitor_id == visitor_id)
        .order_by(VisitorSession.session_start.desc())
        .limit(limit)
        .all()
    )


def page_views_of(db: Session, column, value: str, limit: Optional[int] = None, newest_first: bool = True):
    order = PageView.timestamp.desc() if newest_first else PageView.timestamp.asc()
    query = db.query(PageView).filter(column == value).order_by(order, PageView.id)
    if limit:
        query = query.limit(limit)
    return query.all()


def events_of(db: Session, column, value: str, limit: Optional[int] = None, newest_first: bool = True):
    order = AnalyticsEvent.timestamp.desc() if newest_first else AnalyticsEvent.timestamp.asc()
    query = db.query(AnalyticsEvent).filter(column == value).order_by(order, AnalyticsEvent.id)
    if limit:
        query = query.limit(limit)
    return query.all()


# Breakdown reports

def page_stats(db: Session, date_range: Optional[DateRange] = None, limit: int = 50) -> List[PageStats]:
    views = func.count(PageView.id)
    query = db.query(
        PageView.path,
        views,
        func.count(distinct(PageView.visitor_id)),
        func.avg(func.coalesce(PageView.time_spent, 0)),
        func.avg(func.coalesce(PageView.scroll_depth, 0)),
        func.sum(case((PageView.exit_page == True, 1), else_=0)),  # noqa: E712
    ).group_by(PageView.path)
    rows = _between(query, PageView.timestamp, date_range).order_by(views.desc(), PageView.path).limit(limit)
    return [
        PageStats(
            path=path,
            views=count,
            unique_visitors=unique,
            average_time_spent=round(float(avg_time or 0), 2),
            average_scroll_depth=round(float(avg_scroll or 0), 2),
            exit_rate=percentage(exits or 0, count),
        )
        for path, count, unique, avg_time, avg_scroll, exits in rows
    ]


def popular_pages(db: Session, date_range: Optional[DateRange] = None, limit: int = 10) -> List[PopularPage]:
    views = func.count(PageView.id)
    query = db.query(PageView.path, views, func.count(distinct(PageView.visitor_id))).group_by(PageView.path)
    rows = _between(query, PageView.timestamp, date_range).order_by(views.desc(), PageView.path).limit(limit)
    return [PopularPage(path=path, views=count, unique_visitors=unique) for path, count, unique in rows]


def city_stats(db: Session, date_range: Optional[DateRange] = None, limit: int = 20) -> List[CityStats]:
    visitors = func.count(Visitor.id)
    query = (
        _human_visitors(db, date_range)
        .with_entities(Visitor.country, Visitor.city, visitors)
        .filter(Visitor.city.isnot(None))
        .group_by(Visitor.country, Visitor.city)
    )
    rows = query.order_by(visitors.desc(), Visitor.city).limit(limit)
    return [CityStats(country=country, city=city, visitors=count) for country, city, count in rows]


def device_stats(db: Session, date_range: Optional[DateRange] = None) -> List[DeviceStats]:
    visitors = func.count(Visitor.id)
    query = (
        _human_visitors(db, date_range)
        .with_entities(Visitor.device_type, Visitor.browser, Visitor.os, visitors)
        .group_by(Visitor.device_type, Visitor.browser, Visitor.os)
    )
    rows = query.order_by(visitors.desc(), Visitor.device_type, Visitor.browser, Visitor.os)
    return [
        DeviceStats(device_type=device_type, browser=browser, os=os_name, visitors=count)
        for device_type, browser, os_name, count in rows
    ]


def browser_stats(db: Session, date_range: Optional[DateRange] = None, limit: int = 20) -> List[BrowserShare]:
    total = count_visitors(db, date_range)
    visitors = func.count(Visitor.id)
    query = _human_visitors(db, date_range).with_entities(Visitor.browser, visitors).group_by(Visitor.browser)
    return [
        BrowserShare(browser=browser, visitors=count, percentage=percentage(count, total))
        for browser, count in query.order_by(visitors.desc(), Visitor.browser).limit(limit)
    ]


def top_referrers(db: Session, date_range: Optional[DateRange] = None, limit: int = 10) -> List[ReferrerCount]:
    sessions = func.count(VisitorSession.id)
    query = (
        db.query(VisitorSession.referrer, sessions)
        .filter(VisitorSession.referrer.isnot(None))
        .group_by(VisitorSession.referrer)
    )
    rows = _between(query, VisitorSession.session_start, date_range).order_by(
        sessions.desc(), VisitorSession.referrer
    ).limit(limit)
    return [ReferrerCount(referrer=referrer, sessions=count) for referrer, count in rows]


def daily_trends(db: Session, date_range: Optional[DateRange] = None) -> List[DailyTrend]:
    day = func.date(PageView.timestamp)
    query = db.query(day, func.count(PageView.id), func.count(distinct(PageView.visitor_id))).group_by(day)
    rows = _between(query, PageView.timestamp, date_range).order_by(day)
    return [
        DailyTrend(date=str(bucket), page_views=views, unique_visitors=unique)
        for bucket, views, unique in rows
    ]


def bot_activity(db: Session, date_range: Optional[DateRange] = None, limit: int = 20) -> List[BotActivity]:
    visitors = func.count(Visitor.id)
    query = (
        db.query(Visitor.browser, visitors, func.max(Visitor.last_visit))
        .filter(Visitor.is_bot == True)  # noqa: E712
        .group_by(Visitor.browser)
    )
    rows = _between(query, Visitor.created_at, date_range).order_by(visitors.desc(), Visitor.browser).limit(limit)
    return [BotActivity(browser=browser, visitors=count, last_seen=last_seen) for browser, count, last_seen in rows]


def event_summary(db: Session, date_range: Optional[DateRange] = None, limit: int = 50) -> List[EventSummary]:
    count = func.count(AnalyticsEvent.id)
    query = db.query(
        AnalyticsEvent.event_type,
        AnalyticsEvent.event_category,
        AnalyticsEvent.event_action,
        count,
    ).group_by(AnalyticsEvent.event_type, AnalyticsEvent.event_category, AnalyticsEvent.event_action)
    rows = _between(query, AnalyticsEvent.timestamp, date_range).order_by(
        count.desc(), AnalyticsEvent.event_type, AnalyticsEvent.event_category, AnalyticsEvent.event_action
    ).limit(limit)
    return [
        EventSummary(event_type=event_type, event_category=category, event_action=action, count=n)
        for event_type, category, action, n in rows
    ]


def table_counts(db: Session) -> dict:
    return {
        "visitors": db.query(func.count(Visitor.id)).scalar() or 0,
        "sessions": db.query(func.count(VisitorSession.id)).scalar() or 0,
        "page_views": db.query(func.count(PageView.id)).scalar() or 0,
        "events": db.query(func.count(AnalyticsEvent.id)).scalar() or 0,
    }
