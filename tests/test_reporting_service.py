import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from analytics_app.clock import utc_now
from analytics_app.exceptions import ReportingError, SessionNotFoundError, VisitorNotFoundError
from analytics_app.models.event import EventType
from analytics_app.reports import aggregations
from analytics_app.schemas.reports import DateRange, mask_ip
from analytics_app.schemas.tracking import EventData
from analytics_app.services.reporting_service import ReportingService, build_journey
from tests.samples import GOOGLEBOT_UA, IPHONE_UA


@pytest.fixture
def populated(ingestion, make_context):
    """
    Three human visitors and one bot:
    - desktop Chrome from a public IP, two page views, one click, via a newsletter
    - iPhone from a private IP (local placeholder location), one page view, via a referrer
    - desktop Chrome from another public IP, one page view, direct
    - Googlebot, one page view
    """

    async def scenario():
        desktop = await ingestion.track_page_view(make_context("/", query={"utm_source": "newsletter"}))
        await ingestion.track_page_view(make_context("/pricing"))
        await ingestion.track_event(
            make_context("/pricing"),
            EventData(event_type=EventType.CLICK, event_category="cta", event_action="signup"),
        )
        phone = await ingestion.track_page_view(
            make_context("/", ip="192.168.1.5", user_agent=IPHONE_UA, referrer="https://news.ycombinator.com/")
        )
        await ingestion.track_page_view(make_context("/blog", ip="1.1.1.1"))
        await ingestion.track_page_view(make_context("/", ip="66.249.66.1", user_agent=GOOGLEBOT_UA))
        return desktop, phone

    desktop, phone = asyncio.run(scenario())
    return SimpleNamespace(desktop=desktop, phone=phone)


class TestDashboard:
    """Dashboard summary"""

    def test_empty_database_returns_zeros(self, reporting):
        stats = asyncio.run(reporting.get_dashboard_stats())

        assert stats.total_visitors == 0
        assert stats.total_page_views == 0
        assert stats.total_sessions == 0
        assert stats.average_session_duration == 0
        assert stats.bounce_rate == 0.0
        assert stats.top_pages == []
        assert stats.traffic_sources == []

    def test_populated_dashboard(self, reporting, populated):
        stats = asyncio.run(reporting.get_dashboard_stats())

        # Bots are left out of visitor counts but their page views still count
        assert stats.total_visitors == 3
        assert stats.total_page_views == 5
        assert stats.total_sessions == 4
        assert stats.unique_visitors_today == 3
        assert stats.page_views_today == 5
        assert 0 <= stats.bounce_rate <= 100
        # Only the desktop newsletter session is not a bounce
        assert stats.bounce_rate == 75.0

        assert stats.top_pages[0].path == "/"
        assert stats.top_pages[0].views == 3

        devices = {d.device_type: d for d in stats.device_breakdown}
        assert devices["desktop"].count == 2
        assert devices["mobile"].count == 1
        assert devices["mobile"].percentage == 33.33

        countries = {c.country: c.visitors for c in stats.top_countries}
        assert countries == {None: 2, "US": 1}

        sources = {s.source: s.visitors for s in stats.traffic_sources}
        assert sources == {"direct": 2, "newsletter": 1, "referral": 1}

    def test_range_before_any_traffic_is_empty(self, reporting, populated):
        past = DateRange.from_query("2020-01-01", "2020-01-31")
        stats = asyncio.run(reporting.get_dashboard_stats(past))

        assert stats.total_visitors == 0
        assert stats.total_page_views == 0
        # "Today" is independent of the requested range
        assert stats.page_views_today == 5


class TestRealtime:
    """Realtime snapshot"""

    def test_empty_realtime(self, reporting):
        stats = asyncio.run(reporting.get_realtime_stats())

        assert stats.active_visitors == 0
        assert stats.current_page_views == []
        assert stats.recent_events == []

    def test_realtime_after_traffic(self, reporting, populated):
        stats = asyncio.run(reporting.get_realtime_stats())

        assert stats.active_visitors == 4
        assert stats.current_page_views[0].path == "/"
        assert stats.current_page_views[0].count == 3
        assert [e.event_action for e in stats.recent_events] == ["signup"]

    def test_active_visitors_list(self, reporting, populated):
        active = asyncio.run(reporting.get_active_visitors())

        assert active.count == 4
        assert len(active.visitors) == 4


class TestListsAndDetails:
    """Paginated lists and detail views"""

    def test_list_visitors_masks_ip_and_paginates(self, reporting, populated):
        page = asyncio.run(reporting.list_visitors(page=1, limit=2))

        assert page.pagination.total == 3
        assert page.pagination.pages == 2
        assert len(page.items) == 2
        assert all(v.ip_address.endswith(".xxx") for v in page.items)

    def test_list_visitors_filters(self, reporting, populated):
        page = asyncio.run(reporting.list_visitors(page=1, limit=20, device_type="mobile"))

        assert [v.visitor_id for v in page.items] == [populated.phone.visitor_id]

    def test_list_events_by_type(self, reporting, populated):
        clicks = asyncio.run(reporting.list_events(page=1, limit=20, event_type="click"))
        scrolls = asyncio.run(reporting.list_events(page=1, limit=20, event_type="scroll"))

        assert clicks.pagination.total == 1
        assert scrolls.items == []

    def test_visitor_detail(self, reporting, populated):
        detail = asyncio.run(reporting.get_visitor_detail(populated.desktop.visitor_id))

        assert detail.visitor.visitor_id == populated.desktop.visitor_id
        assert detail.visitor.ip_address == "8.8.8.xxx"
        assert len(detail.sessions) == 1
        assert len(detail.page_views) == 2
        assert len(detail.events) == 1

    def test_session_detail_journey(self, reporting, populated):
        detail = asyncio.run(reporting.get_session_detail(populated.desktop.session_id))

        assert detail.session.page_views == 2
        assert [step.type for step in detail.journey] == ["pageview", "pageview", "event"]
        assert [step.path for step in detail.journey[:2]] == ["/", "/pricing"]

    def test_unknown_ids_raise_not_found(self, reporting):
        with pytest.raises(VisitorNotFoundError):
            asyncio.run(reporting.get_visitor_detail("missing"))
        with pytest.raises(SessionNotFoundError):
            asyncio.run(reporting.get_session_detail("missing"))


class TestReports:
    """Breakdown reports"""

    def test_bot_activity_only_lists_bots(self, reporting, populated):
        bots = asyncio.run(reporting.run_report(aggregations.bot_activity, None))

        assert len(bots) == 1
        assert bots[0].visitors == 1

    def test_daily_trends_bucket_by_day(self, reporting, populated):
        trends = asyncio.run(reporting.run_report(aggregations.daily_trends, DateRange.from_query()))

        assert len(trends) == 1
        assert trends[0].date == utc_now().date().isoformat()
        assert trends[0].page_views == 5
        assert trends[0].unique_visitors == 4

    def test_top_referrers_and_event_summary(self, reporting, populated):
        referrers = asyncio.run(reporting.run_report(aggregations.top_referrers, None))
        events = asyncio.run(reporting.run_report(aggregations.event_summary, None))

        assert [r.referrer for r in referrers] == ["https://news.ycombinator.com/"]
        assert events[0].event_type == "click"
        assert events[0].count == 1

    def test_browser_shares_sum_to_hundred(self, reporting, populated):
        shares = asyncio.run(reporting.run_report(aggregations.browser_stats, None))

        assert sum(s.visitors for s in shares) == 3
        assert round(sum(s.percentage for s in shares)) == 100

    def test_health_counts(self, reporting, populated):
        health = asyncio.run(reporting.health())

        assert health.status == "healthy"
        assert health.visitors == 4
        assert health.page_views == 5
        assert health.events == 1


def test_database_errors_become_reporting_errors(reporting):
    def broken(db):
        raise OperationalError("SELECT 1", {}, Exception("database is gone"))

    with pytest.raises(ReportingError) as exc_info:
        asyncio.run(reporting.run_report(broken))

    assert exc_info.value.code == "ANALYTICS_QUERY_FAILED"
    assert exc_info.value.message == "Failed to retrieve analytics data"


class TestDateRange:
    """Query-string date ranges"""

    def test_bare_end_date_covers_whole_day(self):
        date_range = DateRange.from_query("2025-01-01", "2025-01-31")

        assert date_range.start == datetime(2025, 1, 1)
        assert date_range.end == datetime(2025, 1, 31, 23, 59, 59, 999000)

    def test_defaults_to_trailing_thirty_days(self):
        date_range = DateRange.from_query()

        assert timedelta(days=29, hours=23) < date_range.end - date_range.start <= timedelta(days=30, seconds=1)

    def test_zulu_datetime(self):
        date_range = DateRange.from_query("2025-01-01T10:30:00Z")

        assert date_range.start == datetime(2025, 1, 1, 10, 30)

    def test_invalid_date_raises(self):
        with pytest.raises(ValueError):
            DateRange.from_query("not-a-date")

    def test_today_spans_the_current_utc_day(self):
        date_range = DateRange.today()
        now = utc_now()

        assert date_range.start == now.replace(hour=0, minute=0, second=0, microsecond=0)
        assert date_range.end == date_range.start + timedelta(days=1) - timedelta(microseconds=1)
        assert date_range.start <= now <= date_range.end


@pytest.mark.parametrize(
    "ip, masked",
    [
        ("203.0.113.77", "203.0.113.xxx"),
        ("2001:db8::1", "2001:db8::xxxx"),
        (None, None),
        ("", ""),
    ],
)
def test_mask_ip(ip, masked):
    assert mask_ip(ip) == masked


def test_build_journey_orders_by_time():
    start = datetime(2025, 1, 1, 12, 0, 0)
    page_views = [
        SimpleNamespace(timestamp=start, path="/", title="Home"),
        SimpleNamespace(timestamp=start + timedelta(seconds=30), path="/pricing", title=None),
    ]
    events = [
        SimpleNamespace(
            timestamp=start + timedelta(seconds=10),
            event_type="click",
            event_category="cta",
            event_action="signup",
        )
    ]

    journey = build_journey(page_views, events)

    assert [step.type for step in journey] == ["pageview", "event", "pageview"]
    assert journey[1].event_action == "signup"
