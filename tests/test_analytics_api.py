import asyncio

import pytest

from analytics_app.dependencies import get_ingestion_service, get_queue
from analytics_app.stores import SessionStore
from analytics_app.workers.tracking_worker import TrackingWorker
from tests.samples import CHROME_UA, IPHONE_UA

API = "/api/v1/analytics"


def drain_queue():
    """Run the tracking worker over whatever the middleware published"""
    worker = TrackingWorker(queue=get_queue(), ingestion=get_ingestion_service(), sessions=SessionStore())
    asyncio.run(worker.run_once())
    return worker


def visit(client, path="/", user_agent=CHROME_UA, **headers):
    response = client.get(path, headers={"User-Agent": user_agent, **headers})
    assert response.status_code == 200
    return response


class TestAuthorization:
    """Every reporting route is admin-only"""

    def test_missing_token(self, client):
        response = client.get(f"{API}/dashboard")

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    def test_garbage_token(self, client):
        response = client.get(f"{API}/dashboard", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid token", "code": "INVALID_TOKEN"}

    def test_non_admin_role(self, client, user_headers):
        response = client.get(f"{API}/dashboard", headers=user_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "INSUFFICIENT_PERMISSIONS"

    @pytest.mark.parametrize(
        "path",
        [
            "/dashboard",
            "/visitors",
            "/sessions",
            "/pages",
            "/pages/popular",
            "/realtime",
            "/realtime/visitors",
            "/events",
            "/events/summary",
            "/geo/countries",
            "/geo/cities",
            "/devices",
            "/browsers",
            "/traffic/sources",
            "/traffic/referrers",
            "/trends/daily",
            "/security/bots",
            "/health",
        ],
    )
    def test_admin_can_read_every_report(self, client, admin_headers, path):
        response = client.get(f"{API}{path}", headers=admin_headers)

        assert response.status_code == 200


class TestQueryValidation:
    """Pagination and date parameters"""

    def test_limit_is_clamped(self, client, admin_headers):
        response = client.get(f"{API}/visitors?limit=500", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["pagination"]["limit"] == 100

    def test_page_must_be_positive(self, client, admin_headers):
        response = client.get(f"{API}/visitors?page=0", headers=admin_headers)

        assert response.status_code == 422

    def test_invalid_date(self, client, admin_headers):
        response = client.get(f"{API}/dashboard?start_date=yesterday", headers=admin_headers)

        assert response.status_code == 422

    def test_unknown_event_type(self, client, admin_headers):
        response = client.get(f"{API}/events?event_type=teleport", headers=admin_headers)

        assert response.status_code == 422


class TestEndToEnd:
    """Middleware -> queue -> worker -> reporting"""

    def test_tracked_visit_shows_up_in_reports(self, client, admin_headers):
        visit(client, "/")
        visit(client, "/?utm_source=newsletter")
        drain_queue()

        visitors = client.get(f"{API}/visitors", headers=admin_headers).json()
        assert visitors["pagination"]["total"] == 1
        visitor = visitors["items"][0]
        assert visitor["ip_address"] == "127.0.0.xxx"
        assert visitor["total_page_views"] == 2

        dashboard = client.get(f"{API}/dashboard", headers=admin_headers).json()
        assert dashboard["total_visitors"] == 1
        assert dashboard["total_page_views"] == 2
        assert dashboard["bounce_rate"] == 0.0
        assert dashboard["top_pages"][0]["path"] == "/"

    def test_reporting_calls_are_not_tracked(self, client, admin_headers):
        client.get(f"{API}/dashboard", headers={"User-Agent": CHROME_UA, **admin_headers})

        assert drain_queue().processed_count == 0

    def test_visitor_and_session_detail(self, client, admin_headers):
        visit(client, "/", user_agent=IPHONE_UA)
        drain_queue()

        visitor = client.get(f"{API}/visitors", headers=admin_headers).json()["items"][0]
        assert visitor["device_type"] == "mobile"

        detail = client.get(f"{API}/visitors/{visitor['visitor_id']}", headers=admin_headers).json()
        assert len(detail["sessions"]) == 1
        session_id = detail["sessions"][0]["session_id"]

        session = client.get(f"{API}/sessions/{session_id}", headers=admin_headers).json()
        assert session["session"]["entry_page"] == "/"
        assert [step["type"] for step in session["journey"]] == ["pageview"]

    def test_unknown_visitor_and_session(self, client, admin_headers):
        visitor = client.get(f"{API}/visitors/doesnotexist", headers=admin_headers)
        session = client.get(f"{API}/sessions/doesnotexist", headers=admin_headers)

        assert visitor.status_code == 404
        assert visitor.json()["code"] == "VISITOR_NOT_FOUND"
        assert session.status_code == 404
        assert session.json()["code"] == "SESSION_NOT_FOUND"


class TestRealtimeSocket:
    """Admin WebSocket feed"""

    def test_ping(self, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"event": "pong"}

    def test_unknown_action(self, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"action": "dance"})
            assert ws.receive_json()["event"] == "error"

    def test_failed_authentication(self, client):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"action": "authenticate", "token": "bad"})
            message = ws.receive_json()

        assert message["event"] == "authenticated"
        assert message["data"]["success"] is False

    def test_successful_authentication_sends_snapshot(self, client, admin_token):
        with client.websocket_connect("/ws/analytics") as ws:
            ws.send_json({"action": "authenticate", "token": admin_token})
            ack = ws.receive_json()
            snapshot = ws.receive_json()

        assert ack == {"event": "authenticated", "data": {"success": True}}
        assert snapshot["event"] == "realtime-stats"
        assert snapshot["data"]["active_visitors"] == 0
