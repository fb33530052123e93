"""
Test configuration and fixtures for the visitor analytics service.
This centralizes all test setup, making individual tests clean.

Settings are read at import time, so the environment is configured here
before anything from the application is imported.
"""

import os
import tempfile

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "visitor_analytics_test.db")

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["LOCK_BACKEND"] = "memory"
os.environ["RUN_EMBEDDED_WORKER"] = "false"
os.environ["GEOIP_DB_PATH"] = os.path.join(tempfile.gettempdir(), "missing-GeoLite2-City.mmdb")
os.environ["JWT_SECRET"] = "test-secret-key-for-analytics-tests-only"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from main import app
from analytics_app.database.connection import Base, SessionLocal, engine
from analytics_app.dependencies import reset_dependencies
from analytics_app.locks.strategies import InMemoryLock
from analytics_app.schemas.tracking import RequestContext
from analytics_app.security.auth import create_access_token
from analytics_app.services.geolocator import GeoLocator
from analytics_app.services.ingestion_service import IngestionService
from analytics_app.services.reporting_service import ReportingService
from analytics_app.stores import EventStore, PageViewStore, SessionStore, VisitorStore

from tests.samples import CHROME_UA


@pytest.fixture(scope="function", autouse=True)
def database():
    """
    Fresh tables and fresh singletons for each test.
    This ensures tests are isolated and don't affect each other.
    """
    reset_dependencies()
    Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        Base.metadata.drop_all(bind=engine)
        reset_dependencies()


@pytest.fixture
def db_session():
    """Plain ORM session for arranging and inspecting rows"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def ingestion():
    return IngestionService(
        visitors=VisitorStore(),
        sessions=SessionStore(),
        page_views=PageViewStore(),
        events=EventStore(),
        locks=InMemoryLock(),
        geolocator=GeoLocator(),
    )


@pytest.fixture
def reporting():
    return ReportingService()


@pytest.fixture
def make_context():
    """Factory for request snapshots; defaults describe a desktop Chrome visitor"""

    def _make(
        path: str = "/",
        ip: str = "8.8.8.8",
        user_agent: str = CHROME_UA,
        query: dict = None,
        referrer: str = None,
        **headers,
    ) -> RequestContext:
        all_headers = {
            "user-agent": user_agent,
            "accept-language": "en-US,en;q=0.9",
            "accept-encoding": "gzip, deflate, br",
        }
        if referrer:
            all_headers["referer"] = referrer
        all_headers.update({name.replace("_", "-"): value for name, value in headers.items()})
        query = query or {}
        query_string = "&".join(f"{k}={v}" for k, v in query.items())
        return RequestContext(
            client_host=ip,
            headers=all_headers,
            url=f"https://example.com{path}" + (f"?{query_string}" if query_string else ""),
            path=path,
            query_params=query,
        )

    return _make


@pytest.fixture
def admin_token():
    return create_access_token("admin-1", "admin")


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def user_headers():
    return {"Authorization": f"Bearer {create_access_token('user-1', 'user')}"}


@pytest.fixture
def client():
    """
    Test client with the app lifespan running.
    This is the main fixture that HTTP tests will use.
    """
    with TestClient(app) as test_client:
        yield test_client
