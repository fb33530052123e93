"""
Page-view tracking middleware.

Decides whether a request is tracked, snapshots it into a TrackingJob and
publishes the job. Ingestion happens later in the tracking worker, so the
response never waits for it and never sees its failures.
"""

import re
from typing import Iterable, List, Optional

import structlog
from fastapi import Depends, Request
from starlette.middleware.base import BaseHTTPMiddleware

from analytics_app.config import settings
from analytics_app.dependencies import get_queue
from analytics_app.models.event import EventType
from analytics_app.queue.models import JobKind, TrackingJob
from analytics_app.queue.strategies import QueueStrategy
from analytics_app.schemas.tracking import EventData, RequestContext
from analytics_app.security.auth import bearer_token, is_admin_token

logger = structlog.get_logger()

# Headers ingestion reads; everything else (cookies, auth) stays behind
FORWARDED_HEADERS = [
    "user-agent",
    "accept-language",
    "accept-encoding",
    "referer",
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
    "x-page-title",
]

# Cheap early exit; the worker runs the full classifier on what gets through
QUICK_BOT_PATTERN = re.compile(r"bot|crawler|spider|scraper|curl|wget|postman", re.IGNORECASE)

TRACKED_METHODS = {"GET"}


def should_skip_path(path: str, skip_paths: Iterable[str]) -> bool:
    """
    Skip-list matching.

    An entry ending in "*" is a prefix; any other entry matches exactly or
    as a prefix too, so "/api" also skips "/apifoo".
    """
    for entry in skip_paths:
        if entry.endswith("*"):
            if path.startswith(entry[:-1]):
                return True
        elif path == entry or path.startswith(entry):
            return True
    return False


def is_quick_bot(user_agent: str) -> bool:
    return bool(QUICK_BOT_PATTERN.search(user_agent or ""))


def build_request_context(request: Request) -> RequestContext:
    """Detach what ingestion needs from the live request"""
    headers = {
        name: request.headers[name]
        for name in FORWARDED_HEADERS
        if name in request.headers
    }
    return RequestContext(
        client_host=request.client.host if request.client else None,
        headers=headers,
        url=str(request.url),
        path=request.url.path,
        query_params=dict(request.query_params),
        title=headers.get("x-page-title") or None,
    )


async def publish_job(queue: QueueStrategy, job: TrackingJob) -> bool:
    """Publish without ever raising into the request path"""
    try:
        published = await queue.publish(settings.queue_name, job)
    except Exception:
        logger.exception("Tracking job publish failed", kind=job.kind.value, path=job.context.path)
        return False
    if not published:
        logger.warning("Tracking job dropped", kind=job.kind.value, path=job.context.path)
    return published


class AnalyticsMiddleware(BaseHTTPMiddleware):
    """Publishes a page_view job for every trackable request"""

    def __init__(
        self,
        app,
        skip_paths: Optional[List[str]] = None,
        track_only_public: bool = None,
        skip_bots: bool = None,
        skip_admins: bool = None,
        queue_provider=get_queue,
    ):
        super().__init__(app)
        self.skip_paths = settings.analytics_skip_paths if skip_paths is None else skip_paths
        self.track_only_public = (
            settings.analytics_track_only_public if track_only_public is None else track_only_public
        )
        self.skip_bots = settings.analytics_skip_bots if skip_bots is None else skip_bots
        self.skip_admins = settings.analytics_skip_admins if skip_admins is None else skip_admins
        self.queue_provider = queue_provider

    def should_track(self, request: Request) -> bool:
        path = request.url.path

        if request.method not in TRACKED_METHODS:
            return False

        if should_skip_path(path, self.skip_paths):
            return False

        if self.track_only_public and path.startswith(settings.api_prefix):
            return False

        if self.skip_bots and is_quick_bot(request.headers.get("user-agent", "")):
            return False

        if self.skip_admins and is_admin_token(bearer_token(request.headers.get("authorization"))):
            return False

        return True

    async def dispatch(self, request: Request, call_next):
        try:
            if self.should_track(request):
                job = TrackingJob(kind=JobKind.PAGE_VIEW, context=build_request_context(request))
                await publish_job(self.queue_provider(), job)
        except Exception:
            # Tracking must never break the page
            logger.exception("Analytics middleware error", path=request.url.path)

        return await call_next(request)


def track_event(event_type: EventType, category: str, action: str, label: Optional[str] = None):
    """
    Route dependency that records an interaction event.

    Usage:
        @router.post("/contact", dependencies=[Depends(track_event(EventType.CONTACT, "contact", "submit"))])
    """

    async def dependency(request: Request, queue: QueueStrategy = Depends(get_queue)) -> None:
        try:
            job = TrackingJob(
                kind=JobKind.EVENT,
                context=build_request_context(request),
                event=EventData(
                    event_type=event_type,
                    event_category=category,
                    event_action=action,
                    event_label=label,
                ),
            )
            await publish_job(queue, job)
        except Exception:
            logger.exception("Event tracking hook failed", path=request.url.path)

    return dependency
