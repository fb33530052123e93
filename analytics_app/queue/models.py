"""
Data models for queue messages.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from analytics_app.clock import utc_now
from analytics_app.schemas.tracking import EventData, RequestContext


class JobKind(str, Enum):
    PAGE_VIEW = "page_view"
    EVENT = "event"


class TrackingJob(BaseModel):
    """
    Unit of tracking work.

    Published by the middleware when a page is served (or by a route's
    event hook) and consumed by the tracking worker. Contains everything
    ingestion needs, so the request itself can finish immediately.
    """

    kind: JobKind = Field(..., description="What to record")
    context: RequestContext = Field(..., description="Snapshot of the request")
    event: Optional[EventData] = Field(None, description="Event payload (kind=event only)")
    enqueued_at: datetime = Field(default_factory=utc_now, description="When the job was published")

    # Set by queue backends that need acknowledgement
    message_id: Optional[str] = Field(None, exclude=True)

    model_config = {
        "json_schema_extra": {
            "example": {
                "kind": "page_view",
                "context": {
                    "client_host": "198.51.100.23",
                    "headers": {
                        "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
                        "accept-language": "en-US,en;q=0.9",
                        "referer": "https://news.ycombinator.com/",
                    },
                    "url": "https://example.com/blog/post-1?utm_source=hn",
                    "path": "/blog/post-1",
                    "query_params": {"utm_source": "hn"},
                },
                "enqueued_at": "2025-10-29T10:30:00",
            }
        }
    }
