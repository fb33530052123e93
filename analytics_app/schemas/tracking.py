"""
Schemas for the ingestion side: what a request looks like once it has been
detached from the HTTP layer, and what tracking produces.
"""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from analytics_app.models.event import EventType

MAX_CUSTOM_DATA_BYTES = 5000


class PageMetrics(BaseModel):
    """Optional client-reported page metrics"""
    time_spent: Optional[int] = Field(None, ge=0, le=86400, description="Seconds on page")
    scroll_depth: Optional[int] = Field(None, ge=0, le=100, description="Max scroll percentage")
    load_time: Optional[int] = Field(None, ge=0, le=60000, description="Load time in ms")
    exit_page: bool = False


class RequestContext(BaseModel):
    """
    Serializable snapshot of an inbound request.

    Built by the middleware so tracking can run later, in another task or
    another process, without holding on to the live request object.
    Header names are stored lower-cased.
    """

    client_host: Optional[str] = Field(None, description="Transport-level peer address")
    headers: Dict[str, str] = Field(default_factory=dict)
    url: str = Field(..., description="Full request URL")
    path: str = Field(..., description="Request path")
    query_params: Dict[str, str] = Field(default_factory=dict)
    title: Optional[str] = None
    metrics: Optional[PageMetrics] = None

    def header(self, name: str) -> str:
        """Header value or empty string (absent headers are never an error)"""
        return self.headers.get(name.lower()) or ""

    @property
    def user_agent(self) -> str:
        return self.header("user-agent")

    @property
    def referrer(self) -> Optional[str]:
        return self.header("referer") or None


class EventData(BaseModel):
    """Payload of a custom interaction event"""

    event_type: EventType
    event_category: str = Field(..., min_length=1, max_length=100)
    event_action: str = Field(..., min_length=1, max_length=100)
    event_label: Optional[str] = Field(None, max_length=200)
    event_value: Optional[float] = None
    custom_data: Optional[Dict[str, Any]] = None
    # Explicit identifiers win over the request fingerprint
    session_id: Optional[str] = None
    visitor_id: Optional[str] = None

    @field_validator("custom_data")
    @classmethod
    def custom_data_size(cls, value):
        if value is not None and len(json.dumps(value, default=str)) > MAX_CUSTOM_DATA_BYTES:
            raise ValueError("Custom data too large")
        return value


class Fingerprint(BaseModel):
    visitor_id: str
    session_id: str


class DeviceInfo(BaseModel):
    browser: str = "Unknown"
    browser_version: Optional[str] = None
    os: str = "Unknown"
    os_version: Optional[str] = None
    device_type: str = "desktop"  # desktop | mobile | tablet | bot
    device_vendor: Optional[str] = None
    device_model: Optional[str] = None
    is_bot: bool = False


class LocationInfo(BaseModel):
    ip: str
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    timezone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class UTMParameters(BaseModel):
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    term: Optional[str] = None
    content: Optional[str] = None


class PageViewEcho(BaseModel):
    url: str
    path: str
    title: Optional[str] = None
    referrer: Optional[str] = None


class AnalyticsData(BaseModel):
    """Summary returned by page-view tracking"""

    visitor_id: str
    session_id: str
    new_visitor: bool
    new_session: bool
    device_info: DeviceInfo
    location_info: LocationInfo
    page_view: PageViewEcho
