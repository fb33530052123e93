import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Float, ForeignKey, Index, JSON
from analytics_app.clock import utc_now
from analytics_app.database.connection import Base


class EventType(str, enum.Enum):
    """Closed set of interaction types"""
    CLICK = "click"
    SCROLL = "scroll"
    FORM_SUBMIT = "form_submit"
    FORM_ERROR = "form_error"
    DOWNLOAD = "download"
    VIDEO_PLAY = "video_play"
    VIDEO_PAUSE = "video_pause"
    SEARCH = "search"
    SHARE = "share"
    CONTACT = "contact"
    NAVIGATION = "navigation"
    ERROR = "error"
    PERFORMANCE = "performance"
    CUSTOM = "custom"


class AnalyticsEvent(Base):
    """One discrete interaction. Append-only."""
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(String(16), nullable=False, index=True)
    visitor_id = Column(String(16), nullable=False, index=True)
    session_pk = Column(Integer, ForeignKey("sessions.id"), nullable=False, index=True)
    visitor_pk = Column(Integer, ForeignKey("visitors.id"), nullable=False, index=True)

    # Stored as the enum value so the column stays a plain string
    event_type = Column(String(50), nullable=False, index=True)
    event_category = Column(String(100), nullable=False, index=True)
    event_action = Column(String(100), nullable=False, index=True)
    event_label = Column(String(200), nullable=True)
    event_value = Column(Float, nullable=True)
    custom_data = Column(JSON, nullable=True)  # capped at 5KB of JSON

    url = Column(String(1000), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)
    user_agent = Column(Text, nullable=False, default="")
    ip_address = Column(String(45), nullable=False)

    __table_args__ = (
        Index("ix_events_type_timestamp", "event_type", "timestamp"),
        Index("ix_events_category_action", "event_category", "event_action", "timestamp"),
    )
