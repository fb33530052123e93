from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Index
from analytics_app.clock import utc_now
from analytics_app.database.connection import Base


class Visitor(Base):
    """
    One anonymous browser/device, keyed by its fingerprint hash.

    Repeat fingerprints update this row (last_visit, counters); they never
    create a second one. Rows are never deleted by the tracking flow.
    """
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    # Note: unique=True also creates the index
    visitor_id = Column(String(16), unique=True, nullable=False)
    ip_address = Column(String(45), nullable=False, index=True)
    user_agent = Column(Text, nullable=False, default="")

    # Geo
    country = Column(String(2), nullable=True)
    city = Column(String(100), nullable=True)
    region = Column(String(100), nullable=True)
    timezone = Column(String(50), nullable=True)

    # Device
    browser = Column(String(50), nullable=False, default="Unknown")
    browser_version = Column(String(20), nullable=True)
    os = Column(String(50), nullable=False, default="Unknown")
    os_version = Column(String(20), nullable=True)
    device_type = Column(String(10), nullable=False, default="desktop")
    language = Column(String(10), nullable=True)

    # First-touch attribution
    referrer = Column(String(500), nullable=True)
    utm_source = Column(String(100), nullable=True)
    utm_medium = Column(String(100), nullable=True)
    utm_campaign = Column(String(100), nullable=True)

    first_visit = Column(DateTime, nullable=False, default=utc_now)
    last_visit = Column(DateTime, nullable=False, default=utc_now)
    visit_count = Column(Integer, nullable=False, default=1)  # One per session started
    total_page_views = Column(Integer, nullable=False, default=0)
    total_session_duration = Column(Integer, nullable=False, default=0)  # seconds
    is_bot = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_visitors_country_created", "country", "created_at"),
        Index("ix_visitors_device_created", "device_type", "created_at"),
        Index("ix_visitors_bot_created", "is_bot", "created_at"),
        Index("ix_visitors_last_visit", "last_visit"),
    )
