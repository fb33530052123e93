from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index, text
from analytics_app.clock import utc_now
from analytics_app.database.connection import Base


class VisitorSession(Base):
    """
    One browsing episode of a visitor.

    State machine: created active -> inactive, either when superseded by a
    newer session of the same visitor or when idle past the timeout.
    The device/geo snapshot is written at creation and never changed.

    At most one active row per visitor_id: enforced by the partial unique
    index below (SQLite and PostgreSQL both support it).
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(String(16), unique=True, nullable=False)
    visitor_id = Column(String(16), nullable=False, index=True)
    visitor_pk = Column(Integer, ForeignKey("visitors.id"), nullable=False, index=True)

    session_start = Column(DateTime, nullable=False, default=utc_now, index=True)
    session_end = Column(DateTime, nullable=True, index=True)
    duration = Column(Integer, nullable=False, default=0)  # seconds
    page_views = Column(Integer, nullable=False, default=0)
    bounced = Column(Boolean, nullable=False, default=True, index=True)
    entry_page = Column(String(500), nullable=False)
    exit_page = Column(String(500), nullable=True)
    referrer = Column(String(1000), nullable=True)

    # UTM attribution
    utm_source = Column(String(100), nullable=True)
    utm_medium = Column(String(100), nullable=True)
    utm_campaign = Column(String(100), nullable=True)
    utm_term = Column(String(100), nullable=True)
    utm_content = Column(String(100), nullable=True)

    # Device/geo snapshot
    browser = Column(String(50), nullable=False, default="Unknown")
    os = Column(String(50), nullable=False, default="Unknown")
    device_type = Column(String(10), nullable=False, default="desktop")
    country = Column(String(2), nullable=True)
    city = Column(String(100), nullable=True)
    region = Column(String(100), nullable=True)
    timezone = Column(String(50), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)  # bumped on activity

    __table_args__ = (
        Index(
            "uq_sessions_active_visitor",
            "visitor_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index("ix_sessions_active_updated", "is_active", "updated_at"),
        Index("ix_sessions_device_start", "device_type", "session_start"),
        Index("ix_sessions_country_start", "country", "session_start"),
    )
