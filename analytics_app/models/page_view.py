from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Index
from analytics_app.clock import utc_now
from analytics_app.database.connection import Base


class PageView(Base):
    """One page render. Append-only: rows are never updated."""
    __tablename__ = "page_views"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(String(16), nullable=False, index=True)
    visitor_id = Column(String(16), nullable=False, index=True)
    session_pk = Column(Integer, ForeignKey("sessions.id"), nullable=False, index=True)
    visitor_pk = Column(Integer, ForeignKey("visitors.id"), nullable=False, index=True)

    url = Column(String(1000), nullable=False)
    path = Column(String(500), nullable=False, index=True)
    title = Column(String(200), nullable=True)
    referrer = Column(String(1000), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)
    time_spent = Column(Integer, nullable=True)  # seconds, max 24h
    scroll_depth = Column(Integer, nullable=True)  # percentage 0-100
    exit_page = Column(Boolean, nullable=False, default=False, index=True)
    load_time = Column(Integer, nullable=True)  # milliseconds, max 60s

    user_agent = Column(Text, nullable=False, default="")
    ip_address = Column(String(45), nullable=False)

    __table_args__ = (
        Index("ix_page_views_path_timestamp", "path", "timestamp"),
        Index("ix_page_views_session_timestamp", "session_id", "timestamp"),
    )
