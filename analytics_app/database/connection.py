"""
Database engine and session factory.

Stores open one short-lived session per operation from ``SessionLocal``,
so the engine must tolerate use from worker threads.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from analytics_app.config import settings


def build_engine(database_url: str):
    """Create an engine; SQLite needs cross-thread access for executor work."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()
