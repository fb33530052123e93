"""
Base class for the SQLAlchemy-backed stores.

The ORM is synchronous; each store operation opens its own short-lived
session and runs in the default executor, so awaiting a store call never
blocks the event loop and concurrent calls really do run concurrently.
"""

import asyncio
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from analytics_app.database.connection import SessionLocal


class BaseStore:
    """One transaction per call: commit on success, rollback on error."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        """
        Args:
            session_factory: Factory for creating database sessions
        """
        self.session_factory = session_factory

    async def _run(self, func: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._transaction, func, args)

    def _transaction(self, func: Callable[..., Any], args) -> Any:
        db: Session = self.session_factory()
        try:
            result = func(db, *args)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
