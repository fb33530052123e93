from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import case, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from analytics_app.models.session import VisitorSession
from analytics_app.models.visitor import Visitor
from analytics_app.stores.base import BaseStore

logger = structlog.get_logger()

MAX_START_ATTEMPTS = 5


def elapsed_seconds(session: VisitorSession) -> int:
    """Engaged time: session start to last recorded activity"""
    last_activity = session.updated_at or session.session_start
    return max(0, int((last_activity - session.session_start).total_seconds()))


class SessionStore(BaseStore):
    """
    Durable browsing sessions with an active/inactive state machine.

    Invariant: at most one active session per visitor_id. Two layers hold it:
    callers serialize per visitor with a lock, and the partial unique index
    ``uq_sessions_active_visitor`` rejects a second active row outright.
    Closing is a compare-and-set on ``is_active`` so a session is closed,
    and its duration credited to the visitor, exactly once.
    """

    async def find_active(
        self,
        visitor_id: str,
        session_id: Optional[str],
        idle_cutoff: datetime,
    ) -> Optional[VisitorSession]:
        """
        Active session for this request, if any.

        Matches the exact session_id first, then any active session of the
        visitor whose last activity is newer than ``idle_cutoff``.
        """
        return await self._run(self._find_active, visitor_id, session_id, idle_cutoff)

    @staticmethod
    def _find_active(db: Session, visitor_id, session_id, idle_cutoff) -> Optional[VisitorSession]:
        query = db.query(VisitorSession).filter(
            VisitorSession.is_active == True,  # noqa: E712
            VisitorSession.updated_at >= idle_cutoff,
        )
        if session_id:
            exact = query.filter(VisitorSession.session_id == session_id).first()
            if exact is not None:
                return exact
        return (
            query.filter(VisitorSession.visitor_id == visitor_id)
            .order_by(VisitorSession.updated_at.desc())
            .first()
        )

    async def find_by_session_id(self, session_id: str) -> Optional[VisitorSession]:
        return await self._run(self._find_by_session_id, session_id)

    @staticmethod
    def _find_by_session_id(db: Session, session_id: str) -> Optional[VisitorSession]:
        return db.query(VisitorSession).filter(VisitorSession.session_id == session_id).first()

    async def start_session(self, now: datetime, count_visit: bool = True, **fields) -> VisitorSession:
        """
        Close the visitor's active sessions and insert a new active one.

        Args:
            now: Transition timestamp (session_end of closed sessions)
            count_visit: Increment the visitor's visit_count in the same transaction
            **fields: Column values of the new session (session_id, visitor_id,
                visitor_pk and the entry snapshot)

        Retries when the unique index reports that a concurrent writer
        activated another session between the close and the insert.
        """
        for attempt in range(1, MAX_START_ATTEMPTS + 1):
            try:
                return await self._run(self._start_session, dict(fields), now, count_visit)
            except IntegrityError:
                if attempt == MAX_START_ATTEMPTS:
                    raise
                logger.info(
                    "Concurrent session start detected, retrying",
                    visitor_id=fields.get("visitor_id"),
                    attempt=attempt,
                )

    def _start_session(self, db: Session, values: dict, now: datetime, count_visit: bool) -> VisitorSession:
        active = (
            db.query(VisitorSession)
            .filter(
                VisitorSession.visitor_id == values["visitor_id"],
                VisitorSession.is_active == True,  # noqa: E712
            )
            .all()
        )
        for previous in active:
            self._close(db, previous, end=now)

        values.setdefault("session_start", now)
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        values["is_active"] = True
        new_session = VisitorSession(**values)
        db.add(new_session)

        if count_visit:
            db.execute(
                update(Visitor)
                .where(Visitor.id == values["visitor_pk"])
                .values(visit_count=Visitor.visit_count + 1)
                .execution_options(synchronize_session=False)
            )

        db.flush()
        return new_session

    @staticmethod
    def _close(db: Session, session: VisitorSession, end: datetime) -> bool:
        """Compare-and-set close; returns False if someone else closed it first"""
        duration = elapsed_seconds(session)
        result = db.execute(
            update(VisitorSession)
            .where(VisitorSession.id == session.id, VisitorSession.is_active == True)  # noqa: E712
            .values(is_active=False, session_end=end, duration=duration)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        db.execute(
            update(Visitor)
            .where(Visitor.id == session.visitor_pk)
            .values(total_session_duration=Visitor.total_session_duration + duration)
            .execution_options(synchronize_session=False)
        )
        return True

    async def record_page_view(self, session_pk: int, path: str, now: datetime) -> None:
        """
        Atomic ``page_views + 1`` plus keep-alive.

        A session stops counting as a bounce on its second page view.
        """
        await self._run(self._record_page_view, session_pk, path, now)

    @staticmethod
    def _record_page_view(db: Session, session_pk: int, path: str, now: datetime) -> None:
        db.execute(
            update(VisitorSession)
            .where(VisitorSession.id == session_pk)
            .values(
                page_views=VisitorSession.page_views + 1,
                bounced=case((VisitorSession.page_views >= 1, False), else_=VisitorSession.bounced),
                exit_page=path,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def mark_engaged(self, session_pk: int, now: datetime) -> None:
        """Any interaction means the session is not a bounce"""
        await self._run(self._mark_engaged, session_pk, now)

    @staticmethod
    def _mark_engaged(db: Session, session_pk: int, now: datetime) -> None:
        db.execute(
            update(VisitorSession)
            .where(VisitorSession.id == session_pk)
            .values(bounced=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def expire_idle(self, idle_cutoff: datetime) -> int:
        """
        Close active sessions with no activity since ``idle_cutoff``.

        session_end is the last activity time, not the sweep time.

        Returns:
            Number of sessions closed
        """
        return await self._run(self._expire_idle, idle_cutoff)

    def _expire_idle(self, db: Session, idle_cutoff: datetime) -> int:
        stale: List[VisitorSession] = (
            db.query(VisitorSession)
            .filter(
                VisitorSession.is_active == True,  # noqa: E712
                or_(VisitorSession.updated_at < idle_cutoff, VisitorSession.updated_at.is_(None)),
            )
            .all()
        )
        closed = 0
        for session in stale:
            if self._close(db, session, end=session.updated_at or session.session_start):
                closed += 1
        return closed
