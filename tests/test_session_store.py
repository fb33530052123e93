import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from analytics_app.clock import utc_now
from analytics_app.locks.strategies import InMemoryLock
from analytics_app.models import Visitor, VisitorSession
from analytics_app.stores import SessionStore


@pytest.fixture
def visitor(db_session):
    now = utc_now()
    row = Visitor(
        visitor_id="a1b2c3d4e5f60718",
        ip_address="8.8.8.8",
        first_visit=now,
        last_visit=now,
        visit_count=1,
        created_at=now,
        updated_at=now,
    )
    db_session.add(row)
    db_session.commit()
    return row


def session_fields(visitor, session_id):
    return {
        "session_id": session_id,
        "visitor_id": visitor.visitor_id,
        "visitor_pk": visitor.id,
        "entry_page": "/",
    }


def active_count(db_session, visitor):
    return (
        db_session.query(VisitorSession)
        .filter(VisitorSession.visitor_id == visitor.visitor_id, VisitorSession.is_active == True)  # noqa: E712
        .count()
    )


class TestStartSession:
    """Session transitions"""

    def test_start_closes_previous_and_counts_visit(self, visitor, db_session):
        store = SessionStore()

        async def scenario():
            first = await store.start_session(utc_now(), **session_fields(visitor, "s000000000000001"))
            second = await store.start_session(utc_now(), **session_fields(visitor, "s000000000000002"))
            return first, second

        first, second = asyncio.run(scenario())
        db_session.expire_all()

        assert second.is_active is True
        assert active_count(db_session, visitor) == 1
        closed = db_session.query(VisitorSession).filter(VisitorSession.id == first.id).one()
        assert closed.is_active is False
        assert closed.session_end is not None
        assert db_session.query(Visitor).one().visit_count == 3

    def test_count_visit_false_leaves_counter(self, visitor, db_session):
        asyncio.run(SessionStore().start_session(utc_now(), count_visit=False, **session_fields(visitor, "s1")))
        db_session.expire_all()

        assert db_session.query(Visitor).one().visit_count == 1

    def test_unique_index_rejects_second_active_row(self, visitor, db_session):
        now = utc_now()
        db_session.add(VisitorSession(**session_fields(visitor, "s1"), is_active=True, session_start=now))
        db_session.commit()

        db_session.add(VisitorSession(**session_fields(visitor, "s2"), is_active=True, session_start=now))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_locked_concurrent_starts_leave_one_active(self, visitor, db_session):
        store = SessionStore()
        lock = InMemoryLock()
        attempts = 10

        async def start(n):
            async with lock.hold(f"visitor:{visitor.visitor_id}"):
                return await store.start_session(utc_now(), **session_fields(visitor, f"s{n:015d}"))

        async def scenario():
            await asyncio.gather(*[start(n) for n in range(attempts)])

        asyncio.run(scenario())

        assert active_count(db_session, visitor) == 1
        closed = (
            db_session.query(VisitorSession)
            .filter(VisitorSession.is_active == False)  # noqa: E712
            .count()
        )
        assert closed == attempts - 1
        assert len(lock) == 0

    def test_unlocked_concurrent_starts_still_leave_one_active(self, visitor, db_session):
        store = SessionStore()
        attempts = 5

        async def scenario():
            await asyncio.gather(
                *[store.start_session(utc_now(), **session_fields(visitor, f"u{n:015d}")) for n in range(attempts)]
            )

        asyncio.run(scenario())

        assert active_count(db_session, visitor) == 1
        assert db_session.query(VisitorSession).count() == attempts


class TestSessionActivity:
    """Activity bookkeeping"""

    def test_find_active_respects_idle_cutoff(self, visitor):
        store = SessionStore()

        async def scenario():
            now = utc_now()
            await store.start_session(now, **session_fields(visitor, "s1"))
            fresh = await store.find_active(visitor.visitor_id, None, now - timedelta(minutes=5))
            stale = await store.find_active(visitor.visitor_id, None, now + timedelta(minutes=5))
            exact = await store.find_active("someone-else", "s1", now - timedelta(minutes=5))
            return fresh, stale, exact

        fresh, stale, exact = asyncio.run(scenario())

        assert fresh.session_id == "s1"
        assert stale is None
        assert exact.session_id == "s1"

    def test_bounce_flips_on_second_page_view(self, visitor, db_session):
        store = SessionStore()

        async def scenario():
            session = await store.start_session(utc_now(), **session_fields(visitor, "s1"))
            await store.record_page_view(session.id, "/", utc_now())
            first = db_session.query(VisitorSession).one().bounced
            db_session.expire_all()
            await store.record_page_view(session.id, "/about", utc_now())
            return first

        assert asyncio.run(scenario()) is True
        db_session.expire_all()

        session = db_session.query(VisitorSession).one()
        assert session.bounced is False
        assert session.page_views == 2
        assert session.exit_page == "/about"

    def test_mark_engaged_clears_bounce(self, visitor, db_session):
        store = SessionStore()

        async def scenario():
            session = await store.start_session(utc_now(), **session_fields(visitor, "s1"))
            await store.record_page_view(session.id, "/", utc_now())
            await store.mark_engaged(session.id, utc_now())

        asyncio.run(scenario())

        assert db_session.query(VisitorSession).one().bounced is False


def test_expire_idle_ends_at_last_activity(visitor, db_session):
    store = SessionStore()
    last_activity = utc_now() - timedelta(hours=30)
    start = last_activity - timedelta(minutes=10)

    asyncio.run(
        store.start_session(
            start,
            **session_fields(visitor, "s1"),
            session_start=start,
            updated_at=last_activity,
        )
    )

    closed = asyncio.run(store.expire_idle(utc_now() - timedelta(hours=24)))
    db_session.expire_all()

    assert closed == 1
    session = db_session.query(VisitorSession).one()
    assert session.is_active is False
    assert session.session_end == last_activity
    assert session.duration == 600
    assert db_session.query(Visitor).one().total_session_duration == 600

    # A second sweep finds nothing left to close
    assert asyncio.run(store.expire_idle(utc_now())) == 0
