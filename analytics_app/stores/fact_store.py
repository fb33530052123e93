from sqlalchemy.orm import Session

from analytics_app.models.event import AnalyticsEvent
from analytics_app.models.page_view import PageView
from analytics_app.stores.base import BaseStore


class PageViewStore(BaseStore):
    """Append-only page view facts"""

    async def create(self, page_view: PageView) -> PageView:
        return await self._run(self._insert, page_view)

    @staticmethod
    def _insert(db: Session, row):
        db.add(row)
        db.flush()
        return row


class EventStore(PageViewStore):
    """Append-only interaction events"""

    async def create(self, event: AnalyticsEvent) -> AnalyticsEvent:
        return await self._run(self._insert, event)
