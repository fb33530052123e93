from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from analytics_app.models.visitor import Visitor
from analytics_app.stores.base import BaseStore


class VisitorStore(BaseStore):
    """
    Durable visitor records with upsert-on-repeat-visit semantics.

    The upsert is deliberately two explicit steps: ``find`` then
    ``create_if_absent``. The unique constraint on ``visitor_id`` turns a
    lost creation race into a re-read instead of a duplicate row.
    """

    async def find(self, visitor_id: str) -> Optional[Visitor]:
        return await self._run(self._find, visitor_id)

    @staticmethod
    def _find(db: Session, visitor_id: str) -> Optional[Visitor]:
        return db.query(Visitor).filter(Visitor.visitor_id == visitor_id).first()

    async def create_if_absent(self, visitor: Visitor) -> Tuple[Visitor, bool]:
        """
        Insert ``visitor`` unless its visitor_id already exists.

        Returns:
            (stored visitor, True if this call created it)
        """
        try:
            return await self._run(self._insert, visitor), True
        except IntegrityError:
            existing = await self.find(visitor.visitor_id)
            if existing is None:
                raise
            return existing, False

    @staticmethod
    def _insert(db: Session, visitor: Visitor) -> Visitor:
        db.add(visitor)
        db.flush()
        return visitor

    async def touch(self, visitor_pk: int, now: datetime) -> None:
        """Set last_visit = now, never moving it backwards"""
        await self._run(self._touch, visitor_pk, now)

    @staticmethod
    def _touch(db: Session, visitor_pk: int, now: datetime) -> None:
        db.execute(
            update(Visitor)
            .where(Visitor.id == visitor_pk, Visitor.last_visit < now)
            .values(last_visit=now)
        )

    async def increment_page_views(self, visitor_pk: int) -> None:
        """Atomic ``total_page_views + 1`` (no read-modify-write)"""
        await self._run(self._increment_page_views, visitor_pk)

    @staticmethod
    def _increment_page_views(db: Session, visitor_pk: int) -> None:
        db.execute(
            update(Visitor)
            .where(Visitor.id == visitor_pk)
            .values(total_page_views=Visitor.total_page_views + 1)
        )
