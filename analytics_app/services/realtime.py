"""
Realtime broadcaster.

Pushes realtime snapshots and live tracking activity to authenticated
admin connections. A connection is anything with an async ``send_json``
(a Starlette ``WebSocket`` in production).

Per-connection state machine:

    UNAUTHENTICATED --authenticate(ok)--> AUTHENTICATED --disconnect--> DISCONNECTED
    UNAUTHENTICATED --authenticate(bad)--> UNAUTHENTICATED

The connection table is owned by the broadcaster and only touched from the
event loop, so no lock is needed inside one process. Each process keeps its
own table; connections are never shared between workers.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from analytics_app.config import settings
from analytics_app.exceptions import AnalyticsError
from analytics_app.security.auth import verify_admin

logger = structlog.get_logger()

REALTIME_STATS = "realtime-stats"
PAGE_VIEW = "page-view"
ANALYTICS_EVENT = "analytics-event"
AUTHENTICATED = "authenticated"


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"


class RealtimeBroadcaster:
    """Fan-out of realtime analytics to admin connections"""

    def __init__(
        self,
        reporting,
        interval: float = None,
        verify: Callable[[str], Any] = verify_admin,
    ):
        """
        Args:
            reporting: Anything with ``async get_realtime_stats()`` (ReportingService)
            interval: Seconds between snapshot broadcasts
            verify: Credential check; raises on an invalid or unprivileged token
        """
        self.reporting = reporting
        self.interval = settings.realtime_interval if interval is None else interval
        self.verify = verify
        # Keyed by id(): Starlette connections are Mappings and unhashable
        self._connections: Dict[int, Any] = {}
        self._states: Dict[int, ConnectionState] = {}
        self._task: Optional[asyncio.Task] = None

    def connect(self, connection) -> None:
        self._connections[id(connection)] = connection
        self._states[id(connection)] = ConnectionState.UNAUTHENTICATED

    def state(self, connection) -> ConnectionState:
        return self._states.get(id(connection), ConnectionState.DISCONNECTED)

    @property
    def subscribers(self) -> List[Any]:
        return [
            self._connections[key]
            for key, state in self._states.items()
            if state == ConnectionState.AUTHENTICATED
        ]

    async def authenticate(self, connection, token: str) -> bool:
        """
        Validate ``token`` for ``connection``.

        On success the connection joins the broadcast set and immediately
        receives one snapshot. On failure it gets an error reply and stays
        unauthenticated.
        """
        if id(connection) not in self._states:
            self.connect(connection)

        try:
            self.verify(token)
        except AnalyticsError as e:
            logger.info("Realtime authentication rejected", reason=e.message)
            await self._send(connection, AUTHENTICATED, {"success": False, "error": e.message})
            return False

        self._states[id(connection)] = ConnectionState.AUTHENTICATED
        await self._send(connection, AUTHENTICATED, {"success": True})

        try:
            stats = await self.reporting.get_realtime_stats()
        except AnalyticsError as e:
            logger.warning("Initial realtime snapshot failed", error=e.message)
            return True
        await self._send(connection, REALTIME_STATS, stats.model_dump(mode="json"))
        return True

    def disconnect(self, connection) -> None:
        self._connections.pop(id(connection), None)
        if self._states.pop(id(connection), None) is not None:
            logger.debug("Realtime connection closed", subscribers=len(self.subscribers))

    async def broadcast(self, event: str, data: Any) -> int:
        """Send to every authenticated connection; returns deliveries"""
        delivered = 0
        for connection in self.subscribers:
            if await self._send(connection, event, data):
                delivered += 1
        return delivered

    async def broadcast_page_view(self, data: Dict[str, Any]) -> int:
        return await self.broadcast(PAGE_VIEW, data)

    async def broadcast_event(self, data: Dict[str, Any]) -> int:
        return await self.broadcast(ANALYTICS_EVENT, data)

    async def tick(self) -> bool:
        """One timer firing. No-op (and no query) when nobody is listening."""
        if not self.subscribers:
            return False
        stats = await self.reporting.get_realtime_stats()
        await self.broadcast(REALTIME_STATS, stats.model_dump(mode="json"))
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Realtime broadcast failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _send(self, connection, event: str, data: Any) -> bool:
        try:
            await connection.send_json({"event": event, "data": data})
        except Exception as e:
            # Dead socket: drop it from the table
            logger.debug("Realtime send failed", error=str(e))
            self.disconnect(connection)
            return False
        return True
