"""
Tracking Worker

Consumes tracking jobs from the queue and runs ingestion for each one.

Architecture:
- Consumes jobs from the queue in batches
- Runs IngestionService per job; failures are logged and dropped
- Acknowledges every job (telemetry has no retry queue)
- Periodically expires idle sessions
- Notifies the realtime broadcaster of tracked activity

Runs inside the API process (lifespan task) or on its own:

    python -m analytics_app.workers.tracking_worker
"""

import asyncio
import signal
import sys
from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from analytics_app.clock import utc_now
from analytics_app.config import settings
from analytics_app.exceptions import NotFoundError
from analytics_app.queue.models import JobKind, TrackingJob
from analytics_app.queue.strategies import QueueStrategy
from analytics_app.services.ingestion_service import IngestionService
from analytics_app.stores.session_store import SessionStore

logger = structlog.get_logger()


class TrackingWorker:
    """
    Tracking worker with batch consumption.

    Features:
    - Batch consumption (queue_batch_size jobs at once)
    - Per-job failure isolation
    - Idle-session sweep every session_expiry_interval seconds
    """

    def __init__(
        self,
        queue: QueueStrategy,
        ingestion: IngestionService,
        sessions: SessionStore,
        broadcaster=None,
    ):
        """
        Initialize worker with dependencies.

        Args:
            queue: Queue strategy for consuming jobs
            ingestion: Service that records page views and events
            sessions: Session store (for the idle sweep)
            broadcaster: Optional realtime broadcaster to notify
        """
        self.queue = queue
        self.ingestion = ingestion
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.running = False
        self.processed_count = 0
        self.failed_count = 0

        # Configuration
        self.batch_size = settings.queue_batch_size
        self.poll_interval = settings.queue_poll_interval
        self.expiry_interval = timedelta(seconds=settings.session_expiry_interval)
        self.idle_timeout = timedelta(seconds=settings.session_idle_timeout)
        self.last_expiry: Optional[datetime] = None

    async def start(self):
        """Consume until stopped or cancelled"""
        self.running = True
        logger.info(
            "Tracking worker started",
            batch_size=self.batch_size,
            expiry_interval=self.expiry_interval.total_seconds(),
        )

        while self.running:
            try:
                handled = await self.run_once()
                await self.expire_sessions_if_needed()
                if not handled:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                logger.info("Tracking worker cancelled")
                break
            except Exception:
                logger.exception("Tracking worker loop error")
                await asyncio.sleep(1)

        logger.info("Tracking worker stopped", processed=self.processed_count, failed=self.failed_count)

    async def run_once(self) -> int:
        """
        Consume and process one batch.

        Returns:
            Number of jobs taken from the queue
        """
        jobs = await self.queue.consume_batch(
            queue_name=settings.queue_name,
            batch_size=self.batch_size,
            block_time=int(self.poll_interval * 1000),
        )
        if not jobs:
            return 0

        await self._process_batch(jobs)

        # Every job is acknowledged, including failed ones
        message_ids = [job.message_id for job in jobs if job.message_id]
        if message_ids:
            await self.queue.ack(settings.queue_name, message_ids)

        logger.debug("Processed tracking batch", size=len(jobs), total=self.processed_count)
        return len(jobs)

    async def _process_batch(self, jobs: List[TrackingJob]):
        """Jobs run in order: a page view must land before the event that follows it"""
        for job in jobs:
            if await self.process_job(job):
                self.processed_count += 1
            else:
                self.failed_count += 1

    async def process_job(self, job: TrackingJob) -> bool:
        """Run one job; never raises"""
        try:
            if job.kind == JobKind.PAGE_VIEW:
                data = await self.ingestion.track_page_view(job.context)
                await self._notify("page_view", data.model_dump(mode="json"))
            elif job.kind == JobKind.EVENT:
                if job.event is None:
                    logger.warning("Event job without payload", path=job.context.path)
                    return False
                event = await self.ingestion.track_event(job.context, job.event)
                await self._notify(
                    "event",
                    {
                        "visitor_id": event.visitor_id,
                        "session_id": event.session_id,
                        "event_type": event.event_type,
                        "event_category": event.event_category,
                        "event_action": event.event_action,
                        "url": event.url,
                        "timestamp": event.timestamp.isoformat(),
                    },
                )
            return True
        except NotFoundError as e:
            logger.warning("Tracking skipped", kind=job.kind.value, path=job.context.path, reason=e.message)
        except Exception:
            logger.exception("Tracking failed", kind=job.kind.value, path=job.context.path)
        return False

    async def _notify(self, kind: str, data: dict):
        if self.broadcaster is None:
            return
        try:
            if kind == "page_view":
                await self.broadcaster.broadcast_page_view(data)
            else:
                await self.broadcaster.broadcast_event(data)
        except Exception:
            logger.exception("Realtime notification failed", kind=kind)

    async def expire_sessions_if_needed(self) -> int:
        """Close idle sessions if the sweep interval has elapsed"""
        now = utc_now()
        if self.last_expiry is not None and now - self.last_expiry < self.expiry_interval:
            return 0
        self.last_expiry = now
        return await self.expire_sessions(now)

    async def expire_sessions(self, now: datetime = None) -> int:
        now = now or utc_now()
        try:
            closed = await self.sessions.expire_idle(now - self.idle_timeout)
        except Exception:
            logger.exception("Idle session sweep failed")
            return 0
        if closed:
            logger.info("Expired idle sessions", count=closed)
        return closed

    def _signal_handler(self, signum, frame):
        """Handle signals for graceful shutdown"""
        logger.info("Received signal, shutting down", signal=signum)
        self.stop()

    def stop(self):
        """Stop the worker"""
        self.running = False


async def main():
    """
    Main entry point for the standalone tracking worker.

    Usage:
        python -m analytics_app.workers.tracking_worker
    """
    from analytics_app.database.connection import Base, engine
    from analytics_app.dependencies import get_ingestion_service, get_queue
    from analytics_app.logging_config import configure_logging
    import analytics_app.models  # noqa: F401  (registers tables)

    configure_logging()
    logger.info(
        "Starting standalone tracking worker",
        environment=settings.environment,
        queue_backend=settings.queue_backend,
        lock_backend=settings.lock_backend,
    )

    Base.metadata.create_all(bind=engine)

    # No broadcaster here: admin sockets live in the API processes
    worker = TrackingWorker(
        queue=get_queue(),
        ingestion=get_ingestion_service(),
        sessions=SessionStore(),
    )

    signal.signal(signal.SIGINT, worker._signal_handler)
    signal.signal(signal.SIGTERM, worker._signal_handler)

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception:
        logger.exception("Fatal worker error")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
