"""
Tracking queue backends.

The middleware publishes TrackingJobs and the tracking worker consumes
them; neither knows whether Redis Streams or a process-local deque sits in
between.
"""

import asyncio
import json
import socket
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import DefaultDict, List

import structlog

from .models import TrackingJob

logger = structlog.get_logger()


class QueueStrategy(ABC):
    """Publish/consume/ack contract shared by every backend"""

    @abstractmethod
    async def publish(self, queue_name: str, message: TrackingJob) -> bool:
        """Append one job; False when the backend refused it"""

    @abstractmethod
    async def consume(self, queue_name: str, batch_size: int = 1, block_time: int = 1000) -> List[TrackingJob]:
        """
        Take up to ``batch_size`` jobs.

        Args:
            queue_name: Stream or list name
            batch_size: Maximum number of jobs returned
            block_time: Milliseconds to wait when nothing is pending
        """

    @abstractmethod
    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        """Mark consumed jobs as done so they are never redelivered"""

    @abstractmethod
    async def get_queue_length(self, queue_name: str) -> int:
        """Jobs still waiting"""

    async def consume_batch(self, queue_name: str, batch_size: int = 100, block_time: int = 1000) -> List[TrackingJob]:
        return await self.consume(queue_name, batch_size, block_time)


class RedisStreamQueue(QueueStrategy):
    """
    Redis Streams backend (XADD / XREADGROUP / XACK).

    Jobs survive restarts and a consumer group spreads them over several
    worker processes, so API processes can hand tracking to a separately
    deployed worker. The redis-py client is blocking; every call runs in
    the default executor to keep the event loop free.
    """

    def __init__(self, redis_client, consumer_group: str = "analytics_workers"):
        """
        Args:
            redis_client: redis.Redis instance
            consumer_group: Consumer group shared by the tracking workers
        """
        self.redis = redis_client
        self.consumer_group = consumer_group
        self.consumer_name = f"worker-{socket.gethostname()}-{id(self)}"
        self._groups_ready = set()

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def _ensure_group(self, stream: str):
        if stream in self._groups_ready:
            return
        try:
            await self._call(
                self.redis.xgroup_create,
                name=stream,
                groupname=self.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info("Created consumer group", stream=stream, group=self.consumer_group)
        except Exception as e:
            # BUSYGROUP: another process created it first
            if "BUSYGROUP" not in str(e):
                logger.warning("Consumer group setup failed", stream=stream, error=str(e))
        self._groups_ready.add(stream)

    async def publish(self, queue_name: str, message: TrackingJob) -> bool:
        try:
            await self._ensure_group(queue_name)
            await self._call(self.redis.xadd, queue_name, {"data": message.model_dump_json()})
        except Exception as e:
            logger.error("Stream publish failed", stream=queue_name, error=str(e))
            return False
        return True

    async def consume(self, queue_name: str, batch_size: int = 1, block_time: int = 1000) -> List[TrackingJob]:
        """Reads with ">" so only never-delivered entries come back"""
        try:
            await self._ensure_group(queue_name)
            response = await self._call(
                self.redis.xreadgroup,
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={queue_name: ">"},
                count=batch_size,
                block=block_time,
            )
        except Exception as e:
            logger.error("Stream read failed", stream=queue_name, error=str(e))
            return []

        jobs = []
        for _stream, entries in response or []:
            for entry_id, fields in entries:
                if isinstance(entry_id, bytes):
                    entry_id = entry_id.decode("utf-8")
                job = self._decode(entry_id, fields)
                if job is None:
                    # Poison entry: ack it or it is redelivered forever
                    await self.ack(queue_name, [entry_id])
                    continue
                jobs.append(job)
        return jobs

    @staticmethod
    def _decode(entry_id: str, fields: dict):
        try:
            raw = fields.get(b"data", fields.get("data"))
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            job = TrackingJob(**json.loads(raw))
        except Exception as e:
            logger.warning("Unreadable tracking job dropped", message_id=entry_id, error=str(e))
            return None
        job.message_id = entry_id
        return job

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        if not message_ids:
            return True
        try:
            await self._call(self.redis.xack, queue_name, self.consumer_group, *message_ids)
        except Exception as e:
            logger.error("Stream ack failed", stream=queue_name, error=str(e))
            return False
        return True

    async def get_queue_length(self, queue_name: str) -> int:
        try:
            info = await self._call(self.redis.xinfo_stream, queue_name)
        except Exception:
            return 0
        return info["length"]


class InMemoryQueue(QueueStrategy):
    """
    Process-local deques, one per queue name.

    Nothing survives a restart and only the embedded worker of the same
    process can drain it. Default for development, tests and single-process
    deployments. Jobs leave the deque on consume, so ack is a no-op.
    """

    def __init__(self):
        self._queues: DefaultDict[str, deque] = defaultdict(deque)

    def pending(self, queue_name: str) -> List[TrackingJob]:
        """Snapshot of waiting jobs, oldest first"""
        return list(self._queues[queue_name])

    async def publish(self, queue_name: str, message: TrackingJob) -> bool:
        self._queues[queue_name].append(message)
        return True

    async def consume(self, queue_name: str, batch_size: int = 1, block_time: int = 1000) -> List[TrackingJob]:
        """block_time is ignored; the worker sleeps between empty polls"""
        waiting = self._queues[queue_name]
        return [waiting.popleft() for _ in range(min(batch_size, len(waiting)))]

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        return True

    async def get_queue_length(self, queue_name: str) -> int:
        return len(self._queues[queue_name])
