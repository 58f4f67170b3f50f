"""Scan lifecycle publication.

Publishing is fire-and-forget: publish() returns immediately and delivery
failures are logged, never raised to the scan.
"""

import asyncio
from typing import Protocol

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from cloudcost.core.config import settings
from cloudcost.schemas.event import ScanEvent

logger = structlog.get_logger()


class LifecyclePublisher(Protocol):
    """Anything that can be told about a scan state transition."""

    def publish(self, event: ScanEvent) -> None: ...


class EventBroadcaster:
    """In-process fan-out of events to subscriber queues."""

    def __init__(self, max_queue_size: int = 100) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue[ScanEvent]] = set()

    def subscribe(self) -> asyncio.Queue[ScanEvent]:
        queue: asyncio.Queue[ScanEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ScanEvent]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: ScanEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "events.subscriber_lagging",
                    event_type=event.type.value,
                    scan_id=event.scan_id,
                )


class RedisEventPublisher:
    """Publish events as JSON on a Redis pub/sub channel."""

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        channel: str | None = None,
    ) -> None:
        self.client = client or aioredis.from_url(settings.REDIS_URL)
        self.channel = channel or settings.EVENTS_CHANNEL
        self._pending: set[asyncio.Task[None]] = set()

    async def _send(self, event: ScanEvent) -> None:
        try:
            await self.client.publish(self.channel, event.model_dump_json())
        except (RedisError, OSError) as e:
            logger.warning(
                "events.publish_failed",
                channel=self.channel,
                event_type=event.type.value,
                scan_id=event.scan_id,
                error=str(e),
            )

    def publish(self, event: ScanEvent) -> None:
        task = asyncio.get_running_loop().create_task(self._send(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight publishes."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.client.aclose()


class CompositePublisher:
    """Publish each event to several publishers."""

    def __init__(self, *publishers: LifecyclePublisher) -> None:
        self.publishers = publishers

    def publish(self, event: ScanEvent) -> None:
        for publisher in self.publishers:
            try:
                publisher.publish(event)
            except Exception as e:
                logger.warning(
                    "events.publisher_error",
                    publisher=type(publisher).__name__,
                    error=str(e),
                )
