"""
In-Memory Event Bus

asyncio.Queue-based event sink for save-flow domain events. Serves as the
in-process transport; deployments that fan events out to a broker provide
their own ``EventSink``.

Task-safe (asyncio.Queue), not thread-safe.
"""
import asyncio
import logging
from typing import AsyncIterator, Optional

from app.config import settings
from app.events.schemas import BaseEvent
from app.services.save_flow.interfaces import EventSink

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventSink):
    """Bounded queue of published events."""

    def __init__(self, maxsize: Optional[int] = None):
        if maxsize is None:
            maxsize = settings.SAVE_FLOW_EVENT_QUEUE_SIZE
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        logger.info(f"Event bus initialized with maxsize={maxsize}")

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def publish(self, event: BaseEvent) -> None:
        """
        Publish an event to the bus.

        Raises:
            asyncio.QueueFull: If queue is at capacity
        """
        try:
            self._queue.put_nowait(event)
            logger.debug(
                f"Event published: {event.event_type} (tenant={event.tenant_id}, "
                f"id={event.event_id[:8]}..., queue_size={self._queue.qsize()})"
            )
        except asyncio.QueueFull:
            logger.warning(
                f"Event bus full! Dropped event: {event.event_type} "
                f"(tenant={event.tenant_id}, id={event.event_id[:8]}...)"
            )
            raise

    def drain(self) -> list[BaseEvent]:
        """Remove and return every queued event without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
            self._queue.task_done()
        return events

    async def subscribe(self) -> AsyncIterator[BaseEvent]:
        """Yield events as they are published (for worker loops)."""
        while True:
            event = await self._queue.get()
            yield event
            self._queue.task_done()
