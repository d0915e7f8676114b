from typing import AsyncIterator, List, Optional
import asyncio
import structlog

from memchat.application.schema.events import BaseEvent

logger = structlog.get_logger(__name__)


_CLOSED = object()


class EventChannel:
    """One-way channel between the generator-consuming producer and the transport.

    The producer sends events and must close the channel in every path;
    the consumer iterates until the channel is closed. If the consumer goes
    away it calls `cancel()`, which stops the producer task.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._producer: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def attach_producer(self, task: asyncio.Task):
        """Register the task that feeds this channel"""
        self._producer = task

    async def send(self, event: BaseEvent) -> bool:
        """Queue an event; returns False once the channel is closed"""

        if self._closed:
            logger.debug("Dropping event on closed channel", event_type=event.type.value)
            return False

        await self._queue.put(event)
        return True

    def close(self):
        """Close the channel; idempotent"""

        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def cancel(self):
        """Consumer disconnected: stop the producer and close the channel"""

        producer = self._producer
        if producer is not None and not producer.done():
            logger.info("Cancelling stream producer")
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass
        self.close()

    async def wait_closed(self):
        """Wait for the producer task to finish"""

        if self._producer is not None:
            await asyncio.gather(self._producer, return_exceptions=True)

    def __aiter__(self) -> AsyncIterator[BaseEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BaseEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def collect(self) -> List[BaseEvent]:
        """Drain every event until the channel closes"""
        return [event async for event in self]
