import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict

from models.trigger_event import TriggerEvent

logger = logging.getLogger("workflow_engine")


class BaseEventSource(ABC):
    """Delivers trigger events, per event type, in arrival order."""

    @abstractmethod
    def subscribe(self, event_type: str) -> AsyncIterator[TriggerEvent]:
        pass

    @abstractmethod
    async def publish(self, event: TriggerEvent):
        pass


class QueueEventSource(BaseEventSource):
    """
    In-process event source backed by one asyncio.Queue per event type.
    Events published before anyone subscribes wait in their queue.
    """

    def __init__(self, maxsize: int = 0):
        self.maxsize = maxsize
        self._queues: Dict[str, asyncio.Queue] = {}

    def _queue(self, event_type: str) -> asyncio.Queue:
        if event_type not in self._queues:
            self._queues[event_type] = asyncio.Queue(maxsize=self.maxsize)
        return self._queues[event_type]

    async def publish(self, event: TriggerEvent):
        await self._queue(event.type).put(event)
        logger.debug(f"Queued {event.type} event {event.id}")

    def pending(self, event_type: str) -> int:
        queue = self._queues.get(event_type)
        return queue.qsize() if queue else 0

    async def subscribe(self, event_type: str) -> AsyncIterator[TriggerEvent]:
        queue = self._queue(event_type)
        while True:
            event = await queue.get()
            try:
                yield event
            finally:
                queue.task_done()
