"""
Object Events - In-memory pub/sub of object store changes.

The store publishes an event after every successful write; the object cache
subscribes to stay eventually consistent with the store without polling.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of object events."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ObjectEvent:
    """A single write observed on the store."""

    event_type: EventType
    kind: str
    name: str
    resource_version: Optional[str]
    record: Dict[str, Any]

    @classmethod
    def from_record(
        cls, event_type: EventType, record: Dict[str, Any]
    ) -> "ObjectEvent":
        """
        Create an event from a parsed store record.

        Args:
            event_type: The type of event.
            record: The record after the write (before it, for deletions).
        """
        return cls(
            event_type=event_type,
            kind=record["kind"],
            name=record["name"],
            resource_version=record.get("resource_version"),
            record=record,
        )


class EventSubscription:
    """
    Async iterator over the events delivered to one subscriber.

    A ``None`` sentinel on the queue stops iteration.
    """

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self) -> AsyncIterator[ObjectEvent]:
        return self

    async def __anext__(self) -> ObjectEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """
    In-memory pub/sub bus for object events.

    One bounded ``asyncio.Queue`` per subscriber. Publishing never blocks:
    when a subscriber's queue is full the event is dropped for that
    subscriber, which then only converges on its next resync.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ObjectEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for {event.kind} "
                    f"{event.name!r} (subscriber {subscriber_id}): queue full"
                )

    async def subscribe(self) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber and end its iteration with a ``None`` sentinel.
        """
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is not None:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                # Drain one event so the sentinel fits
                queue.get_nowait()
                queue.put_nowait(None)
            logger.debug(f"Unsubscribed: {subscriber_id}")
