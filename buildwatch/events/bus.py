"""
Event Bus - Broadcast of lifecycle events.

Every subscriber owns a bounded asyncio.Queue. `emit` never waits on a
subscriber: a full queue drops the message for that subscriber only.
BuildCompleted is appended to the record sink before it is broadcast, so a
subscriber never sees a completion that was not stored.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from buildwatch.ci.models import BuildRecord
from buildwatch.core.exceptions import PersistenceError
from buildwatch.events.models import BuildCompleted, LifecycleEvent

Message = dict[str, Any]

_CLOSED = object()


@runtime_checkable
class RecordSink(Protocol):
    """Append-only store for build records."""

    async def append(self, record: BuildRecord) -> str:
        """Store a record and return its generated identifier."""
        ...


class Subscription:
    """
    One subscriber's view of the bus.

    Usage:
        async with bus.subscribe() as sub:
            async for message in sub:
                ...
    """

    def __init__(self, bus: EventBus, maxsize: int):
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def deliver(self, message: Message) -> bool:
        """Queue a message without waiting. Returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"⚠️ Slow subscriber: {self.dropped} event(s) dropped")
            return False

    async def get(self) -> Message:
        """Wait for the next message. Raises StopAsyncIteration once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> Message | None:
        """Return the next queued message, or None."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Detach from the bus and wake any pending reader."""
        if self.closed:
            return
        self.closed = True
        self._bus.unsubscribe(self)
        if self._queue.full():
            # The close marker needs a slot; the oldest undelivered message gives it up
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(
                f"⚠️ Subscriber closed with a full queue: oldest event dropped "
                f"({self.dropped} dropped in total)"
            )
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Message:
        return await self.get()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()


class EventBus:
    """Broadcast-only publisher shared by all build lifecycles."""

    def __init__(self, sink: RecordSink | None = None, queue_size: int = 1000):
        """
        Initialize the bus.

        Args:
            sink: Where BuildCompleted records are appended (None = not persisted)
            queue_size: Default per-subscriber queue bound
        """
        self.sink = sink
        self.queue_size = queue_size
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        """Start receiving events emitted from now on."""
        subscription = Subscription(self, maxsize or self.queue_size)
        self._subscribers.append(subscription)
        logger.debug(f"Subscriber attached ({len(self._subscribers)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.debug(f"Subscriber detached ({len(self._subscribers)} left)")

    def close_all(self) -> None:
        """Close every subscription, ending their readers."""
        for subscription in list(self._subscribers):
            subscription.close()

    async def emit(self, event: LifecycleEvent) -> int:
        """
        Broadcast an event to the current subscribers.

        Returns:
            Number of subscribers that received it

        Raises:
            PersistenceError: If a BuildCompleted record could not be stored;
                the event is then not broadcast
        """
        if isinstance(event, BuildCompleted) and self.sink is not None and event.record_id is None:
            event = dataclasses.replace(event, record_id=await self._persist(event.record))

        message = event.to_message()
        delivered = 0
        for subscription in list(self._subscribers):
            if subscription.deliver(message):
                delivered += 1
        return delivered

    async def _persist(self, record: BuildRecord) -> str:
        try:
            record_id = await self.sink.append(record)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                "append",
                str(e),
                {"job_name": record.job_name, "build_number": record.build_number},
            ) from e
        logger.info(
            f"✅ Stored record {record_id} for {record.job_name} #{record.build_number} "
            f"({record.status.value})"
        )
        return record_id
