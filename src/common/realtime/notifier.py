# src/common/realtime/notifier.py
"""In-process publish/subscribe channel for committed service and queue changes.

Writers publish one ChangeEvent per accepted mutation, after the enclosing
transaction commits. Every subscription owns a bounded asyncio queue, so
publishing never blocks and every subscriber sees events for a given entity
in the order they were published. A subscriber that falls further behind
than its queue allows is closed and flagged as overflowed. Events are not
persisted: a subscriber that attaches (or re-attaches, including after an
overflow) must load a snapshot first and then apply the events it receives.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional, Set
from uuid import UUID

from pydantic import BaseModel

from src.common.config import settings
from src.common.utils.clock import utc_now

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    SERVICE = "service"
    QUEUE_ENTRY = "queue_entry"


class ChangeAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class ChangeEvent:
    entity_type: EntityType
    entity_id: UUID
    action: ChangeAction
    version: int
    new_state: BaseModel
    timestamp: datetime = field(default_factory=utc_now)

    def to_message(self) -> dict:
        return {
            "entity_type": self.entity_type.value,
            "entity_id": str(self.entity_id),
            "action": self.action.value,
            "version": self.version,
            "new_state": self.new_state.model_dump(mode="json"),
            "timestamp": self.timestamp.isoformat(),
        }


EventFilter = Callable[[ChangeEvent], bool]


class Subscription:
    """A subscriber's view of the channel. Iterate it to receive events; close it on teardown."""

    def __init__(
        self,
        notifier: "ChangeNotifier",
        entity_types: Optional[Set[EntityType]] = None,
        actions: Optional[Set[ChangeAction]] = None,
        event_filter: Optional[EventFilter] = None,
        queue_limit: int = 0,
    ):
        self._notifier = notifier
        self.entity_types = entity_types
        self.actions = actions
        self.event_filter = event_filter
        self._queue: "asyncio.Queue[Optional[ChangeEvent]]" = asyncio.Queue(maxsize=queue_limit)
        self.closed = False
        self.overflowed = False

    def accepts(self, event: ChangeEvent) -> bool:
        if self.entity_types is not None and event.entity_type not in self.entity_types:
            return False
        if self.actions is not None and event.action not in self.actions:
            return False
        if self.event_filter is not None and not self.event_filter(event):
            return False
        return True

    def deliver(self, event: ChangeEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Subscriber fell %d events behind; closing it", self._queue.maxsize)
            self.overflowed = True
            self.close()
            return False
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[ChangeEvent]:
        """Next event, or None once the subscription is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> Optional[ChangeEvent]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> int:
        """Discard the events queued so far. Returns how many were dropped."""
        dropped = 0
        while not self.closed:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            dropped += 1
        return dropped

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._notifier.unsubscribe(self)
        if self.overflowed or self._queue.full():
            # Pending events are useless without a resync; leave room for the wake-up marker
            while not self._queue.empty():
                self._queue.get_nowait()
        # Wake up a consumer blocked in get()
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeNotifier:
    """Broadcast channel fanning committed changes out to every matching subscription."""

    def __init__(self, queue_limit: Optional[int] = None):
        self.queue_limit = settings.SUBSCRIPTION_QUEUE_LIMIT if queue_limit is None else queue_limit
        self._subscriptions: Set[Subscription] = set()

    def subscribe(
        self,
        entity_types: Optional[Iterable[EntityType]] = None,
        actions: Optional[Iterable[ChangeAction]] = None,
        event_filter: Optional[EventFilter] = None,
    ) -> Subscription:
        subscription = Subscription(
            self,
            set(entity_types) if entity_types is not None else None,
            set(actions) if actions is not None else None,
            event_filter,
            self.queue_limit,
        )
        self._subscriptions.add(subscription)
        logger.debug("Subscriber attached (%d active)", len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
        logger.debug("Subscriber detached (%d active)", len(self._subscriptions))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription. Returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.accepts(event) and subscription.deliver(event):
                delivered += 1
        logger.debug(
            "Published %s %s v%d to %d subscriber(s)",
            event.entity_type.value, event.entity_id, event.version, delivered,
        )
        return delivered

    def publish_all(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            self.publish(event)


# Process-wide channel shared by the service functions and projection feeds
change_notifier = ChangeNotifier()
