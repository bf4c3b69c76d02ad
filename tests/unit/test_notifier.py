"""In-process change channel."""

import asyncio
import uuid
from datetime import date

from src.common.config import settings
from src.common.realtime.notifier import ChangeAction, ChangeEvent, ChangeNotifier, EntityType
from src.modules.queue.schemas import QueueEntryRecord, QueueStatus


def entry_event(number=1, status=QueueStatus.WAITING, version=1, action=ChangeAction.UPDATE, entry_id=None):
    record = QueueEntryRecord(
        id=entry_id or uuid.uuid4(),
        service_id=uuid.uuid4(),
        client_name="Ana Ribeiro",
        queue_date=date(2024, 1, 1),
        queue_number=number,
        status=status,
        version=version,
    )
    return ChangeEvent(
        entity_type=EntityType.QUEUE_ENTRY,
        entity_id=record.id,
        action=action,
        version=version,
        new_state=record,
    )


async def test_every_matching_subscriber_receives_the_event():
    notifier = ChangeNotifier()
    first = notifier.subscribe()
    second = notifier.subscribe([EntityType.QUEUE_ENTRY])
    services_only = notifier.subscribe([EntityType.SERVICE])

    delivered = notifier.publish(entry_event())

    assert delivered == 2
    assert first.pending == 1
    assert second.pending == 1
    assert services_only.pending == 0


async def test_filters_on_action_and_predicate():
    notifier = ChangeNotifier()
    inserts = notifier.subscribe(actions=[ChangeAction.INSERT])
    high_numbers = notifier.subscribe(event_filter=lambda e: e.new_state.queue_number > 5)

    notifier.publish(entry_event(number=1, action=ChangeAction.INSERT))
    notifier.publish(entry_event(number=9))

    assert inserts.pending == 1
    assert high_numbers.pending == 1
    assert high_numbers.get_nowait().new_state.queue_number == 9


async def test_events_arrive_in_publish_order():
    notifier = ChangeNotifier()
    subscription = notifier.subscribe()
    entry_id = uuid.uuid4()
    for version, status in enumerate([QueueStatus.WAITING, QueueStatus.ATTENDING, QueueStatus.DONE], start=1):
        notifier.publish(entry_event(entry_id=entry_id, status=status, version=version))

    received = [subscription.get_nowait() for _ in range(3)]
    assert [e.version for e in received] == [1, 2, 3]


async def test_close_unsubscribes_and_wakes_consumer():
    notifier = ChangeNotifier()
    subscription = notifier.subscribe()
    waiter = asyncio.create_task(subscription.get())
    await asyncio.sleep(0)

    subscription.close()

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert notifier.subscriber_count == 0
    assert notifier.publish(entry_event()) == 0


async def test_async_iteration_stops_after_close():
    notifier = ChangeNotifier()
    async with notifier.subscribe() as subscription:
        notifier.publish(entry_event(number=1))
        notifier.publish(entry_event(number=2))
        subscription.close()
        numbers = [event.new_state.queue_number async for event in subscription]
    assert numbers == [1, 2]
    assert notifier.subscriber_count == 0


def test_event_message_is_json_ready():
    event = entry_event(number=7, version=3)
    message = event.to_message()
    assert message["entity_type"] == "queue_entry"
    assert message["version"] == 3
    assert message["new_state"]["queue_number"] == 7
    assert message["new_state"]["queue_date"] == "2024-01-01"


async def test_drain_discards_queued_events():
    notifier = ChangeNotifier()
    subscription = notifier.subscribe()
    notifier.publish(entry_event(number=1))
    notifier.publish(entry_event(number=2))

    assert subscription.drain() == 2
    assert subscription.pending == 0

    notifier.publish(entry_event(number=3))
    assert subscription.get_nowait().new_state.queue_number == 3


async def test_subscriber_that_falls_behind_is_cut_off():
    notifier = ChangeNotifier(queue_limit=2)
    slow = notifier.subscribe()
    other = notifier.subscribe([EntityType.SERVICE])

    assert notifier.publish(entry_event(number=1)) == 1
    assert notifier.publish(entry_event(number=2)) == 1
    assert notifier.publish(entry_event(number=3)) == 0

    assert slow.overflowed
    assert slow.closed
    assert await asyncio.wait_for(slow.get(), timeout=1) is None
    assert notifier.subscriber_count == 1
    assert not other.closed


def test_queue_limit_defaults_to_settings():
    assert ChangeNotifier().queue_limit == settings.SUBSCRIPTION_QUEUE_LIMIT
