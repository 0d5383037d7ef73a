from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from app.schemas import StoredReading
from app.stream import ClientEventQueue
from datastore.readings import ReadingStore
from services.broadcast import BroadcastChannel

BASE_TIME = datetime(2025, 10, 2, 12, 0, tzinfo=timezone.utc)


def _reading(reading_id: int) -> StoredReading:
    return StoredReading(
        id=reading_id,
        city_name="London",
        temperature_c=10.0 + reading_id,
        humidity_percent=50,
        recorded_at=BASE_TIME + timedelta(minutes=reading_id),
    )


def test_events_are_queued_in_publish_order() -> None:
    async def scenario() -> list:
        events = ClientEventQueue(asyncio.get_running_loop(), maxsize=5)
        channel = BroadcastChannel(store=ReadingStore())
        channel.subscribe(events)

        for reading_id in (1, 2, 3):
            assert channel.publish(_reading(reading_id)) == 1
        await asyncio.sleep(0)

        assert events.overflowed is False
        return [events.queue.get_nowait().data.id for _ in range(3)]

    assert asyncio.run(scenario()) == [1, 2, 3]


def test_stalled_client_is_dropped_once_buffer_is_full() -> None:
    async def scenario() -> None:
        events = ClientEventQueue(asyncio.get_running_loop(), maxsize=2)
        channel = BroadcastChannel(store=ReadingStore())
        subscription = channel.subscribe(events)

        for reading_id in (1, 2, 3):
            channel.publish(_reading(reading_id))
        await asyncio.sleep(0)

        assert events.overflowed is True
        assert events.queue.qsize() == 2

        assert channel.publish(_reading(4)) == 0
        assert channel.subscriber_count == 0
        assert subscription.active is False

    asyncio.run(scenario())
