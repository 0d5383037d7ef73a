"""Fan-out of persisted readings to live subscribers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, FrozenSet, List, Protocol
from uuid import uuid4

from app.schemas import BroadcastEvent, StoredReading

logger = logging.getLogger(__name__)

DEFAULT_CATCH_UP_SIZE = 10

Sink = Callable[[BroadcastEvent], None]


class RecentReadings(Protocol):
    def query_recent(self, limit: int) -> List[StoredReading]:
        ...


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`BroadcastChannel.subscribe`."""

    sink: Sink
    subscriber_id: str = field(default_factory=lambda: uuid4().hex)
    catch_up_ids: FrozenSet[int] = frozenset()
    active: bool = False


class BroadcastChannel:
    """Delivers ``weather:update`` events to every registered subscriber.

    New subscribers first receive the most recent ``catch_up_size`` readings,
    oldest first. Registration happens under the same lock as publishing, and
    live readings already sent in a subscriber's catch-up batch are skipped for
    that subscriber.
    """

    def __init__(self, store: RecentReadings, catch_up_size: int = DEFAULT_CATCH_UP_SIZE) -> None:
        self.store = store
        self.catch_up_size = catch_up_size
        self._subscribers: Dict[str, Subscription] = {}
        self._lock = Lock()

    def subscribe(self, sink: Sink) -> Subscription:
        subscription = Subscription(sink=sink)
        with self._lock:
            try:
                recent = self.store.query_recent(self.catch_up_size)
            except Exception:
                logger.exception(
                    "Could not load catch-up readings",
                    extra={"subscriber_id": subscription.subscriber_id},
                )
                recent = []

            delivered: set[int] = set()
            for reading in reversed(recent):
                try:
                    sink(BroadcastEvent(data=reading))
                except Exception as exc:
                    logger.warning(
                        "Catch-up delivery failed; subscriber not registered",
                        extra={"subscriber_id": subscription.subscriber_id, "reason": str(exc)},
                    )
                    return subscription
                delivered.add(reading.id)

            subscription.catch_up_ids = frozenset(delivered)
            subscription.active = True
            self._subscribers[subscription.subscriber_id] = subscription

        logger.info(
            "Subscriber joined",
            extra={"subscriber_id": subscription.subscriber_id, "reading_count": len(delivered)},
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscription.subscriber_id, None)
            subscription.active = False
        if removed is not None:
            logger.info("Subscriber left", extra={"subscriber_id": subscription.subscriber_id})

    def publish(self, reading: StoredReading) -> int:
        """Send ``reading`` to all subscribers and return how many received it."""
        event = BroadcastEvent(data=reading)
        delivered = 0
        with self._lock:
            for subscriber_id, subscription in list(self._subscribers.items()):
                if reading.id in subscription.catch_up_ids:
                    continue
                try:
                    subscription.sink(event)
                except Exception as exc:
                    logger.warning(
                        "Dropping subscriber after failed delivery",
                        extra={
                            "subscriber_id": subscriber_id,
                            "reading_id": reading.id,
                            "reason": str(exc),
                        },
                    )
                    self._subscribers.pop(subscriber_id, None)
                    subscription.active = False
                    continue
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
