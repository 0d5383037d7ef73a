"""WebSocket endpoint streaming ``weather:update`` events."""

from __future__ import annotations

import asyncio
import logging
import threading

from fastapi import APIRouter, WebSocket
from starlette.concurrency import run_in_threadpool

from app.schemas import BroadcastEvent
from services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()

# Events buffered per client before it is treated as stalled.
STREAM_QUEUE_SIZE = 100

# Policy violation; a client that cannot keep up is disconnected.
_OVERFLOW_CLOSE_CODE = 1008


class StreamOverflowError(RuntimeError):
    """A client's event buffer is full."""


class ClientEventQueue:
    """Bounded hand-off from the publishing thread to one client's event loop.

    Instances are the sink registered with the broadcast channel. Once the
    buffer overflows, every later delivery raises so the channel drops the
    subscriber.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = STREAM_QUEUE_SIZE) -> None:
        self._loop = loop
        self.queue: asyncio.Queue[BroadcastEvent] = asyncio.Queue(maxsize=maxsize)
        self._overflowed = threading.Event()

    @property
    def overflowed(self) -> bool:
        return self._overflowed.is_set()

    def __call__(self, event: BroadcastEvent) -> None:
        if self._overflowed.is_set():
            raise StreamOverflowError("Client event buffer is full")
        self._loop.call_soon_threadsafe(self._put, event)

    def _put(self, event: BroadcastEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self._overflowed.set()
            logger.warning(
                "Client event buffer full; dropping subscriber",
                extra={"reading_id": event.data.id},
            )


async def _pump_events(websocket: WebSocket, events: ClientEventQueue) -> None:
    while True:
        event = await events.queue.get()
        if events.overflowed:
            await websocket.close(code=_OVERFLOW_CLOSE_CODE)
            return
        await websocket.send_json(event.model_dump(mode="json"))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


def _log_pump_failure(task: "asyncio.Task[None]", subscriber_id: str) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            "WebSocket stream ended with an error",
            extra={"subscriber_id": subscriber_id, "reason": str(exc)},
        )


@router.websocket("/ws")
async def weather_updates(websocket: WebSocket) -> None:
    services: ServiceContainer = websocket.app.state.services
    await websocket.accept()

    # Publishing happens on the ingestion thread.
    events = ClientEventQueue(asyncio.get_running_loop())
    subscription = await run_in_threadpool(services.channel.subscribe, events)
    if not subscription.active:
        await websocket.close()
        return

    pump = asyncio.create_task(_pump_events(websocket, events))
    pump.add_done_callback(lambda task: _log_pump_failure(task, subscription.subscriber_id))
    try:
        await _wait_for_disconnect(websocket)
    finally:
        services.channel.unsubscribe(subscription)
        pump.cancel()
