"""Fan-out of bridge notifications toward the UI."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlgate.models.events import BridgeEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[BridgeEvent], None]


class EventSink(Protocol):
    def emit(self, event: BridgeEvent) -> None: ...


@dataclass(frozen=True)
class _Subscription:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue[BridgeEvent]


class EventBus:
    """Thread-safe event fan-out.

    Synchronous listeners run inline on the emitting thread. Async subscribers
    receive events through a queue bound to their own loop; delivery goes
    through ``call_soon_threadsafe`` so per-subscriber order matches emit order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[EventListener] = []
        self._subscriptions: list[_Subscription] = []

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def subscribe(self) -> asyncio.Queue[BridgeEvent]:
        """Return a queue that receives every subsequent event (call from a running loop)."""
        subscription = _Subscription(loop=asyncio.get_running_loop(), queue=asyncio.Queue())
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription.queue

    def unsubscribe(self, queue: asyncio.Queue[BridgeEvent]) -> None:
        with self._lock:
            self._subscriptions = [s for s in self._subscriptions if s.queue is not queue]

    def emit(self, event: BridgeEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
            subscriptions = list(self._subscriptions)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("failed to emit event '%s': %s", event.name, e)

        for subscription in subscriptions:
            try:
                subscription.loop.call_soon_threadsafe(subscription.queue.put_nowait, event)
            except RuntimeError:
                # Subscriber's loop has been closed.
                self.unsubscribe(subscription.queue)
