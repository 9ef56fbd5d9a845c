"""
Event Broker

Fans StreamEvents out to in-process listeners and to async subscribers
such as the SSE endpoint.

Events of recent requests are kept so a subscriber that attaches after
start_chat returns still sees everything from the first token on. Only
the most recent requests are retained (256 by default).

Listener failures are logged and never reach the dispatcher.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Callable

from lumen_ai.schemas.chat import StreamEvent

logger = logging.getLogger(__name__)

Listener = Callable[[StreamEvent], None]


class Subscription:
    """
    Async iterator over events.

    A subscription bound to a request id ends after that request's
    done event. An unbound one runs until closed.
    """

    def __init__(self, broker: "EventBroker", request_id: str | None):
        self._broker = broker
        self.request_id = request_id
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._finished = False

    def _deliver(self, event: StreamEvent) -> None:
        self._queue.put_nowait(event)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.done and self.request_id is not None:
            self.close()
        return event

    def close(self) -> None:
        if not self._finished:
            self._finished = True
            self._broker._remove(self)


class EventBroker:
    """
    In-process publish/subscribe for stream events.

    Example:
        broker = EventBroker()
        broker.add_listener(lambda event: print(event.token or ""))
        async for event in broker.subscribe(request_id):
            ...
    """

    def __init__(self, history_limit: int = 256):
        self._history_limit = history_limit
        self._history: OrderedDict[str, list[StreamEvent]] = OrderedDict()
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Listener] = []

    def publish(self, event: StreamEvent) -> None:
        """Record an event and deliver it to listeners and subscribers."""
        events = self._history.get(event.request_id)
        if events is None:
            events = self._history[event.request_id] = []
            while len(self._history) > self._history_limit:
                self._history.popitem(last=False)
        events.append(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed")

        for subscription in list(self._subscriptions):
            if subscription.request_id in (None, event.request_id):
                subscription._deliver(event)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback for every event.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def subscribe(self, request_id: str | None = None, replay: bool = True) -> Subscription:
        """
        Subscribe to events of one request, or of all requests.

        Args:
            request_id: Request to follow; None follows everything
            replay: Deliver already published events of the request first
        """
        subscription = Subscription(self, request_id)
        if replay and request_id is not None:
            for event in self._history.get(request_id, []):
                subscription._deliver(event)
        self._subscriptions.append(subscription)
        return subscription

    def knows(self, request_id: str) -> bool:
        return request_id in self._history

    def history(self, request_id: str) -> list[StreamEvent]:
        return list(self._history.get(request_id, []))

    def is_finished(self, request_id: str) -> bool:
        return any(e.done for e in self._history.get(request_id, []))

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
