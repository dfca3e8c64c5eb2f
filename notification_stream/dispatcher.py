"""
Fan-out of decoded stream events to subscribers.

One physical connection can feed several consumers (the notification store,
a badge counter, a debug logger). The dispatcher delivers each event to all of
them and keeps one misbehaving subscriber from affecting the rest.

Design decisions:
- Synchronous delivery; subscribers that need to do I/O schedule their own tasks
- Subscribers are called in registration order
- A callback registered twice is still called once per event
- Subscriber exceptions are logged, never propagated
"""

import logging
from typing import Callable

from notification_stream.events import EventType, Payload, StreamEvent

logger = logging.getLogger("event_dispatcher")


# Type alias for subscriber callbacks
EventCallback = Callable[[EventType, Payload], None]


class EventDispatcher:
    """
    Registry of stream event subscribers.

    Example usage:
        dispatcher = EventDispatcher()

        def on_event(event_type, payload):
            print(f"Got {event_type}: {payload}")
        dispatcher.subscribe(on_event)

        dispatcher.notify(EventType.HEARTBEAT, "ping")
    """

    def __init__(self):
        # dict keeps insertion order and gives set semantics
        self._subscribers: dict[EventCallback, None] = {}

    def subscribe(self, callback: EventCallback) -> None:
        """Add a subscriber. Adding the same callback again is a no-op."""
        if callback in self._subscribers:
            return
        self._subscribers[callback] = None
        logger.debug(f"Subscribed {callback!r} ({len(self._subscribers)} total)")

    def unsubscribe(self, callback: EventCallback) -> bool:
        """
        Remove a subscriber.

        Returns:
            True if the callback was registered, False otherwise
        """
        try:
            del self._subscribers[callback]
        except KeyError:
            return False
        logger.debug(f"Unsubscribed {callback!r}")
        return True

    def notify(self, event_type: EventType, payload: Payload) -> int:
        """
        Deliver an event to every subscriber.

        Returns:
            Number of subscribers that were called
        """
        called = 0
        for callback in list(self._subscribers):
            called += 1
            try:
                callback(event_type, payload)
            except Exception as e:
                logger.error(f"Subscriber raised exception for {event_type.value}: {e}", exc_info=True)

        if called == 0:
            logger.debug(f"No subscribers for {event_type.value} event")
        return called

    def dispatch(self, event: StreamEvent) -> int:
        """Deliver a decoded stream event."""
        return self.notify(event.type, event.payload)

    def clear(self) -> None:
        """Remove all subscribers."""
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __contains__(self, callback: EventCallback) -> bool:
        return callback in self._subscribers
