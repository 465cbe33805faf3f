"""Publish/subscribe channel between the core and its front ends."""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Callable


logger = logging.getLogger(__name__)


class EventType:
    """Event type constants. Types follow the pattern category.action."""

    SESSION_ACTIVATED = "session.activated"
    SESSION_DEACTIVATED = "session.deactivated"
    SESSION_EXPIRED = "session.expired"
    SESSION_ENDED = "session.ended"
    SESSION_STATUS = "session.status"

    PROCESS_WATCHED_TERMINATED = "process.watched_terminated"
    PROCESS_LIST_CHANGED = "process.list_changed"


@dataclass
class Event:
    """A single notification published on the bus."""
    type: str
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            **self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[Event], Any]


class EventBus:
    """Synchronous pub/sub bus.

    Handlers run on the publishing thread. A failing handler is logged and
    does not stop delivery to the others.
    """

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._lock = Lock()

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to one event type ("session.*" matches the whole category).

        Returns a callable that removes the subscription.
        """
        with self._lock:
            self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._global_handlers.append(handler)

        def _remove():
            with self._lock:
                if handler in self._global_handlers:
                    self._global_handlers.remove(handler)

        return _remove

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        with self._lock:
            try:
                self._handlers[event_type].remove(handler)
                return True
            except ValueError:
                return False

    def publish(self, event_type: str, **payload) -> Event:
        event = Event(type=event_type, payload=payload)

        with self._lock:
            handlers = list(self._global_handlers)
            for subscribed_type, type_handlers in self._handlers.items():
                if _matches_type(event_type, subscribed_type):
                    handlers.extend(type_handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Error in event handler for %s", event_type)

        logger.debug("Published %s to %d handlers", event_type, len(handlers))
        return event


def _matches_type(actual_type: str, subscribed_type: str) -> bool:
    if actual_type == subscribed_type:
        return True
    if subscribed_type.endswith(".*"):
        return actual_type.startswith(subscribed_type[:-1])
    return False
