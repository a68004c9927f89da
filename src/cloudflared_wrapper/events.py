"""In-process publish/subscribe for supervisor state changes.

Subscribers receive only the event kind and re-read whatever state they need
from the object they observe. The bus is a plain object injected into the
supervisor, so tests and embedding applications decide who shares it.
"""

import threading
from collections.abc import Callable
from enum import Enum

from .logging import get_logger

logger = get_logger(__name__)


class EventKind(str, Enum):
    """Process-wide signals carried by the bus"""
    TUNNEL_STATE_CHANGED = "tunnel_state_changed"
    CREDENTIAL_DIRECTORY_CHANGED = "credential_directory_changed"


Subscriber = Callable[[EventKind], None]


class Subscription:
    """Handle returned by EventBus.subscribe()"""

    def __init__(self, bus: "EventBus", kind: EventKind, callback: Subscriber):
        self.bus = bus
        self.kind = kind
        self.callback = callback

    def cancel(self) -> None:
        """Stop receiving events; safe to call more than once"""
        self.bus.unsubscribe(self.kind, self.callback)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


class EventBus:
    """Thread-safe synchronous event bus.

    publish() runs every subscriber of the kind on the publishing thread, in
    subscription order. A subscriber that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventKind, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, kind: EventKind, callback: Subscriber) -> Subscription:
        """Register ``callback`` for events of ``kind``."""
        with self._lock:
            self._subscribers.setdefault(kind, []).append(callback)
        return Subscription(self, kind, callback)

    def unsubscribe(self, kind: EventKind, callback: Subscriber) -> bool:
        """Remove a subscription. Returns True if it was registered."""
        with self._lock:
            callbacks = self._subscribers.get(kind, [])
            if callback in callbacks:
                callbacks.remove(callback)
                return True
            return False

    def subscriber_count(self, kind: EventKind) -> int:
        with self._lock:
            return len(self._subscribers.get(kind, []))

    def publish(self, kind: EventKind) -> None:
        """Deliver ``kind`` to its current subscribers."""
        with self._lock:
            callbacks = list(self._subscribers.get(kind, []))

        logger.debug("Publishing event", kind=kind.value, subscribers=len(callbacks))
        for callback in callbacks:
            try:
                callback(kind)
            except Exception as e:
                logger.error(
                    "Event subscriber failed", kind=kind.value, error=str(e), exc_info=True
                )
