"""
Typed events published by the sync engine.

Collaborators subscribe to an event class and receive every published
instance of it (or of a subclass). Handlers run on the publishing thread.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for everything published on the bus."""


@dataclass(frozen=True)
class WWDCWeekStarted(Event):
    """The remote config switched into WWDC week."""


@dataclass(frozen=True)
class WWDCWeekEnded(Event):
    """The remote config switched out of WWDC week."""


@dataclass(frozen=True)
class IndexingStarted(Event):
    total: int


@dataclass(frozen=True)
class IndexingStopped(Event):
    total: int
    completed: int


@dataclass(frozen=True)
class SessionsChanged(Event):
    """Catalog or schedule processing finished; ``keys`` may be empty."""

    keys: frozenset[str]


E = TypeVar("E", bound=Event)
Handler = Callable[[E], None]


class EventBus:
    """Process-wide publish/subscribe channel for sync events."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: list[tuple[type, Callable]] = []

    def subscribe(self, event_type: type[E], handler: Handler) -> Callable[[], None]:
        """
        Register a handler for an event class.

        Returns:
            A callable that removes the subscription
        """
        entry = (event_type, handler)
        with self._lock:
            self._handlers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._handlers:
                    self._handlers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            handlers = [h for t, h in self._handlers if isinstance(event, t)]

        logger.debug(f"Publishing {event!r} to {len(handlers)} handlers")
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {type(event).__name__}")
