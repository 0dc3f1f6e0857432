"""Publish/subscribe channels connecting sensors, filters and strategies.

Every producer in the package (sensor sources, the compass, the PDR step
emitter, fingerprint matchers, the fusion strategy) exposes one Channel per
event type. Delivery is synchronous, in registration order, on the thread
that calls publish(); the receiving component serializes its own state.

Example:
    >>> headings = Channel("compass.headings")
    >>> received = []
    >>> _ = headings.subscribe(received.append)
    >>> headings.publish(0.5)
    >>> received
    [0.5]
"""

import threading
from typing import Callable, Generic, List, Protocol, TypeVar


T = TypeVar("T")
Handler = Callable[[T], None]


class Channel(Generic[T]):
    """Typed event channel with subscribe/unsubscribe/publish."""

    def __init__(self, name: str = "channel"):
        self.name = name
        self._handlers: List[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler) -> Handler:
        """Register ``handler``; returns it so it can be unsubscribed later."""
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> bool:
        """Remove ``handler``. Returns False if it was not registered."""
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                return False
        return True

    def publish(self, event: T) -> None:
        """Deliver ``event`` to every handler, in registration order."""
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(event)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def __repr__(self) -> str:
        return f"Channel({self.name!r}, subscribers={self.subscriber_count})"


class Emitter(Protocol):
    """Start/stop capability shared by the compass and the fusion strategies.

    ``start`` attaches to the input channels (and schedules periodic work);
    ``stop`` detaches and cancels it. Both are idempotent.
    """

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...
