"""Small typed observer channel used instead of UI callbacks."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, List, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger("livescribe.events")


class EventChannel(Generic[T]):
    """Fan-out of one event type to any number of subscribers.

    A failing subscriber is logged and skipped so it cannot break the
    component that publishes.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Callable[[T], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Subscriber to %s failed", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


__all__ = ["EventChannel"]
