"""
Observer channels for connection-state and message streams.

Subscribers are plain callables. A subscriber that raises is logged and
skipped; the remaining subscribers still receive the event.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventChannel(Generic[T]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register callback. Returns a function that unsubscribes it."""
        if not callable(callback):
            raise ValueError("callback must be callable")
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, value: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber failed on %s channel", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
