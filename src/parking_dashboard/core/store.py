"""
In-memory log of received messages.

Append-only and unbounded for the lifetime of the process. Only the
connection manager's owner thread appends; readers may be anywhere.
Observers follow new messages through DashboardMQTTClient.messages,
which is emitted after the append.
"""

from __future__ import annotations

import threading
from typing import Iterator, Optional

from parking_dashboard.core.models import Message


class MessageStore:
    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._lock = threading.Lock()

    def append(self, msg: Message) -> None:
        """
        Append msg.

        Raises ValueError if msg is older than the latest stored message;
        received_at must never go backwards in insertion order.
        """
        with self._lock:
            if self._messages and msg.received_at < self._messages[-1].received_at:
                raise ValueError(
                    f"message {msg.id} received_at {msg.received_at.isoformat()} "
                    f"precedes latest {self._messages[-1].received_at.isoformat()}"
                )
            self._messages.append(msg)

    def all(self) -> tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def latest(self) -> Optional[Message]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def last(self, n: int) -> list[Message]:
        """Return the n most recent messages, newest first."""
        if n <= 0:
            return []
        with self._lock:
            return self._messages[-n:][::-1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.all())
