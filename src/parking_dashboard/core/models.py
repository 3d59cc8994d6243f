"""
Value types shared by the connection manager, the store and the shell.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from parking_dashboard.core.parser import parse_payload


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """
    Broker connection state as seen by observers.

    reason is set for FAILED and for a DISCONNECTED caused by the broker or
    the network rather than by disconnect().
    """

    status: ConnectionStatus
    reason: Optional[str] = None

    @classmethod
    def disconnected(cls, reason: Optional[str] = None) -> "ConnectionState":
        return cls(ConnectionStatus.DISCONNECTED, reason)

    @classmethod
    def connecting(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTING)

    @classmethod
    def connected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTED)

    @classmethod
    def failed(cls, reason: str) -> "ConnectionState":
        return cls(ConnectionStatus.FAILED, reason)

    def describe(self) -> str:
        if self.status is ConnectionStatus.CONNECTING:
            return "Connecting..."
        if self.status is ConnectionStatus.CONNECTED:
            return "Connected"
        if self.status is ConnectionStatus.FAILED:
            return f"Connection failed: {self.reason}"
        if self.reason:
            return f"Disconnected with error: {self.reason}"
        return "Disconnected"


@dataclass(frozen=True, slots=True)
class Message:
    topic: str
    raw_payload: str
    received_at: datetime = field(default_factory=_utc_now)
    free_spaces: Optional[str] = None
    info_text: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def from_payload(
        cls,
        topic: str,
        raw_payload: str,
        received_at: Optional[datetime] = None,
    ) -> "Message":
        """Build a message, deriving free_spaces and info_text from the payload."""
        parsed = parse_payload(raw_payload)
        return cls(
            topic=topic,
            raw_payload=raw_payload,
            received_at=received_at or _utc_now(),
            free_spaces=parsed.free_spaces,
            info_text=parsed.info_text,
        )
