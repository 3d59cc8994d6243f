"""
Terminal rendering of connection state and received messages.
"""

from __future__ import annotations

import threading
from typing import TextIO

from parking_dashboard.core.models import ConnectionState, Message
from parking_dashboard.core.store import MessageStore

PREVIEW_COUNT = 3


def format_time(msg: Message) -> str:
    return msg.received_at.astimezone().strftime("%H:%M:%S")


def format_message(msg: Message) -> str:
    lines = [f"[{format_time(msg)}] {msg.topic}"]
    if msg.free_spaces is not None:
        lines.append(f"  Free spaces: {msg.free_spaces}")
    if msg.info_text is not None:
        lines.append(f"  Info: {msg.info_text}")
    if msg.free_spaces is None and msg.info_text is None:
        lines.append(f"  {msg.raw_payload}")
    return "\n".join(lines)


def format_summary(store: MessageStore) -> str:
    latest = store.latest()
    free = latest.free_spaces if latest and latest.free_spaces is not None else "0"
    lines = [f"Free spaces: {free}", f"Messages received: {len(store)}"]
    recent = store.last(PREVIEW_COUNT)
    if not recent:
        lines.append("No new messages.")
    for msg in recent:
        preview = f"  {format_time(msg)} {msg.topic}"
        if msg.free_spaces is not None:
            preview += f" (free spaces: {msg.free_spaces})"
        lines.append(preview)
    return "\n".join(lines)


class ConsoleView:
    """Writes state changes and messages to out; safe to call from any thread."""

    def __init__(self, out: TextIO) -> None:
        self.out = out
        self._lock = threading.Lock()

    def _write(self, text: str) -> None:
        with self._lock:
            self.out.write(text + "\n")
            self.out.flush()

    def show_state(self, state: ConnectionState) -> None:
        self._write(f"* {state.describe()}")

    def show_message(self, msg: Message) -> None:
        self._write(format_message(msg))

    def show_summary(self, store: MessageStore) -> None:
        self._write(format_summary(store))
