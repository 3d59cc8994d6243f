"""
MQTT topic checks for the dashboard.

Publish uses topic names (no wildcards). Subscribe uses topic filters, where
"+" matches one level and "#" matches the remaining levels.
"""

from __future__ import annotations

DEFAULT_TOPIC = "Muhendislik"

_MAX_TOPIC_BYTES = 65535


class TopicError(ValueError):
    """Raised when a topic name or filter is not valid for the requested operation."""


def _validate_common(topic: str, kind: str) -> None:
    if not isinstance(topic, str) or not topic:
        raise TopicError(f"{kind} must be a non-empty string")
    if "\x00" in topic:
        raise TopicError(f"{kind} {topic!r} contains a NUL character")
    if len(topic.encode("utf-8")) > _MAX_TOPIC_BYTES:
        raise TopicError(f"{kind} exceeds {_MAX_TOPIC_BYTES} bytes")


def validate_topic_name(topic: str) -> str:
    _validate_common(topic, "topic")
    if "+" in topic or "#" in topic:
        raise TopicError(f"topic '{topic}' is invalid; wildcards are not allowed when publishing")
    return topic


def validate_topic_filter(topic: str) -> str:
    _validate_common(topic, "topic filter")
    levels = topic.split("/")
    for i, level in enumerate(levels):
        if "#" in level and (level != "#" or i != len(levels) - 1):
            raise TopicError(f"topic filter '{topic}' is invalid; '#' must be the whole last level")
        if "+" in level and level != "+":
            raise TopicError(f"topic filter '{topic}' is invalid; '+' must be a whole level")
    return topic
