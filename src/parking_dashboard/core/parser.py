"""
Best-effort extraction of the known fields from a status payload.

Payloads are expected to be JSON objects such as
{"otopark_bos_alan": "12", "bilgilendirme": "Giriş kapalı"}. Anything else
is still a valid message; it simply carries no derived fields.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

FREE_SPACES_KEY = "otopark_bos_alan"
INFO_TEXT_KEY = "bilgilendirme"


@dataclass(frozen=True, slots=True)
class ParsedPayload:
    free_spaces: Optional[str] = None
    info_text: Optional[str] = None


EMPTY = ParsedPayload()


def _str_or_none(obj: dict[str, Any], key: str) -> Optional[str]:
    value = obj.get(key)
    return value if isinstance(value, str) else None


def parse_payload(raw: str) -> ParsedPayload:
    """
    Decode raw as a JSON object and pick the occupancy and info fields.

    Never raises: undecodable payloads, non-object JSON values and
    non-string field values all yield empty fields.
    """
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError, RecursionError) as exc:
        logger.debug("Payload is not JSON: %s", exc)
        return EMPTY

    if not isinstance(obj, dict):
        logger.debug("Payload JSON is %s, not an object", type(obj).__name__)
        return EMPTY

    return ParsedPayload(
        free_spaces=_str_or_none(obj, FREE_SPACES_KEY),
        info_text=_str_or_none(obj, INFO_TEXT_KEY),
    )
