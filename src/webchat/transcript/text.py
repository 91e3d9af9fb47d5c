"""Text helpers for turning history entries into messages."""

import logging
import re
from datetime import datetime
from typing import Optional

from ..models import MessageRole

logger = logging.getLogger(__name__)

_ENTITY_RE = re.compile(r"&(#x?[0-9a-f]+|[a-z]+);", re.IGNORECASE)

_NAMED_ENTITIES = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "nbsp": "\u00a0",
}

_USER_ROLES = {"user", "human"}


def normalize_role(role: Optional[str]) -> MessageRole:
    """Map a backend role string to a MessageRole.

    "user" and "human" map to USER, everything else is the agent.
    """
    if role and role.strip().lower() in _USER_ROLES:
        return MessageRole.USER
    return MessageRole.AGENT


def _decode_entity(match: "re.Match[str]") -> str:
    entity = match.group(1).lower()
    if entity in _NAMED_ENTITIES:
        return _NAMED_ENTITIES[entity]
    try:
        if entity.startswith("#x"):
            return chr(int(entity[2:], 16))
        if entity.startswith("#"):
            return chr(int(entity[1:], 10))
    except (ValueError, OverflowError):
        return match.group(0)
    return match.group(0)


def decode_html_entities(value: Optional[str]) -> str:
    """Decode HTML entities, repeating until nested encodings are resolved.

    Backends occasionally double-encode text ("&amp;lt;"), so decoding runs
    until the string stops changing.
    """
    if not value:
        return ""
    if "&" not in value:
        return value

    previous = value
    current = _ENTITY_RE.sub(_decode_entity, value)
    while current != previous:
        previous = current
        current = _ENTITY_RE.sub(_decode_entity, current)
    return current


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO timestamp, falling back to now on missing or bad input."""
    if not value:
        return datetime.now()
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.debug(f"Unparseable timestamp from server: {value!r}")
        return datetime.now()
