"""Signaling wire protocol.

Every frame is a UTF-8 text WebSocket frame holding one JSON object::

    {"type": "<kind>", "data": {...}}

Inbound kinds are handled by the connection manager; outbound kinds are
produced by the hub, the relay and the broadcaster.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from signalmesh.errors import MalformedMessage

# Maximum frame size (1 MB); the configured server limit takes precedence
MAX_MESSAGE_SIZE = 1024 * 1024


class MessageKind(StrEnum):
    """Inbound message kinds (peer → server)."""

    REGISTER = "register"
    DISCOVER = "discover"
    SIGNAL = "signal"
    ANNOUNCE_CAPABILITY = "announce_capability"
    HEARTBEAT = "heartbeat"


class EventKind(StrEnum):
    """Outbound message kinds (server → peer)."""

    REGISTERED = "registered"
    DISCOVERY_RESULT = "discovery_result"
    WEBRTC_SIGNAL = "webrtc_signal"
    PEER_JOINED = "peer_joined"
    PEER_LEFT = "peer_left"
    PEER_UPDATED = "peer_updated"
    CAPABILITY_UPDATED = "capability_updated"
    HEARTBEAT_ACK = "heartbeat_ack"
    ERROR = "error"


@dataclass(frozen=True)
class InboundMessage:
    """A decoded frame. ``kind`` is unvalidated until dispatch."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


def decode_frame(text: str, *, max_size: int = MAX_MESSAGE_SIZE) -> InboundMessage:
    """Parse one text frame.

    Raises:
        MalformedMessage: the frame is too large, is not JSON, is not an
            object, or has a missing/non-string ``type`` or non-object
            ``data``, or contains ``NaN``/``Infinity``.
    """
    if len(text.encode("utf-8")) > max_size:
        raise MalformedMessage(f"Message exceeds maximum size ({max_size} bytes)")
    try:
        obj = json.loads(text, parse_constant=_reject_constant)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise MalformedMessage("Invalid JSON format") from exc
    if not isinstance(obj, dict):
        raise MalformedMessage("Message must be a JSON object")
    kind = obj.get("type")
    if not isinstance(kind, str) or not kind:
        raise MalformedMessage("Message is missing a string 'type' field")
    data = obj.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        raise MalformedMessage("Message 'data' must be an object")
    return InboundMessage(kind=kind, data=data)


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not valid JSON
    raise MalformedMessage(f"Invalid JSON value: {name}")


def make_message(kind: EventKind | str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": str(kind), "data": data}


def encode_frame(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), default=_json_default)


def _json_default(obj: object) -> object:
    # Sets only appear in opaque peer-supplied data after it is copied
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def require_str(data: dict[str, Any], key: str) -> str:
    """Return ``data[key]`` as a non-empty string or raise MalformedMessage."""
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedMessage(f"Missing or empty '{key}'")
    return value
