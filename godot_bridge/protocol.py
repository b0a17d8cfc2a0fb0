"""Frame codec shared by the MCP server and the in-game addon.

A bridge message travels on the game's stdin/stdout, which also carries the
engine's ordinary console output. Each message is JSON, base64-encoded and
wrapped between PREFIX and SUFFIX so it can be picked out of arbitrary text:

    [MCP_BRIDGE:eyJpZCI6ICIx...]\n

The base64 alphabet never contains SUFFIX, so the first SUFFIX after a PREFIX
always closes the frame.
"""

from __future__ import annotations

import base64
import binascii
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, NamedTuple

PREFIX = "[MCP_BRIDGE:"
SUFFIX = "]"

PROTOCOL_VERSION = "1.0"

# Command-line flag that switches the addon on. Without it the game never
# reads stdin and the bridge is invisible.
ACTIVATION_FLAG = "--mcp-bridge"

CAPABILITIES: tuple[str, ...] = ("screenshot", "nodes", "scene", "input")

KINDS = ("request", "response", "event")


class ErrorCode:
    """Error codes carried in response frames or raised by the client."""

    # Reported by the addon
    INVALID_PARAMS = "INVALID_PARAMS"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    SCENE_NOT_FOUND = "SCENE_NOT_FOUND"
    METHOD_NOT_FOUND = "METHOD_NOT_FOUND"
    PROPERTY_NOT_FOUND = "PROPERTY_NOT_FOUND"
    ACTION_NOT_FOUND = "ACTION_NOT_FOUND"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    NO_VIEWPORT = "NO_VIEWPORT"
    NO_SCENE = "NO_SCENE"
    NO_SCENE_TREE = "NO_SCENE_TREE"
    CHANGE_FAILED = "CHANGE_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Raised locally by the client, never sent on the wire
    BRIDGE_NOT_CONNECTED = "BRIDGE_NOT_CONNECTED"
    TIMEOUT = "TIMEOUT"
    PROCESS_EXITED = "PROCESS_EXITED"
    MISSING_CAPABILITY = "MISSING_CAPABILITY"


@dataclass
class BridgeMessage:
    """One protocol message. ``kind`` is spelled ``type`` on the wire."""

    id: str
    kind: str
    command: str
    payload: Any = None
    error: dict[str, str] | None = field(default=None)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.kind,
            "command": self.command,
            "payload": self.payload,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class ExtractResult(NamedTuple):
    messages: list[BridgeMessage]
    remaining: str
    non_bridge_text: str


def new_message_id() -> str:
    return uuid.uuid4().hex


def make_request(command: str, payload: Any = None, msg_id: str | None = None) -> BridgeMessage:
    return BridgeMessage(id=msg_id or new_message_id(), kind="request", command=command, payload=payload)


def make_response(request: BridgeMessage, payload: Any = None) -> BridgeMessage:
    return BridgeMessage(id=request.id, kind="response", command=request.command, payload=payload)


def make_error_response(request: BridgeMessage, code: str, message: str) -> BridgeMessage:
    return BridgeMessage(
        id=request.id,
        kind="response",
        command=request.command,
        payload=None,
        error={"code": code, "message": message},
    )


def make_event(command: str, payload: Any = None) -> BridgeMessage:
    return BridgeMessage(id=new_message_id(), kind="event", command=command, payload=payload)


def encode_message(message: BridgeMessage) -> str:
    """Encode *message* as a single frame (without the trailing newline)."""
    raw = json.dumps(message.to_dict(), separators=(",", ":"), ensure_ascii=False)
    body = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return PREFIX + body + SUFFIX


def decode_message(text: str) -> BridgeMessage | None:
    """Decode one frame. Returns None for anything that is not a valid frame."""
    if not text.startswith(PREFIX) or not text.endswith(SUFFIX):
        return None
    body = text[len(PREFIX):-len(SUFFIX)]
    try:
        raw = base64.b64decode(body.encode("ascii"), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeError, binascii.Error, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    msg_id = data.get("id")
    kind = data.get("type")
    command = data.get("command")
    if not isinstance(msg_id, str) or kind not in KINDS or not isinstance(command, str):
        return None

    error = data.get("error")
    if error is not None:
        if not isinstance(error, dict):
            return None
        error = {"code": str(error.get("code", "")), "message": str(error.get("message", ""))}

    return BridgeMessage(id=msg_id, kind=kind, command=command, payload=data.get("payload"), error=error)


def extract_messages(buffer: str) -> ExtractResult:
    """Pull every complete frame out of *buffer*.

    Text outside frames is returned as ``non_bridge_text`` in its original
    order. A frame whose SUFFIX has not arrived yet is left untouched in
    ``remaining``; feed it back with the next chunk appended. Frames that fail
    to decode are dropped without stopping the scan.
    """
    messages: list[BridgeMessage] = []
    text_parts: list[str] = []
    remaining = buffer

    while True:
        start = remaining.find(PREFIX)
        if start == -1:
            text_parts.append(remaining)
            remaining = ""
            break

        if start > 0:
            text_parts.append(remaining[:start])

        end = remaining.find(SUFFIX, start + len(PREFIX))
        if end == -1:
            remaining = remaining[start:]
            break

        frame = remaining[start:end + len(SUFFIX)]
        remaining = remaining[end + len(SUFFIX):]

        decoded = decode_message(frame)
        if decoded is not None:
            messages.append(decoded)

    return ExtractResult(messages, remaining, "".join(text_parts))


def partial_prefix_len(text: str) -> int:
    """Length of the longest tail of *text* that is a proper start of PREFIX."""
    for size in range(min(len(text), len(PREFIX) - 1), 0, -1):
        if PREFIX.startswith(text[-size:]):
            return size
    return 0
