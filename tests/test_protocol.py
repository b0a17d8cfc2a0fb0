import base64
import json

import pytest

from godot_bridge.protocol import (
    PREFIX,
    SUFFIX,
    BridgeMessage,
    decode_message,
    encode_message,
    extract_messages,
    make_error_response,
    make_event,
    make_request,
    make_response,
    partial_prefix_len,
)


def _wrap(record) -> str:
    raw = json.dumps(record).encode("utf-8")
    return PREFIX + base64.b64encode(raw).decode("ascii") + SUFFIX


class TestEncodeDecode:
    @pytest.mark.parametrize(
        "message",
        [
            BridgeMessage(id="1", kind="request", command="get_node", payload={"path": "Player"}),
            BridgeMessage(id="2", kind="response", command="handshake", payload={"version": "1.0", "capabilities": ["nodes"]}),
            BridgeMessage(id="3", kind="response", command="get_node", error={"code": "NODE_NOT_FOUND", "message": "nope"}),
            BridgeMessage(id="4", kind="event", command="scene_changed", payload=None),
            BridgeMessage(id="5", kind="request", command="call_method", payload={"args": ["]]]", "[MCP_BRIDGE:", "héllo ✓"]}),
        ],
    )
    def test_round_trip(self, message):
        assert decode_message(encode_message(message)) == message

    def test_frame_interior_never_contains_suffix(self):
        message = make_request("set_property", {"value": "]" * 50})
        encoded = encode_message(message)
        assert encoded.startswith(PREFIX)
        assert encoded.endswith(SUFFIX)
        assert SUFFIX not in encoded[len(PREFIX):-len(SUFFIX)]

    def test_wire_uses_type_field(self):
        encoded = encode_message(make_request("handshake", {"version": "1.0"}, msg_id="abc"))
        record = json.loads(base64.b64decode(encoded[len(PREFIX):-len(SUFFIX)]))
        assert record == {"id": "abc", "type": "request", "command": "handshake", "payload": {"version": "1.0"}}

    def test_error_response_has_no_payload(self):
        request = make_request("get_node", {"path": "X"})
        response = make_error_response(request, "NODE_NOT_FOUND", "Node not found: X")
        assert response.id == request.id
        assert response.payload is None
        assert response.is_error

    def test_response_and_event_helpers(self):
        request = make_request("get_node", {"path": "X"})
        response = make_response(request, {"node": {}})
        assert (response.id, response.kind, response.command) == (request.id, "response", "get_node")
        event = make_event("scene_changed", {"scenePath": "res://a.tscn"})
        assert event.kind == "event"
        assert event.id != make_event("scene_changed").id

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "hello world",
            PREFIX + "not base64!!" + SUFFIX,
            PREFIX + base64.b64encode(b"not json").decode() + SUFFIX,
            PREFIX + base64.b64encode(b"\xff\xfe").decode() + SUFFIX,
            _wrap([1, 2, 3]),
            _wrap({"type": "request", "command": "x"}),
            _wrap({"id": 1, "type": "request", "command": "x"}),
            _wrap({"id": "1", "type": "notification", "command": "x"}),
            _wrap({"id": "1", "type": "request"}),
            _wrap({"id": "1", "type": "response", "command": "x", "error": "boom"}),
            encode_message(make_request("x"))[:-1],
        ],
    )
    def test_decode_rejects_non_frames(self, text):
        assert decode_message(text) is None


class TestExtractMessages:
    def test_plain_text_only(self):
        result = extract_messages("Godot Engine v4.3\nloading...\n")
        assert result.messages == []
        assert result.remaining == ""
        assert result.non_bridge_text == "Godot Engine v4.3\nloading...\n"

    def test_text_frame_text(self):
        message = make_response(make_request("get_node"), {"node": {"name": "Player"}})
        buffer = "before text " + encode_message(message) + " after text"
        result = extract_messages(buffer)
        assert result.messages == [message]
        assert result.non_bridge_text == "before text  after text"
        assert result.remaining == ""

    def test_split_frame_matches_whole(self):
        message = make_request("get_node", {"path": "Player"})
        whole = "log line\n" + encode_message(message) + "\n"
        expected = extract_messages(whole)

        for cut in (3, len("log line\n") + 5, len(whole) - 3):
            first = extract_messages(whole[:cut])
            second = extract_messages(first.remaining + whole[cut:])
            assert first.messages + second.messages == expected.messages
            assert first.non_bridge_text + second.non_bridge_text == expected.non_bridge_text
            assert second.remaining == ""

    def test_partial_frame_is_kept(self):
        encoded = encode_message(make_request("handshake"))
        result = extract_messages("abc" + encoded[:10])
        assert result.messages == []
        assert result.non_bridge_text == "abc"
        assert result.remaining == encoded[:10]

    def test_invalid_frame_dropped_scan_continues(self):
        good = make_request("get_node", {"path": "A"})
        buffer = PREFIX + "garbage" + SUFFIX + "x" + encode_message(good)
        result = extract_messages(buffer)
        assert result.messages == [good]
        assert result.non_bridge_text == "x"

    def test_multiple_frames_in_order(self):
        messages = [make_request("a"), make_request("b"), make_event("c")]
        buffer = "\n".join(encode_message(m) for m in messages) + "\n"
        result = extract_messages(buffer)
        assert result.messages == messages
        assert result.non_bridge_text == "\n\n\n"

    def test_console_brackets_are_plain_text(self):
        result = extract_messages("[INFO] player spawned [x=3]\n")
        assert result.messages == []
        assert result.non_bridge_text == "[INFO] player spawned [x=3]\n"

    def test_text_ending_in_partial_prefix_is_still_text(self):
        result = extract_messages("ready\n" + PREFIX[:5])
        assert result.non_bridge_text == "ready\n" + PREFIX[:5]
        assert result.remaining == ""

    @pytest.mark.parametrize(
        "text, expected",
        [("ready\n", 0), ("ready\n[", 1), ("x[MCP_BRIDGE", len(PREFIX) - 1), ("[INFO]", 0), ("", 0)],
    )
    def test_partial_prefix_len(self, text, expected):
        assert partial_prefix_len(text) == expected
