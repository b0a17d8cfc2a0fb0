import base64

import pytest

from godot_bridge.addon.demo import BROKEN_SCENE, LEVEL_2_SCENE, MAIN_SCENE
from godot_bridge.addon.dispatcher import Command, CommandDispatcher, node_info
from godot_bridge.addon.png import png_size
from godot_bridge.addon.scene import Node, SceneTree
from godot_bridge.addon.variant import Color, Vector2
from godot_bridge.protocol import BridgeMessage, ErrorCode, make_request


class Recorder:
    def __init__(self):
        self.responses = []
        self.events = []

    def reply(self, message):
        self.responses.append(message)

    def emit(self, command, payload=None):
        self.events.append((command, payload))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def dispatcher(tree, recorder):
    return CommandDispatcher(tree, emit_event=recorder.emit)


def run(dispatcher, recorder, command, payload=None):
    """Dispatch one request and return its single response."""
    before = len(recorder.responses)
    dispatcher.dispatch(make_request(command, payload), recorder.reply)
    assert len(recorder.responses) == before + 1
    return recorder.responses[-1]


def error_code(response):
    assert response.is_error, response
    return response.error["code"]


class TestRouting:
    def test_exact_get_node_response(self, dispatcher, recorder):
        message = BridgeMessage(id="1", kind="request", command="get_node", payload={"path": "Player"})
        dispatcher.dispatch(message, recorder.reply)
        assert [m.to_dict() for m in recorder.responses] == [
            {
                "id": "1",
                "type": "response",
                "command": "get_node",
                "payload": {
                    "node": {
                        "name": "Player",
                        "type": "Sprite2D",
                        "path": "/root/Main/Player",
                        "properties": {"visible": True, "position": {"x": 0, "y": 0}},
                    }
                },
            }
        ]

    def test_unknown_command(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "explode")
        assert error_code(response) == ErrorCode.UNKNOWN_COMMAND
        assert response.command == "explode"

    def test_non_object_payload(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "get_node", ["Player"])
        assert error_code(response) == ErrorCode.INVALID_PARAMS

    def test_handler_exception_becomes_internal_error(self, tree, dispatcher, recorder):
        def explode():
            raise ZeroDivisionError("division by zero")

        tree.current_scene.add_child(Node("Bomb", methods={"explode": explode}))
        response = run(dispatcher, recorder, "call_method", {"path": "Bomb", "method": "explode"})
        assert error_code(response) == ErrorCode.INTERNAL_ERROR
        assert "ZeroDivisionError" in response.error["message"]

    def test_command_parse(self):
        assert Command.parse("get_node") is Command.GET_NODE
        assert Command.parse("nope") is Command.UNKNOWN

    def test_handshake(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "handshake", {"version": "1.0"})
        assert response.payload == {
            "version": "1.0",
            "capabilities": ["screenshot", "nodes", "scene", "input"],
        }


class TestNodes:
    def test_absolute_path(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "get_node", {"path": "/root/Main/HUD/ScoreLabel"})
        node = response.payload["node"]
        assert node["type"] == "Label"
        assert node["properties"]["bounds"] == {
            "position": {"x": 8, "y": 8},
            "size": {"x": 120, "y": 16},
        }
        # Resource inside a dictionary is dropped, the rest survives.
        assert node["properties"]["theme_overrides"] == {"font_size": 12}

    def test_relative_nested_path(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "get_node", {"path": "HUD/ScoreLabel"})
        assert response.payload["node"]["path"] == "/root/Main/HUD/ScoreLabel"

    def test_missing_node(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "get_node", {"path": "Ghost"})
        assert error_code(response) == ErrorCode.NODE_NOT_FOUND
        assert "Ghost" in response.error["message"]

    def test_relative_path_without_current_scene(self, tree, dispatcher, recorder):
        tree.set_current_scene(None)
        response = run(dispatcher, recorder, "get_node", {"path": "Player"})
        assert error_code(response) == ErrorCode.NODE_NOT_FOUND

    def test_missing_path_param(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "get_node", {})
        assert error_code(response) == ErrorCode.INVALID_PARAMS

    def test_scene_tree_from_root(self, dispatcher, recorder):
        root = run(dispatcher, recorder, "get_scene_tree").payload["root"]
        assert root["path"] == "/root"
        main = root["children"][0]
        assert main["name"] == "Main"
        assert [c["name"] for c in main["children"]] == ["Background", "Player", "HUD"]
        player = main["children"][1]
        assert "texture" not in player["properties"]
        assert player["children"] == []

    def test_scene_tree_scene_only(self, tree, dispatcher, recorder):
        root = run(dispatcher, recorder, "get_scene_tree", {"scene_only": True}).payload["root"]
        assert root["path"] == "/root/Main"
        tree.set_current_scene(None)
        response = run(dispatcher, recorder, "get_scene_tree", {"scene_only": True})
        assert error_code(response) == ErrorCode.NO_SCENE

    def test_no_scene_tree(self, recorder):
        dispatcher = CommandDispatcher(None)
        response = run(dispatcher, recorder, "get_scene_tree")
        assert error_code(response) == ErrorCode.NO_SCENE_TREE

    def test_get_node_omits_children(self, tree):
        info = node_info(tree.current_scene)
        assert "children" not in info


class TestState:
    def test_set_vector_property_from_object(self, tree, dispatcher, recorder):
        response = run(dispatcher, recorder, "set_property", {"path": "Player", "property": "position", "value": {"x": 10, "y": 20}})
        assert response.payload == {"success": True}
        assert tree.get_node_or_null("/root/Main/Player").get("position") == Vector2(10.0, 20.0)

    def test_set_vector_property_from_list(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "set_property", {"path": "Player", "property": "position", "value": [3, 4]})
        assert tree.get_node_or_null("/root/Main/Player").get("position") == Vector2(3.0, 4.0)

    def test_set_color_property(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "set_property", {"path": "Background", "property": "color", "value": {"r": 1, "g": 0, "b": 0}})
        assert tree.get_node_or_null("/root/Main/Background").get("color") == Color(1.0, 0.0, 0.0, 1.0)

    def test_set_bool_property(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "set_property", {"path": "Player", "property": "visible", "value": False})
        assert tree.get_node_or_null("/root/Main/Player").get("visible") is False

    def test_set_unknown_property(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "set_property", {"path": "Player", "property": "mana", "value": 5})
        assert error_code(response) == ErrorCode.PROPERTY_NOT_FOUND

    def test_set_property_without_value(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "set_property", {"path": "Player", "property": "visible"})
        assert error_code(response) == ErrorCode.INVALID_PARAMS

    def test_call_method_returns_result(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "call_method", {"path": "Player", "method": "take_damage", "args": [25]})
        assert response.payload == {"result": 75}
        response = run(dispatcher, recorder, "call_method", {"path": "Player", "method": "get_health"})
        assert response.payload == {"result": 75}

    def test_call_method_void_result_is_empty(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "call_method", {"path": "Player", "method": "reset"})
        assert response.payload == {}

    def test_call_builtin_method(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "call_method", {"path": "Player", "method": "hide"})
        assert tree.get_node_or_null("/root/Main/Player").get("visible") is False
        response = run(dispatcher, recorder, "call_method", {"path": "HUD", "method": "get_child_count"})
        assert response.payload == {"result": 1}

    def test_call_unknown_method(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "call_method", {"path": "Player", "method": "fly"})
        assert error_code(response) == ErrorCode.METHOD_NOT_FOUND

    def test_call_method_args_must_be_list(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "call_method", {"path": "Player", "method": "take_damage", "args": 5})
        assert error_code(response) == ErrorCode.INVALID_PARAMS


class TestScenes:
    def test_change_scene_emits_event(self, tree, dispatcher, recorder):
        response = run(dispatcher, recorder, "change_scene", {"scenePath": LEVEL_2_SCENE})
        assert response.payload == {"success": True}
        assert tree.current_scene.name == "Level2"
        assert recorder.events == [("scene_changed", {"scenePath": LEVEL_2_SCENE})]
        player = run(dispatcher, recorder, "get_node", {"path": "Player"}).payload["node"]
        assert player["path"] == "/root/Level2/Player"
        assert player["properties"]["position"] == {"x": 64, "y": 96}

    def test_missing_scene(self, tree, dispatcher, recorder):
        response = run(dispatcher, recorder, "change_scene", {"scenePath": "res://nope.tscn"})
        assert error_code(response) == ErrorCode.SCENE_NOT_FOUND
        assert tree.current_scene.name == "Main"
        assert recorder.events == []

    def test_broken_scene(self, tree, dispatcher, recorder):
        response = run(dispatcher, recorder, "change_scene", {"scenePath": BROKEN_SCENE})
        assert error_code(response) == ErrorCode.CHANGE_FAILED
        assert tree.current_scene.name == "Main"

    def test_reload_main(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "call_method", {"path": "Player", "method": "take_damage", "args": [10]})
        run(dispatcher, recorder, "change_scene", {"scenePath": MAIN_SCENE})
        response = run(dispatcher, recorder, "call_method", {"path": "Player", "method": "get_health"})
        assert response.payload == {"result": 100}


class TestScreenshot:
    def test_reply_waits_for_frame(self, tree, dispatcher, recorder):
        dispatcher.dispatch(make_request("screenshot", {}), recorder.reply)
        assert recorder.responses == []
        tree.step()
        assert len(recorder.responses) == 1
        payload = recorder.responses[0].payload
        assert (payload["width"], payload["height"]) == (320, 180)
        assert png_size(base64.b64decode(payload["data"])) == (320, 180)

    def test_jpeg_not_supported_by_host(self, tree, dispatcher, recorder):
        dispatcher.dispatch(make_request("screenshot", {"format": "jpeg"}), recorder.reply)
        tree.step()
        assert error_code(recorder.responses[-1]) == ErrorCode.CAPTURE_FAILED

    def test_bad_format(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "screenshot", {"format": "gif"})
        assert error_code(response) == ErrorCode.INVALID_PARAMS

    def test_no_viewport(self, recorder):
        tree = SceneTree()
        tree.viewport = None
        response = run(CommandDispatcher(tree), recorder, "screenshot", {})
        assert error_code(response) == ErrorCode.NO_VIEWPORT

    def test_one_reply_per_frame_request(self, tree, dispatcher, recorder):
        dispatcher.dispatch(make_request("screenshot", {}), recorder.reply)
        dispatcher.dispatch(make_request("screenshot", {}), recorder.reply)
        tree.step()
        tree.step()
        assert len(recorder.responses) == 2
        assert recorder.responses[0].id != recorder.responses[1].id


class TestInput:
    def test_action(self, tree, dispatcher, recorder):
        response = run(dispatcher, recorder, "input_action", {"action": "jump", "strength": 3})
        assert response.payload == {"success": True}
        assert tree.input.is_action_pressed("jump")
        assert tree.input.get_action_strength("jump") == 1.0
        run(dispatcher, recorder, "input_action", {"action": "jump", "pressed": False})
        assert not tree.input.is_action_pressed("jump")

    def test_unknown_action(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "input_action", {"action": "teleport"})
        assert error_code(response) == ErrorCode.ACTION_NOT_FOUND

    def test_key(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "input_key", {"keycode": 32, "shift": True})
        event = tree.input.events[-1]
        assert (event.keycode, event.pressed, event.shift, event.ctrl) == (32, True, True, False)

    def test_key_requires_keycode(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "input_key", {"keycode": "space"})
        assert error_code(response) == ErrorCode.INVALID_PARAMS

    def test_mouse_button(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "input_mouse_button", {"button": 1, "position": {"x": 40, "y": 50}})
        event = tree.input.events[-1]
        assert event.button_index == 1
        assert tree.input.mouse_position == Vector2(40, 50)

    def test_mouse_button_requires_position(self, dispatcher, recorder):
        response = run(dispatcher, recorder, "input_mouse_button", {"button": 1})
        assert error_code(response) == ErrorCode.INVALID_PARAMS

    def test_mouse_motion_relative_to_current(self, tree, dispatcher, recorder):
        run(dispatcher, recorder, "input_mouse_button", {"button": 1, "position": {"x": 10, "y": 10}})
        run(dispatcher, recorder, "input_mouse_motion", {"relative": {"x": 5, "y": -2}})
        assert tree.input.mouse_position == Vector2(15, 8)
        run(dispatcher, recorder, "input_mouse_motion", {"relative": {"x": 1, "y": 1}, "position": {"x": 100, "y": 100}})
        assert tree.input.mouse_position == Vector2(100, 100)
