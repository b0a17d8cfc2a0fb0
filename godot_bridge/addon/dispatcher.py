"""Command handlers for the in-game side of the bridge.

Each request is decoded once into a ``Command`` and routed through a handler
table. Handlers run on the main thread, return the success payload and
signal failure by raising ``CommandError``; ``dispatch`` turns either outcome
into exactly one response. Nothing a handler does can raise out of
``dispatch``, so one bad request never stops the pump.
"""

from __future__ import annotations

import base64
from enum import Enum
from typing import Any, Callable

from loguru import logger

from godot_bridge.addon.scene import (
    CaptureError,
    InputEventAction,
    InputEventKey,
    InputEventMouseButton,
    InputEventMouseMotion,
    Node,
    SceneChangeError,
    SceneTree,
)
from godot_bridge.addon.variant import UNSERIALIZABLE, Vector2, coerce, serialize
from godot_bridge.protocol import (
    CAPABILITIES,
    PROTOCOL_VERSION,
    BridgeMessage,
    ErrorCode,
    make_error_response,
    make_response,
)

Reply = Callable[[BridgeMessage], None]
EmitEvent = Callable[[str, Any], None]
Handler = Callable[[dict[str, Any]], Any]
DeferredHandler = Callable[[dict[str, Any], Callable[[Any], None], Callable[["CommandError"], None]], None]

IMAGE_FORMATS = ("png", "jpeg")


class Command(Enum):
    HANDSHAKE = "handshake"
    SCREENSHOT = "screenshot"
    GET_SCENE_TREE = "get_scene_tree"
    GET_NODE = "get_node"
    SET_PROPERTY = "set_property"
    CALL_METHOD = "call_method"
    CHANGE_SCENE = "change_scene"
    INPUT_ACTION = "input_action"
    INPUT_KEY = "input_key"
    INPUT_MOUSE_BUTTON = "input_mouse_button"
    INPUT_MOUSE_MOTION = "input_mouse_motion"
    UNKNOWN = "<unknown>"

    @classmethod
    def parse(cls, name: str) -> Command:
        try:
            command = cls(name)
        except ValueError:
            return cls.UNKNOWN
        return command


class CommandError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


# --- Payload helpers ---


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise CommandError(ErrorCode.INVALID_PARAMS, f"Missing or invalid '{key}'")
    return value


def _require_number(payload: dict[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandError(ErrorCode.INVALID_PARAMS, f"Missing or invalid '{key}'")
    return value


def _optional_bool(payload: dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise CommandError(ErrorCode.INVALID_PARAMS, f"'{key}' must be a boolean")
    return value


def _vector(raw: Any, key: str) -> Vector2:
    if not isinstance(raw, dict):
        raise CommandError(ErrorCode.INVALID_PARAMS, f"'{key}' must be an object with x and y")
    x, y = raw.get("x"), raw.get("y")
    for v in (x, y):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise CommandError(ErrorCode.INVALID_PARAMS, f"'{key}' must be an object with x and y")
    return Vector2(float(x), float(y))


def node_info(node: Node, recursive: bool = False) -> dict[str, Any]:
    """Describe *node* for the wire. Unserializable properties are left out."""
    properties: dict[str, Any] = {}
    for name in node.get_property_list():
        value = serialize(node.get(name))
        if value is not UNSERIALIZABLE:
            properties[name] = value
    info: dict[str, Any] = {
        "name": node.name,
        "type": node.type,
        "path": node.get_path(),
        "properties": properties,
    }
    if recursive:
        info["children"] = [node_info(child, recursive=True) for child in node.get_children()]
    return info


class CommandDispatcher:
    """Executes bridge requests against a live SceneTree."""

    def __init__(self, tree: SceneTree | None, *, emit_event: EmitEvent | None = None) -> None:
        self.tree = tree
        self._emit_event = emit_event
        self._handlers: dict[Command, Handler] = {
            Command.HANDSHAKE: self._handshake,
            Command.GET_SCENE_TREE: self._get_scene_tree,
            Command.GET_NODE: self._get_node,
            Command.SET_PROPERTY: self._set_property,
            Command.CALL_METHOD: self._call_method,
            Command.CHANGE_SCENE: self._change_scene,
            Command.INPUT_ACTION: self._input_action,
            Command.INPUT_KEY: self._input_key,
            Command.INPUT_MOUSE_BUTTON: self._input_mouse_button,
            Command.INPUT_MOUSE_MOTION: self._input_mouse_motion,
        }
        # Handlers that reply later, from a host callback.
        self._deferred: dict[Command, DeferredHandler] = {
            Command.SCREENSHOT: self._screenshot,
        }

    def dispatch(self, message: BridgeMessage, reply: Reply) -> None:
        """Run *message* and call *reply* exactly once with the response."""
        replied = False

        def respond(response: BridgeMessage) -> None:
            nonlocal replied
            if replied:
                logger.warning("Suppressing second response for {} ({})", message.id, message.command)
                return
            replied = True
            reply(response)

        def succeed(payload: Any) -> None:
            respond(make_response(message, payload))

        def fail(error: CommandError) -> None:
            respond(make_error_response(message, error.code, error.message))

        command = Command.parse(message.command)
        payload = message.payload if message.payload is not None else {}
        try:
            if command is Command.UNKNOWN:
                raise CommandError(ErrorCode.UNKNOWN_COMMAND, f"Unknown command: {message.command}")
            if not isinstance(payload, dict):
                raise CommandError(ErrorCode.INVALID_PARAMS, "Payload must be an object")
            if command in self._deferred:
                self._deferred[command](payload, succeed, fail)
            else:
                succeed(self._handlers[command](payload))
        except CommandError as exc:
            fail(exc)
        except Exception as exc:
            logger.exception("Handler for '{}' failed", message.command)
            fail(CommandError(ErrorCode.INTERNAL_ERROR, f"{type(exc).__name__}: {exc}"))

    # --- Lookup ---

    def _require_tree(self) -> SceneTree:
        if self.tree is None:
            raise CommandError(ErrorCode.NO_SCENE_TREE, "No scene tree available")
        return self.tree

    def resolve_node(self, path: str) -> Node | None:
        """Absolute paths start at the root window, others at the current scene."""
        if self.tree is None:
            return None
        if path.startswith("/"):
            return self.tree.get_node_or_null(path)
        scene = self.tree.current_scene
        if scene is None:
            return None
        return scene.get_node_or_null(path)

    def _require_node(self, payload: dict[str, Any]) -> Node:
        path = _require_str(payload, "path")
        node = self.resolve_node(path)
        if node is None:
            raise CommandError(ErrorCode.NODE_NOT_FOUND, f"Node not found: {path}")
        return node

    # --- Handlers ---

    def _handshake(self, payload: dict[str, Any]) -> dict[str, Any]:
        logger.info("Handshake from controller (version {})", payload.get("version", "?"))
        return {"version": PROTOCOL_VERSION, "capabilities": list(CAPABILITIES)}

    def _screenshot(
        self,
        payload: dict[str, Any],
        succeed: Callable[[Any], None],
        fail: Callable[[CommandError], None],
    ) -> None:
        fmt = payload.get("format", "png")
        if fmt not in IMAGE_FORMATS:
            raise CommandError(ErrorCode.INVALID_PARAMS, f"Unsupported format: {fmt}")
        tree = self._require_tree()
        if tree.viewport is None:
            raise CommandError(ErrorCode.NO_VIEWPORT, "No viewport to capture")

        # Sampling mid-frame gives a torn or blank image.
        def capture() -> None:
            try:
                data, width, height = tree.capture_viewport(fmt)
            except CaptureError as exc:
                fail(CommandError(ErrorCode.CAPTURE_FAILED, str(exc)))
                return
            except Exception as exc:
                logger.exception("Viewport capture failed")
                fail(CommandError(ErrorCode.CAPTURE_FAILED, f"{type(exc).__name__}: {exc}"))
                return
            succeed({"data": base64.b64encode(data).decode("ascii"), "width": width, "height": height})

        tree.call_after_frame_drawn(capture)

    def _get_scene_tree(self, payload: dict[str, Any]) -> dict[str, Any]:
        tree = self._require_tree()
        if payload.get("scene_only"):
            if tree.current_scene is None:
                raise CommandError(ErrorCode.NO_SCENE, "No current scene")
            return {"root": node_info(tree.current_scene, recursive=True)}
        return {"root": node_info(tree.root, recursive=True)}

    def _get_node(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"node": node_info(self._require_node(payload))}

    def _set_property(self, payload: dict[str, Any]) -> dict[str, Any]:
        node = self._require_node(payload)
        prop = _require_str(payload, "property")
        if "value" not in payload:
            raise CommandError(ErrorCode.INVALID_PARAMS, "Missing 'value'")
        if not node.has_property(prop):
            raise CommandError(ErrorCode.PROPERTY_NOT_FOUND, f"Property not found: {prop} on {node.get_path()}")
        node.set(prop, coerce(payload["value"], node.get(prop)))
        return {"success": True}

    def _call_method(self, payload: dict[str, Any]) -> dict[str, Any]:
        node = self._require_node(payload)
        method = _require_str(payload, "method")
        args = payload.get("args") or []
        if not isinstance(args, list):
            raise CommandError(ErrorCode.INVALID_PARAMS, "'args' must be an array")
        if not node.has_method(method):
            raise CommandError(ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method} on {node.get_path()}")
        result = serialize(node.call(method, *args))
        if result is None or result is UNSERIALIZABLE:
            return {}
        return {"result": result}

    def _change_scene(self, payload: dict[str, Any]) -> dict[str, Any]:
        scene_path = _require_str(payload, "scenePath")
        tree = self._require_tree()
        if not tree.scene_exists(scene_path):
            raise CommandError(ErrorCode.SCENE_NOT_FOUND, f"Scene not found: {scene_path}")
        try:
            tree.change_scene_to_file(scene_path)
        except SceneChangeError as exc:
            raise CommandError(ErrorCode.CHANGE_FAILED, str(exc)) from exc
        if self._emit_event is not None:
            self._emit_event("scene_changed", {"scenePath": scene_path})
        return {"success": True}

    def _input_action(self, payload: dict[str, Any]) -> dict[str, Any]:
        action = _require_str(payload, "action")
        pressed = _optional_bool(payload, "pressed", True)
        strength = payload.get("strength", 1.0)
        if isinstance(strength, bool) or not isinstance(strength, (int, float)):
            raise CommandError(ErrorCode.INVALID_PARAMS, "'strength' must be a number")
        tree = self._require_tree()
        if not tree.input_map.has_action(action):
            raise CommandError(ErrorCode.ACTION_NOT_FOUND, f"Action not found: {action}")
        tree.input.parse_input_event(
            InputEventAction(action=action, pressed=pressed, strength=max(0.0, min(1.0, float(strength))))
        )
        return {"success": True}

    def _input_key(self, payload: dict[str, Any]) -> dict[str, Any]:
        keycode = _require_number(payload, "keycode")
        event = InputEventKey(
            keycode=int(keycode),
            pressed=_optional_bool(payload, "pressed", True),
            shift=_optional_bool(payload, "shift", False),
            ctrl=_optional_bool(payload, "ctrl", False),
            alt=_optional_bool(payload, "alt", False),
            meta=_optional_bool(payload, "meta", False),
        )
        self._require_tree().input.parse_input_event(event)
        return {"success": True}

    def _input_mouse_button(self, payload: dict[str, Any]) -> dict[str, Any]:
        button = _require_number(payload, "button")
        event = InputEventMouseButton(
            button_index=int(button),
            pressed=_optional_bool(payload, "pressed", True),
            position=_vector(payload.get("position"), "position"),
        )
        self._require_tree().input.parse_input_event(event)
        return {"success": True}

    def _input_mouse_motion(self, payload: dict[str, Any]) -> dict[str, Any]:
        relative = _vector(payload.get("relative"), "relative")
        tree = self._require_tree()
        if "position" in payload:
            position = _vector(payload["position"], "position")
        else:
            position = Vector2(tree.input.mouse_position.x + relative.x, tree.input.mouse_position.y + relative.y)
        tree.input.parse_input_event(InputEventMouseMotion(relative=relative, position=position))
        return {"success": True}
