"""In-memory stand-in for the engine's scene tree.

Mirrors the parts of Godot's object model the bridge touches: named nodes
with editor-visible properties and callable methods, NodePath lookup, a root
viewport that can be captured, the InputMap and Input singletons, and a main
loop with per-frame process callbacks and a post-draw checkpoint.

Everything here is meant to be used from the main thread only.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from godot_bridge.addon.png import Pixel, make_png
from godot_bridge.addon.variant import Color, Vector2


class CaptureError(Exception):
    pass


class SceneChangeError(Exception):
    pass


class Node:
    """A scene node: name, engine class, properties, methods and children."""

    BUILTIN_METHODS = ("get_child_count", "get_name", "get_path", "hide", "show")

    def __init__(
        self,
        name: str,
        type: str = "Node",
        properties: dict[str, Any] | None = None,
        methods: dict[str, Callable[..., Any]] | None = None,
        children: list[Node] | None = None,
    ) -> None:
        self.name = name
        self.type = type
        self.parent: Node | None = None
        self._properties: dict[str, Any] = dict(properties or {})
        self._methods: dict[str, Callable[..., Any]] = dict(methods or {})
        self._children: list[Node] = []
        for child in children or []:
            self.add_child(child)

    def __repr__(self) -> str:
        return f"<{self.type}#{self.name}>"

    # --- Hierarchy ---

    def add_child(self, node: Node) -> Node:
        if node.parent is not None:
            node.parent.remove_child(node)
        node.parent = self
        self._children.append(node)
        return node

    def remove_child(self, node: Node) -> None:
        self._children.remove(node)
        node.parent = None

    def get_children(self) -> list[Node]:
        return list(self._children)

    def get_child(self, name: str) -> Node | None:
        for child in self._children:
            if child.name == name:
                return child
        return None

    def get_path(self) -> str:
        parts: list[str] = []
        node: Node | None = self
        while node is not None:
            parts.append(node.name)
            node = node.parent
        return "/" + "/".join(reversed(parts))

    def get_node_or_null(self, path: str) -> Node | None:
        """Resolve a relative NodePath ("Player", "HUD/Score", "../Enemy")."""
        node: Node | None = self
        for part in path.split("/"):
            if node is None:
                return None
            if part in ("", "."):
                continue
            if part == "..":
                node = node.parent
            else:
                node = node.get_child(part)
        return node

    # --- Properties ---

    def get_property_list(self) -> list[str]:
        return list(self._properties)

    def has_property(self, name: str) -> bool:
        return name in self._properties

    def get(self, name: str) -> Any:
        return self._properties.get(name)

    def set(self, name: str, value: Any) -> None:
        self._properties[name] = value

    # --- Methods ---

    def has_method(self, name: str) -> bool:
        return name in self._methods or name in self.BUILTIN_METHODS

    def call(self, method: str, *args: Any) -> Any:
        if method in self._methods:
            return self._methods[method](*args)
        if method == "get_child_count":
            return len(self._children)
        if method == "get_name":
            return self.name
        if method == "get_path":
            return self.get_path()
        if method in ("hide", "show"):
            self._properties["visible"] = method == "show"
            return None
        raise AttributeError(f"{self.type} has no method '{method}'")


# --- Input ---


@dataclass
class InputEventAction:
    action: str
    pressed: bool = True
    strength: float = 1.0


@dataclass
class InputEventKey:
    keycode: int
    pressed: bool = True
    shift: bool = False
    ctrl: bool = False
    alt: bool = False
    meta: bool = False


@dataclass
class InputEventMouseButton:
    button_index: int
    pressed: bool = True
    position: Vector2 = field(default_factory=Vector2)


@dataclass
class InputEventMouseMotion:
    relative: Vector2 = field(default_factory=Vector2)
    position: Vector2 = field(default_factory=Vector2)


class InputMap:
    def __init__(self, actions: list[str] | None = None) -> None:
        self._actions: dict[str, list[Any]] = {name: [] for name in actions or []}

    def add_action(self, name: str) -> None:
        self._actions.setdefault(name, [])

    def has_action(self, name: str) -> bool:
        return name in self._actions

    def get_actions(self) -> list[str]:
        return list(self._actions)


class Input:
    """Receives injected events and keeps the state games usually poll."""

    def __init__(self) -> None:
        self.events: list[Any] = []
        self.mouse_position = Vector2()
        self._action_strength: dict[str, float] = {}

    def parse_input_event(self, event: Any) -> None:
        self.events.append(event)
        if isinstance(event, InputEventAction):
            if event.pressed:
                self._action_strength[event.action] = event.strength
            else:
                self._action_strength.pop(event.action, None)
        elif isinstance(event, (InputEventMouseButton, InputEventMouseMotion)):
            self.mouse_position = Vector2(event.position.x, event.position.y)

    def is_action_pressed(self, action: str) -> bool:
        return action in self._action_strength

    def get_action_strength(self, action: str) -> float:
        return self._action_strength.get(action, 0.0)


# --- Rendering ---


class Viewport:
    """The root viewport. Draws ColorRect nodes over the clear colour."""

    def __init__(self, width: int = 320, height: int = 180, clear_color: Color | None = None) -> None:
        self.width = width
        self.height = height
        self.clear_color = clear_color or Color(0.3, 0.3, 0.3, 1.0)

    def render(self, root: Node) -> list[list[Pixel]]:
        pixels = [[self.clear_color.to_rgba8()] * self.width for _ in range(self.height)]
        self._draw(root, pixels)
        return pixels

    def _draw(self, node: Node, pixels: list[list[Pixel]]) -> None:
        if node.get("visible") is False:
            return
        if node.type == "ColorRect":
            position = node.get("position") or Vector2()
            size = node.get("size") or Vector2()
            color = node.get("color") or Color(1, 1, 1, 1)
            x0, y0 = max(0, int(position.x)), max(0, int(position.y))
            x1 = min(self.width, int(position.x + size.x))
            y1 = min(self.height, int(position.y + size.y))
            rgba = color.to_rgba8()
            for y in range(y0, y1):
                row = pixels[y]
                for x in range(x0, x1):
                    row[x] = rgba
        for child in node.get_children():
            self._draw(child, pixels)

    def capture(self, root: Node, fmt: str = "png") -> bytes:
        if fmt != "png":
            raise CaptureError(f"Image format '{fmt}' is not supported by this viewport")
        if self.width <= 0 or self.height <= 0:
            raise CaptureError("Viewport has no size")
        return make_png(self.width, self.height, self.render(root))


# --- Main loop ---


class SceneTree:
    """Root window, current scene and the frame loop."""

    def __init__(self, viewport: Viewport | None = None, actions: list[str] | None = None) -> None:
        self.root = Node("root", "Window")
        self.viewport: Viewport | None = viewport or Viewport()
        self.current_scene: Node | None = None
        self.input_map = InputMap(actions)
        self.input = Input()
        self.frame = 0
        self.exit_code: int | None = None
        self._scenes: dict[str, Callable[[], Node]] = {}
        self._process_callbacks: list[Callable[[float], None]] = []
        self._post_draw_callbacks: list[Callable[[], None]] = []

    # --- Scenes ---

    def register_scene(self, path: str, factory: Callable[[], Node]) -> None:
        """Make *path* loadable, the way a packed scene resource would be."""
        self._scenes[path] = factory

    def scene_exists(self, path: str) -> bool:
        return path in self._scenes

    def set_current_scene(self, scene: Node | None) -> None:
        if self.current_scene is not None:
            self.root.remove_child(self.current_scene)
        self.current_scene = scene
        if scene is not None:
            self.root.add_child(scene)

    def change_scene_to_file(self, path: str) -> None:
        factory = self._scenes.get(path)
        if factory is None:
            raise SceneChangeError(f"Scene not found: {path}")
        try:
            scene = factory()
        except Exception as exc:
            raise SceneChangeError(f"Failed to instantiate {path}: {exc}") from exc
        self.set_current_scene(scene)

    def get_node_or_null(self, path: str) -> Node | None:
        """Resolve an absolute path such as "/root/Main/Player"."""
        parts = [p for p in path.strip("/").split("/") if p]
        if not parts or parts[0] != self.root.name:
            return None
        return self.root.get_node_or_null("/".join(parts[1:]))

    # --- Rendering ---

    def capture_viewport(self, fmt: str = "png") -> tuple[bytes, int, int]:
        if self.viewport is None:
            raise CaptureError("No viewport")
        data = self.viewport.capture(self.root, fmt)
        return data, self.viewport.width, self.viewport.height

    # --- Frame loop ---

    def connect_process(self, callback: Callable[[float], None]) -> None:
        self._process_callbacks.append(callback)

    def call_after_frame_drawn(self, callback: Callable[[], None]) -> None:
        """Run *callback* once the next frame has finished rendering."""
        self._post_draw_callbacks.append(callback)

    def step(self, delta: float = 1 / 60) -> None:
        for callback in list(self._process_callbacks):
            callback(delta)
        self.frame += 1
        callbacks, self._post_draw_callbacks = self._post_draw_callbacks, []
        for callback in callbacks:
            callback()

    def quit(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code

    def run(self, fps: float = 60.0) -> int:
        delta = 1.0 / fps
        while self.exit_code is None:
            started = time.monotonic()
            self.step(delta)
            elapsed = time.monotonic() - started
            if elapsed < delta:
                time.sleep(delta - elapsed)
        return self.exit_code
