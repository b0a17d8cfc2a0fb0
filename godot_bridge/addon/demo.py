"""A small game for exercising the bridge without the engine."""

from __future__ import annotations

from godot_bridge.addon.scene import Node, SceneTree, Viewport
from godot_bridge.addon.variant import Color, Rect2, Vector2

MAIN_SCENE = "res://main.tscn"
LEVEL_2_SCENE = "res://levels/level_2.tscn"
BROKEN_SCENE = "res://levels/broken.tscn"

ACTIONS = ["ui_accept", "ui_cancel", "jump", "move_left", "move_right"]


class Texture:
    """Resource reference. Not something the bridge can serialize."""

    def __init__(self, resource_path: str) -> None:
        self.resource_path = resource_path


def make_player(position: Vector2 | None = None) -> Node:
    state = {"health": 100}

    def take_damage(amount: int) -> int:
        state["health"] = max(0, state["health"] - int(amount))
        return state["health"]

    def get_health() -> int:
        return state["health"]

    def reset() -> None:
        state["health"] = 100

    return Node(
        "Player",
        "Sprite2D",
        properties={
            "visible": True,
            "position": position or Vector2(0, 0),
            "texture": Texture("res://player.png"),
        },
        methods={"take_damage": take_damage, "get_health": get_health, "reset": reset},
    )


def make_main() -> Node:
    return Node(
        "Main",
        "Node2D",
        properties={"visible": True, "position": Vector2(0, 0)},
        children=[
            Node(
                "Background",
                "ColorRect",
                properties={
                    "visible": True,
                    "position": Vector2(0, 0),
                    "size": Vector2(320, 180),
                    "color": Color(0.1, 0.1, 0.2, 1.0),
                },
            ),
            make_player(),
            Node(
                "HUD",
                "CanvasLayer",
                properties={"visible": True, "layer": 1},
                children=[
                    Node(
                        "ScoreLabel",
                        "Label",
                        properties={
                            "visible": True,
                            "text": "Score: 0",
                            "bounds": Rect2(Vector2(8, 8), Vector2(120, 16)),
                            "theme_overrides": {"font_size": 12, "font": Texture("res://font.ttf")},
                        },
                    ),
                ],
            ),
        ],
    )


def make_level_2() -> Node:
    return Node(
        "Level2",
        "Node2D",
        properties={"visible": True, "position": Vector2(0, 0)},
        children=[
            make_player(Vector2(64, 96)),
            Node("Goal", "Area2D", properties={"visible": True, "position": Vector2(300, 96)}),
        ],
    )


def make_broken() -> Node:
    raise RuntimeError("Parse error in level script")


def build_tree() -> SceneTree:
    tree = SceneTree(Viewport(320, 180, Color(0.3, 0.3, 0.3, 1.0)), actions=ACTIONS)
    tree.register_scene(MAIN_SCENE, make_main)
    tree.register_scene(LEVEL_2_SCENE, make_level_2)
    tree.register_scene(BROKEN_SCENE, make_broken)
    tree.change_scene_to_file(MAIN_SCENE)
    return tree
