"""Engine value types and the allow-list that decides what goes on the wire.

Only a fixed set of value shapes is ever serialized: primitives, vectors,
colours, rects, arrays and dictionaries of those. Anything else (object
references, callables, resources) is dropped from node property listings
rather than reported as an error.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


@dataclass
class Vector2:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class Color:
    r: float = 0.0
    g: float = 0.0
    b: float = 0.0
    a: float = 1.0

    def to_rgba8(self) -> tuple[int, int, int, int]:
        def channel(c: float) -> int:
            return max(0, min(255, round(c * 255)))

        return channel(self.r), channel(self.g), channel(self.b), channel(self.a)


@dataclass
class Rect2:
    position: Vector2
    size: Vector2


class _Unserializable:
    def __repr__(self) -> str:
        return "UNSERIALIZABLE"


UNSERIALIZABLE: Any = _Unserializable()


def serialize(value: Any) -> Any:
    """Return a JSON-safe copy of *value*, or UNSERIALIZABLE."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else UNSERIALIZABLE
    if isinstance(value, Vector2):
        return {"x": value.x, "y": value.y}
    if isinstance(value, Vector3):
        return {"x": value.x, "y": value.y, "z": value.z}
    if isinstance(value, Color):
        return {"r": value.r, "g": value.g, "b": value.b, "a": value.a}
    if isinstance(value, Rect2):
        return {
            "position": {"x": value.position.x, "y": value.position.y},
            "size": {"x": value.size.x, "y": value.size.y},
        }
    if isinstance(value, (list, tuple)):
        items = [serialize(item) for item in value]
        if any(item is UNSERIALIZABLE for item in items):
            return UNSERIALIZABLE
        return items
    if isinstance(value, dict):
        result: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                continue
            converted = serialize(item)
            if converted is not UNSERIALIZABLE:
                result[key] = converted
        return result
    return UNSERIALIZABLE


def is_serializable(value: Any) -> bool:
    return serialize(value) is not UNSERIALIZABLE


def _pair(raw: Any, a: str, b: str) -> tuple[float, float] | None:
    if isinstance(raw, dict) and a in raw and b in raw:
        return float(raw[a]), float(raw[b])
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return float(raw[0]), float(raw[1])
    return None


def coerce(raw: Any, current: Any) -> Any:
    """Convert a JSON value to the type of the property it will replace.

    Vectors accept ``[x, y]`` or ``{"x": .., "y": ..}``; colours accept
    ``{"r", "g", "b", "a"?}`` or a 3/4 element list. Values that don't fit
    the current type are returned unchanged.
    """
    try:
        if isinstance(current, Vector2):
            pair = _pair(raw, "x", "y")
            return Vector2(*pair) if pair else raw
        if isinstance(current, Vector3):
            if isinstance(raw, dict) and {"x", "y", "z"} <= raw.keys():
                return Vector3(float(raw["x"]), float(raw["y"]), float(raw["z"]))
            if isinstance(raw, (list, tuple)) and len(raw) == 3:
                return Vector3(*(float(v) for v in raw))
            return raw
        if isinstance(current, Color):
            if isinstance(raw, dict) and {"r", "g", "b"} <= raw.keys():
                return Color(float(raw["r"]), float(raw["g"]), float(raw["b"]), float(raw.get("a", 1.0)))
            if isinstance(raw, (list, tuple)) and len(raw) in (3, 4):
                return Color(*(float(v) for v in raw))
            return raw
        if isinstance(current, Rect2) and isinstance(raw, dict):
            position = _pair(raw.get("position"), "x", "y")
            size = _pair(raw.get("size"), "x", "y")
            if position and size:
                return Rect2(Vector2(*position), Vector2(*size))
            return raw
        if isinstance(current, float) and isinstance(raw, int) and not isinstance(raw, bool):
            return float(raw)
    except (TypeError, ValueError):
        return raw
    return raw
