"""Drive a running Godot game over its stdin/stdout."""

__version__ = "0.1.0"
