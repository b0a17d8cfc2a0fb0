"""MCP tool definitions for launched games and their bridge.

Project tools start, stop and inspect game processes. Game tools talk to the
bridge addon inside a running game and are only useful once run_project has
reported a connected bridge.
"""

from __future__ import annotations

import json
from typing import Any

from fastmcp import FastMCP

from godot_bridge.mcp_server import handlers
from godot_bridge.mcp_server.runs import RunRegistry


def register_runtime_tools(mcp: FastMCP, runs: RunRegistry) -> None:
    """Register all project and game tools with the MCP server."""

    # --- Projects ---

    @mcp.tool
    async def run_project(project_path: str = "", args: list[str] | None = None) -> dict[str, Any]:
        """Launch a Godot project with the MCP bridge enabled.

        The bridge handshake happens shortly after launch. Use list_runs() to see
        whether the addon connected and which capabilities it offers.

        Args:
            project_path: Project directory. Empty = the server's configured project.
            args: Extra command-line arguments passed to Godot.
        """
        return await handlers.run_project(runs, project_path, args)

    @mcp.tool
    async def stop_project(run_id: str) -> dict[str, Any]:
        """Stop a running project.

        Args:
            run_id: Run ID returned by run_project.
        """
        return await handlers.stop_project(runs, run_id)

    @mcp.tool
    async def list_runs() -> dict[str, Any]:
        """List launched projects with status, exit code and bridge connection."""
        return await handlers.list_runs(runs)

    @mcp.tool
    async def get_run_output(run_id: str, lines: int = 200) -> dict[str, Any]:
        """Get console output captured from a run (bridge traffic excluded).

        Args:
            run_id: Run ID returned by run_project.
            lines: Keep only the last N lines of each stream (0 = everything).
        """
        return await handlers.get_run_output(runs, run_id, lines)

    # --- Observation ---

    @mcp.tool
    async def game_screenshot(run_id: str, format: str = "png") -> list[Any]:
        """Capture the game viewport after the current frame finishes rendering.

        Args:
            run_id: Run ID returned by run_project.
            format: 'png' or 'jpeg'.
        """
        return await handlers.screenshot(runs, run_id, format)

    @mcp.tool
    async def game_get_scene_tree(run_id: str, scene_only: bool = False) -> dict[str, Any]:
        """Get the live scene tree with each node's serializable properties.

        Args:
            run_id: Run ID returned by run_project.
            scene_only: Start at the current scene instead of the root window.
        """
        return await handlers.get_scene_tree(runs, run_id, scene_only)

    @mcp.tool
    async def game_get_node(run_id: str, path: str) -> dict[str, Any]:
        """Get one node's type, path and properties.

        Args:
            run_id: Run ID returned by run_project.
            path: '/root/Main/Player' (absolute) or 'Player' (relative to the current scene).
        """
        return await handlers.get_node(runs, run_id, path)

    # --- State ---

    @mcp.tool
    async def game_set_property(run_id: str, path: str, property: str, value: Any) -> dict[str, Any]:
        """Set a property on a node in the running game.

        Args:
            run_id: Run ID returned by run_project.
            path: Node path.
            property: Property name (e.g., 'position', 'visible').
            value: New value. Use {"x": .., "y": ..} or [x, y] for vectors and
                   {"r", "g", "b", "a"} for colors.
        """
        return await handlers.set_property(runs, run_id, path, property, value)

    @mcp.tool
    async def game_call_method(run_id: str, path: str, method: str, args: list[Any] | None = None) -> dict[str, Any]:
        """Call a method on a node and return its result.

        Args:
            run_id: Run ID returned by run_project.
            path: Node path.
            method: Method name (e.g., 'take_damage').
            args: Positional arguments.
        """
        return await handlers.call_method(runs, run_id, path, method, args)

    @mcp.tool
    async def game_change_scene(run_id: str, scene_path: str) -> dict[str, Any]:
        """Replace the current scene. There is no undo.

        Args:
            run_id: Run ID returned by run_project.
            scene_path: Scene resource path (e.g., 'res://levels/level_2.tscn').
        """
        return await handlers.change_scene(runs, run_id, scene_path)

    # --- Input ---

    @mcp.tool
    async def game_input_action(
        run_id: str, action: str, pressed: bool = True, strength: float = 1.0,
    ) -> dict[str, Any]:
        """Trigger an InputMap action in the running game.

        Args:
            run_id: Run ID returned by run_project.
            action: Action name from the InputMap (e.g., 'jump', 'ui_accept').
            pressed: True to press, False to release.
            strength: Action strength from 0.0 to 1.0.
        """
        return await handlers.input_action(runs, run_id, action, pressed, strength)

    @mcp.tool
    async def game_input_key(
        run_id: str,
        keycode: int,
        pressed: bool = True,
        shift: bool = False,
        ctrl: bool = False,
        alt: bool = False,
        meta: bool = False,
    ) -> dict[str, Any]:
        """Send a key event.

        Args:
            run_id: Run ID returned by run_project.
            keycode: Godot keycode (e.g., 32 for space, 4194309 for enter).
            pressed: True for key down, False for key up.
            shift: Shift modifier held.
            ctrl: Ctrl modifier held.
            alt: Alt modifier held.
            meta: Meta/Cmd modifier held.
        """
        return await handlers.input_key(runs, run_id, keycode, pressed, shift, ctrl, alt, meta)

    @mcp.tool
    async def game_mouse_button(
        run_id: str, button: int, x: float, y: float, pressed: bool = True,
    ) -> dict[str, Any]:
        """Send a mouse button event at a viewport position.

        Args:
            run_id: Run ID returned by run_project.
            button: 1 = left, 2 = right, 3 = middle.
            x: X coordinate in viewport space.
            y: Y coordinate in viewport space.
            pressed: True for press, False for release.
        """
        return await handlers.mouse_button(runs, run_id, button, x, y, pressed)

    @mcp.tool
    async def game_mouse_motion(
        run_id: str, relative_x: float, relative_y: float, x: float | None = None, y: float | None = None,
    ) -> dict[str, Any]:
        """Send a mouse motion event.

        Args:
            run_id: Run ID returned by run_project.
            relative_x: Relative X motion.
            relative_y: Relative Y motion.
            x: Absolute X position (optional, needs y).
            y: Absolute Y position (optional, needs x).
        """
        return await handlers.mouse_motion(runs, run_id, relative_x, relative_y, x, y)

    # --- Resources ---

    @mcp.resource("godot://runs", mime_type="application/json")
    def runs_resource() -> str:
        """All launched runs."""
        return json.dumps([run.summary() for run in runs.list_runs()], indent=2)

    @mcp.resource("godot://runs/{run_id}/stdout", mime_type="text/plain")
    def run_stdout(run_id: str) -> str:
        """Console output of a run."""
        return "".join(handlers.require_run(runs, run_id).stdout)

    @mcp.resource("godot://runs/{run_id}/stderr", mime_type="text/plain")
    def run_stderr(run_id: str) -> str:
        """Error output of a run."""
        return "".join(handlers.require_run(runs, run_id).stderr)

    @mcp.resource("godot://runs/{run_id}/status", mime_type="application/json")
    def run_status(run_id: str) -> str:
        """Status of a run."""
        return json.dumps(handlers.require_run(runs, run_id).summary(), indent=2)


