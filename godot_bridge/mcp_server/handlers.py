"""Implementations behind the MCP tools.

Each function takes the RunRegistry plus the tool's arguments and returns
the tool result. Bridge failures come back as readable ``error`` values,
never as exceptions, and every game call checks the run and the addon's
capabilities before anything is sent.
"""

from __future__ import annotations

import json
from typing import Any

from godot_bridge.mcp_server.errors import BridgeError
from godot_bridge.mcp_server.runs import ProjectRun, RunRegistry
from godot_bridge.mcp_server.utils import b64_image, is_error_line, tail_lines


async def _bridge_call(
    runs: RunRegistry,
    run_id: str,
    capability: str,
    command: str,
    payload: dict[str, Any],
    failure: str,
    timeout: float | None = None,
) -> tuple[Any, str | None]:
    """Pre-flight and send one bridge request. Returns ``(payload, error)``."""
    bridge, err = runs.bridge_for(run_id, capability)
    if err or bridge is None:
        return None, err
    try:
        result = await bridge.send_request(command, payload, timeout or runs.settings.request_timeout)
    except BridgeError as exc:
        return None, f"{failure}: {exc}"
    return result, None


# --- Project management ---


async def run_project(runs: RunRegistry, project_path: str = "", args: list[str] | None = None) -> dict[str, Any]:
    try:
        run = await runs.launch(project_path or None, args)
    except (OSError, ValueError) as exc:
        return {"error": f"Failed to launch Godot: {exc}"}
    return {
        "run_id": run.id,
        "project_path": run.project_path,
        "_description": f"Godot project started with run ID: {run.id}",
    }


async def stop_project(runs: RunRegistry, run_id: str) -> dict[str, Any]:
    message = await runs.stop(run_id)
    return {"_description": message}


async def list_runs(runs: RunRegistry) -> dict[str, Any]:
    summaries = [run.summary() for run in runs.list_runs()]
    return {"runs": summaries, "_description": f"{len(summaries)} run(s)"}


async def get_run_output(runs: RunRegistry, run_id: str, lines: int = 200) -> dict[str, Any]:
    run = runs.get(run_id)
    if run is None:
        return {"error": f"No project found with run ID: {run_id}"}
    stdout = tail_lines(run.stdout, lines)
    stderr = tail_lines(run.stderr, lines)
    errors = [line.strip() for line in (stdout + "\n" + stderr).splitlines() if is_error_line(line)]
    return {
        "status": run.status,
        "exit_code": run.exit_code,
        "stdout": stdout,
        "stderr": stderr,
        "errors": errors,
        "events": run.events[-lines:],
        "_description": f"Output of run {run_id} ({run.status}, {len(errors)} error line(s))",
    }


# --- Bridge tools ---


async def screenshot(runs: RunRegistry, run_id: str, format: str = "png") -> list[Any]:
    data, err = await _bridge_call(
        runs, run_id, "screenshot", "screenshot", {"format": format},
        "Failed to capture screenshot",
        timeout=runs.settings.screenshot_timeout,
    )
    if err:
        return [err]
    return [
        f"Game screenshot ({data['width']}x{data['height']})",
        b64_image(data["data"], f"image/{format}"),
    ]


async def get_scene_tree(runs: RunRegistry, run_id: str, scene_only: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {"scene_only": True} if scene_only else {}
    data, err = await _bridge_call(runs, run_id, "nodes", "get_scene_tree", payload, "Failed to get scene tree")
    if err:
        return {"error": err}
    root = data.get("root", {})
    return {"root": root, "_description": f"Scene tree from '{root.get('path', '?')}'"}


async def get_node(runs: RunRegistry, run_id: str, path: str) -> dict[str, Any]:
    data, err = await _bridge_call(runs, run_id, "nodes", "get_node", {"path": path}, "Failed to get node")
    if err:
        return {"error": err}
    node = data.get("node", {})
    return {"node": node, "_description": f"Node '{node.get('path', path)}' ({node.get('type', '?')})"}


async def set_property(runs: RunRegistry, run_id: str, path: str, property: str, value: Any) -> dict[str, Any]:
    _, err = await _bridge_call(
        runs, run_id, "nodes", "set_property",
        {"path": path, "property": property, "value": value},
        "Failed to set property",
    )
    if err:
        return {"error": err}
    return {"success": True, "_description": f"Set '{path}'.{property} = {json.dumps(value)}"}


async def call_method(
    runs: RunRegistry, run_id: str, path: str, method: str, args: list[Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"path": path, "method": method}
    if args is not None:
        payload["args"] = args
    data, err = await _bridge_call(runs, run_id, "nodes", "call_method", payload, "Failed to call method")
    if err:
        return {"error": err}
    result: dict[str, Any] = {"_description": f"Called '{path}'.{method}()"}
    if isinstance(data, dict) and "result" in data:
        result["result"] = data["result"]
    return result


async def change_scene(runs: RunRegistry, run_id: str, scene_path: str) -> dict[str, Any]:
    _, err = await _bridge_call(
        runs, run_id, "scene", "change_scene", {"scenePath": scene_path}, "Failed to change scene",
    )
    if err:
        return {"error": err}
    return {"success": True, "_description": f"Changed scene to {scene_path}"}


async def input_action(
    runs: RunRegistry, run_id: str, action: str, pressed: bool = True, strength: float = 1.0,
) -> dict[str, Any]:
    _, err = await _bridge_call(
        runs, run_id, "input", "input_action",
        {"action": action, "pressed": pressed, "strength": strength},
        "Failed to send input action",
    )
    if err:
        return {"error": err}
    state = "pressed" if pressed else "released"
    return {"success": True, "_description": f"Input action '{action}' {state}"}


async def input_key(
    runs: RunRegistry,
    run_id: str,
    keycode: int,
    pressed: bool = True,
    shift: bool = False,
    ctrl: bool = False,
    alt: bool = False,
    meta: bool = False,
) -> dict[str, Any]:
    _, err = await _bridge_call(
        runs, run_id, "input", "input_key",
        {"keycode": keycode, "pressed": pressed, "shift": shift, "ctrl": ctrl, "alt": alt, "meta": meta},
        "Failed to send key input",
    )
    if err:
        return {"error": err}
    state = "pressed" if pressed else "released"
    return {"success": True, "_description": f"Key {keycode} {state}"}


async def mouse_button(
    runs: RunRegistry, run_id: str, button: int, x: float, y: float, pressed: bool = True,
) -> dict[str, Any]:
    _, err = await _bridge_call(
        runs, run_id, "input", "input_mouse_button",
        {"button": button, "pressed": pressed, "position": {"x": x, "y": y}},
        "Failed to send mouse button input",
    )
    if err:
        return {"error": err}
    state = "pressed" if pressed else "released"
    return {"success": True, "_description": f"Mouse button {button} {state} at ({x:.0f}, {y:.0f})"}


async def mouse_motion(
    runs: RunRegistry,
    run_id: str,
    relative_x: float,
    relative_y: float,
    x: float | None = None,
    y: float | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"relative": {"x": relative_x, "y": relative_y}}
    if x is not None and y is not None:
        payload["position"] = {"x": x, "y": y}
    _, err = await _bridge_call(
        runs, run_id, "input", "input_mouse_motion", payload, "Failed to send mouse motion input",
    )
    if err:
        return {"error": err}
    where = f" at ({x:.0f}, {y:.0f})" if "position" in payload else ""
    return {"success": True, "_description": f"Mouse motion ({relative_x:.0f}, {relative_y:.0f}){where}"}


def require_run(runs: RunRegistry, run_id: str) -> ProjectRun:
    run = runs.get(run_id)
    if run is None:
        raise ValueError(f"No project found with run ID: {run_id}")
    return run
