#!/usr/bin/env python3
"""Godot stdio bridge MCP server.

Launches Godot projects with the ``--mcp-bridge`` flag and exposes the
addon's commands (scene inspection, property edits, method calls, scene
changes, input injection, screenshots) as MCP tools.

Run with: godot-stdio-bridge [project_path]
Or configure as an MCP server:
{
    "mcpServers": {
        "godot": {
            "command": "godot-stdio-bridge",
            "args": ["/path/to/project"],
            "env": {"GODOT_PATH": "/path/to/godot"}
        }
    }
}
"""

from __future__ import annotations

import sys

from fastmcp import FastMCP
from loguru import logger

from godot_bridge.logs import configure_logging
from godot_bridge.mcp_server.config import BridgeSettings
from godot_bridge.mcp_server.runs import RunRegistry
from godot_bridge.mcp_server.runtime_tools import register_runtime_tools

INSTRUCTIONS = (
    "You have access to tools for running Godot projects and controlling the "
    "running game through the MCP bridge addon.\n\n"
    "Start with run_project, then check list_runs until bridgeConnected is true. "
    "Game tools (game_*) need a connected bridge; if one reports that the addon is "
    "not connected or lacks a capability, the project does not have the addon "
    "installed or was not launched through run_project.\n\n"
    "Use game_get_scene_tree for orientation and game_get_node for one node. Node "
    "paths starting with '/' are absolute ('/root/Main/Player'), anything else is "
    "relative to the current scene. Only serializable property values are listed.\n\n"
    "get_run_output returns the game's console output with bridge traffic removed "
    "and collects lines that look like errors."
)


def create_server(settings: BridgeSettings | None = None, runs: RunRegistry | None = None) -> FastMCP:
    settings = settings or BridgeSettings()
    mcp = FastMCP("godot-stdio-bridge", instructions=INSTRUCTIONS)
    register_runtime_tools(mcp, runs or RunRegistry(settings))
    return mcp


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    settings = BridgeSettings()
    if argv:
        settings.project_path = argv[0]
    configure_logging(settings.log_level)
    if not settings.project_path:
        logger.warning("No default project path given; run_project will need one")
    logger.info("Godot stdio bridge MCP server starting (godot: {})", settings.godot_path)
    create_server(settings).run()


if __name__ == "__main__":
    main()
