"""Run the demo game: ``python -m godot_bridge.addon --mcp-bridge``.

Accepts the same ``--path`` and ``--quit-after`` options the engine does, so
the MCP server can launch it in place of a real Godot binary.
"""

from __future__ import annotations

import argparse
import os
import sys

from loguru import logger

from godot_bridge.addon.agent import BridgeAgent
from godot_bridge.addon.demo import build_tree
from godot_bridge.logs import configure_logging
from godot_bridge.protocol import ACTIVATION_FLAG


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = argparse.ArgumentParser(prog="godot_bridge.addon")
    parser.add_argument("--path", default=".")
    parser.add_argument("--quit-after", type=int, default=0)
    parser.add_argument(ACTIVATION_FLAG, dest="mcp_bridge", action="store_true")
    args, _ = parser.parse_known_args(argv)

    configure_logging(os.environ.get("GODOT_BRIDGE_LOG_LEVEL", "INFO"))

    tree = build_tree()
    agent = BridgeAgent(tree, argv=argv, on_closed=tree.quit)
    agent.start()

    if args.quit_after > 0:
        def quit_after(_delta: float) -> None:
            if tree.frame >= args.quit_after:
                tree.quit()

        tree.connect_process(quit_after)

    print(f"Demo game started (project: {args.path})", flush=True)
    print(f"Current scene: {tree.current_scene.get_path() if tree.current_scene else '<none>'}", flush=True)
    exit_code = tree.run()
    logger.info("Demo game exiting after {} frames", tree.frame)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
