"""Wires the bridge into a running game.

The agent stays dormant unless the game was launched with ``--mcp-bridge``:
no thread is started and stdin is never touched, so running the game by hand
behaves exactly as if the addon weren't installed.
"""

from __future__ import annotations

import sys
from typing import IO, Any, Callable, Sequence, TextIO

from loguru import logger

from godot_bridge.addon.dispatcher import CommandDispatcher
from godot_bridge.addon.pump import DeliveryPump
from godot_bridge.addon.scene import SceneTree
from godot_bridge.protocol import ACTIVATION_FLAG, PROTOCOL_VERSION


def is_bridge_requested(argv: Sequence[str] | None = None) -> bool:
    return ACTIVATION_FLAG in (sys.argv if argv is None else argv)


class BridgeAgent:
    def __init__(
        self,
        tree: SceneTree,
        argv: Sequence[str] | None = None,
        input_stream: IO[Any] | None = None,
        output_stream: TextIO | None = None,
        on_closed: Callable[[], None] | None = None,
    ) -> None:
        self.tree = tree
        self._argv = argv
        self._input = input_stream
        self._output = output_stream
        self._on_closed = on_closed
        self.pump: DeliveryPump | None = None

    @property
    def active(self) -> bool:
        return self.pump is not None

    def start(self) -> bool:
        """Start reading stdin if the activation flag is present."""
        if self.pump is not None:
            return True
        if not is_bridge_requested(self._argv):
            logger.debug("{} not given, MCP bridge disabled", ACTIVATION_FLAG)
            return False

        dispatcher = CommandDispatcher(self.tree, emit_event=self.send_event)
        self.pump = DeliveryPump(dispatcher, self._input, self._output, on_closed=self._on_closed)
        self.pump.start()
        self.tree.connect_process(self._process)
        logger.info("MCP bridge v{} listening on stdin", PROTOCOL_VERSION)
        return True

    def send_event(self, command: str, payload: Any = None) -> None:
        if self.pump is not None:
            self.pump.send_event(command, payload)

    def _process(self, delta: float) -> None:
        if self.pump is not None:
            self.pump.drain()
