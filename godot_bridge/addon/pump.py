"""Moves requests from the blocking stdin reader onto the main thread.

Reading stdin blocks forever, so it happens on a daemon thread. Engine APIs
are only safe on the main thread, so the reader never dispatches anything: it
decodes frames and appends requests to a queue. Once per frame the main loop
calls ``drain()``, which swaps the whole queue out under the lock and runs
every request in order. The lock is held only for the append and the swap.
"""

from __future__ import annotations

import sys
import threading
from typing import IO, Any, Callable, TextIO

from loguru import logger

from godot_bridge.addon.dispatcher import CommandDispatcher
from godot_bridge.protocol import BridgeMessage, decode_message, encode_message, make_event


class DeliveryPump:
    def __init__(
        self,
        dispatcher: CommandDispatcher,
        input_stream: IO[Any] | None = None,
        output_stream: TextIO | None = None,
        on_closed: Callable[[], None] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        # Raw bytes, so one undecodable line cannot end the reader.
        self._input = input_stream if input_stream is not None else sys.stdin.buffer
        self._output = output_stream if output_stream is not None else sys.stdout
        self._on_closed = on_closed

        self._lock = threading.Lock()
        self._queue: list[BridgeMessage] = []
        self._input_closed = False
        self._closed_reported = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._read_loop, name="mcp-bridge-stdin", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the reader thread to see the end of its input."""
        if self._thread is not None:
            self._thread.join(timeout)

    # --- Reader thread ---

    def _read_loop(self) -> None:
        try:
            while True:
                line = self._input.readline()
                if not line:
                    break
                if isinstance(line, bytes):
                    line = line.decode("utf-8", errors="replace")
                message = decode_message(line.strip())
                if message is None:
                    continue
                if message.kind != "request":
                    logger.debug("Ignoring inbound {} '{}'", message.kind, message.command)
                    continue
                self.enqueue(message)
        except (OSError, ValueError) as exc:
            logger.warning("Bridge stdin read failed: {}", exc)
        with self._lock:
            self._input_closed = True

    def enqueue(self, message: BridgeMessage) -> None:
        with self._lock:
            self._queue.append(message)

    # --- Main thread ---

    def drain(self) -> int:
        """Dispatch everything queued since the last drain. Returns the count."""
        with self._lock:
            batch, self._queue = self._queue, []
            input_closed = self._input_closed

        for message in batch:
            self.dispatcher.dispatch(message, self._write)

        if input_closed and not self._closed_reported:
            self._closed_reported = True
            logger.info("Bridge input closed")
            if self._on_closed is not None:
                self._on_closed()
        return len(batch)

    def send_event(self, command: str, payload: Any = None) -> None:
        self._write(make_event(command, payload))

    def _write(self, message: BridgeMessage) -> None:
        try:
            self._output.write(encode_message(message) + "\n")
            self._output.flush()
        except (OSError, ValueError) as exc:
            logger.warning("Could not write '{}' response: {}", message.command, exc)
