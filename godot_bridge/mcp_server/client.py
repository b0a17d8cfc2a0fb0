"""Bridge client for talking to the Godot addon over the game's stdin/stdout.

Requests are written to the game's stdin as frames; responses come back on
its stdout mixed in with ordinary print() output. The client separates the
two, hands plain text to an output callback and resolves the awaiting caller
by message id. Responses may arrive in any order.

Every request has a deadline. A request that outlives it fails with
BridgeTimeoutError and is forgotten, so a late reply is simply dropped. When
the game exits, every request still waiting fails with
BridgeConnectionLostError instead of sitting out its timeout.
"""

from __future__ import annotations

import asyncio
import codecs
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from loguru import logger

from godot_bridge.protocol import (
    PROTOCOL_VERSION,
    BridgeMessage,
    encode_message,
    extract_messages,
    make_request,
    partial_prefix_len,
)
from godot_bridge.mcp_server.errors import (
    BridgeCommandError,
    BridgeConnectionLostError,
    BridgeError,
    BridgeNotConnectedError,
    BridgeTimeoutError,
    MissingCapabilityError,
)

DEFAULT_TIMEOUT: float = 5.0
HANDSHAKE_TIMEOUT: float = 2.0
# Capturing waits for the next rendered frame and encodes an image.
SCREENSHOT_TIMEOUT: float = 10.0
# Hard ceiling, callers can ask for less but never more.
MAX_TIMEOUT: float = 120.0

READ_CHUNK_SIZE = 65536

OutputCallback = Callable[[str], None]
EventCallback = Callable[[BridgeMessage], None]
DisconnectCallback = Callable[[str], None]


class StdinWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


@dataclass
class PendingRequest:
    id: str
    command: str
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = None


@dataclass
class ConnectionState:
    connected: bool = False
    capabilities: frozenset[str] = field(default_factory=frozenset)
    version: str = ""

    def reset(self) -> None:
        self.connected = False
        self.capabilities = frozenset()
        self.version = ""


class BridgeClient:
    """Request/response client over one game process's stdio.

    Construct it with the game's stdin writer and stdout reader, then call
    start() to begin reading. Nothing but ``handshake`` may be sent until a
    handshake has succeeded.
    """

    def __init__(
        self,
        stdin: StdinWriter,
        stdout: asyncio.StreamReader,
        *,
        on_output: OutputCallback | None = None,
        on_event: EventCallback | None = None,
        on_disconnect: DisconnectCallback | None = None,
    ) -> None:
        self._stdin = stdin
        self._stdout = stdout
        self._on_output = on_output
        self._on_event = on_event
        self._on_disconnect = on_disconnect

        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: dict[str, PendingRequest] = {}
        self._state = ConnectionState()
        self._reader_task: asyncio.Task[None] | None = None
        self._closed = False

    # --- Connection state ---

    @property
    def connected(self) -> bool:
        return self._state.connected

    @property
    def capabilities(self) -> list[str]:
        return sorted(self._state.capabilities)

    @property
    def version(self) -> str:
        return self._state.version

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def has_capability(self, name: str) -> bool:
        return name in self._state.capabilities

    def require_capability(self, name: str) -> None:
        if not self._state.connected:
            raise BridgeNotConnectedError("Bridge not connected")
        if name not in self._state.capabilities:
            raise MissingCapabilityError(f"Bridge does not support {name} capability")

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the background stdout reader."""
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    async def close(self, reason: str = "Bridge closed", grace: float = 0.0) -> None:
        """Fail everything still pending and stop reading.

        With *grace*, the reader first gets that many seconds to reach EOF on
        its own, so output written just before the process exited still
        arrives.
        """
        task = self._reader_task
        if grace > 0 and task is not None and not task.done():
            await asyncio.wait({task}, timeout=grace)
        self._handle_disconnect(reason)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _read_loop(self) -> None:
        reason = "Process exited"
        try:
            while True:
                chunk = await self._stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.feed(self._decoder.decode(chunk))
        except asyncio.CancelledError:
            raise
        except (OSError, ValueError) as exc:
            reason = f"Process error: {exc}"
            logger.warning("Bridge stdout read failed: {}", exc)
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self.feed(tail)
        # A frame cut off by the exit is just console text now.
        if self._buffer and self._on_output is not None:
            self._on_output(self._buffer)
        self._buffer = ""
        self._handle_disconnect(reason)

    def feed(self, text: str) -> None:
        """Process a chunk of decoded stdout text."""
        self._buffer += text
        result = extract_messages(self._buffer)
        self._buffer = result.remaining
        text = result.non_bridge_text

        # A chunk can end part-way through a PREFIX; hold that back too.
        held = partial_prefix_len(text) if not self._buffer else 0
        if held:
            text, self._buffer = text[:-held], text[-held:]

        if text and self._on_output is not None:
            self._on_output(text)

        for message in result.messages:
            self._handle_message(message)

    def _handle_message(self, message: BridgeMessage) -> None:
        if message.kind == "response":
            pending = self._pending.pop(message.id, None)
            if pending is None:
                logger.debug("Dropping unmatched response {} ({})", message.id, message.command)
                return
            if pending.timer is not None:
                pending.timer.cancel()
            if pending.future.done():
                return
            if message.error is not None:
                pending.future.set_exception(
                    BridgeCommandError(
                        message.error.get("code", ""),
                        message.error.get("message", ""),
                        command=message.command,
                    )
                )
            else:
                pending.future.set_result(message.payload)
        elif message.kind == "event":
            if self._on_event is not None:
                self._on_event(message)
        else:
            logger.debug("Ignoring {} frame for '{}'", message.kind, message.command)

    def _handle_disconnect(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._state.reset()
        self._reject_all(BridgeConnectionLostError(reason))
        logger.info("Bridge disconnected: {}", reason)
        if self._on_disconnect is not None:
            self._on_disconnect(reason)

    def _reject_all(self, error: BridgeError) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if request.timer is not None:
                request.timer.cancel()
            if not request.future.done():
                request.future.set_exception(error)

    # --- Requests ---

    async def send_request(
        self, command: str, payload: Any = None, timeout: float = DEFAULT_TIMEOUT,
    ) -> Any:
        """Send *command* to the addon and return the response payload.

        Raises BridgeNotConnectedError before a successful handshake (except
        for the handshake itself), BridgeTimeoutError when no response
        arrives within *timeout* seconds, BridgeConnectionLostError when the
        game goes away and BridgeCommandError when the addon reports an error.
        """
        if self._closed:
            raise BridgeConnectionLostError("Bridge closed")
        if not self._state.connected and command != "handshake":
            raise BridgeNotConnectedError("Bridge not connected")

        timeout = min(timeout, MAX_TIMEOUT)
        loop = asyncio.get_running_loop()
        message = make_request(command, payload)
        pending = PendingRequest(id=message.id, command=command, future=loop.create_future())
        pending.timer = loop.call_later(timeout, self._expire, message.id, timeout)
        self._pending[message.id] = pending

        try:
            self._stdin.write((encode_message(message) + "\n").encode("utf-8"))
            await self._stdin.drain()
        except (OSError, RuntimeError) as exc:
            # Broken pipe: the game is gone even if stdout hasn't hit EOF yet.
            self._forget(message.id)
            raise BridgeConnectionLostError(f"Could not write to game stdin: {exc}") from exc

        try:
            return await pending.future
        finally:
            self._forget(message.id)

    def _expire(self, msg_id: str, timeout: float) -> None:
        pending = self._pending.pop(msg_id, None)
        if pending is None or pending.future.done():
            return
        pending.future.set_exception(
            BridgeTimeoutError(f"Request '{pending.command}' timed out after {timeout}s")
        )

    def _forget(self, msg_id: str) -> None:
        pending = self._pending.pop(msg_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()

    async def handshake(self, timeout: float = HANDSHAKE_TIMEOUT) -> bool:
        """Negotiate version and capabilities. Returns False if the addon is absent."""
        try:
            response = await self.send_request("handshake", {"version": PROTOCOL_VERSION}, timeout)
        except BridgeError as exc:
            logger.debug("Handshake failed: {}", exc)
            self._state.reset()
            return False

        if self._closed:
            # The game went away right after answering.
            return False
        if not isinstance(response, dict):
            response = {}
        self._state.version = str(response.get("version") or "unknown")
        self._state.capabilities = frozenset(str(c) for c in response.get("capabilities") or [])
        self._state.connected = True
        return True


def connect_process(
    process: asyncio.subprocess.Process,
    *,
    on_output: OutputCallback | None = None,
    on_event: EventCallback | None = None,
    on_disconnect: DisconnectCallback | None = None,
) -> BridgeClient:
    """Build and start a BridgeClient over a process spawned with piped stdio."""
    if process.stdin is None or process.stdout is None:
        raise ValueError("process must be started with stdin=PIPE and stdout=PIPE")
    client = BridgeClient(
        process.stdin,
        process.stdout,
        on_output=on_output,
        on_event=on_event,
        on_disconnect=on_disconnect,
    )
    client.start()
    return client
