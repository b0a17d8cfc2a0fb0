"""Exceptions raised by the bridge client.

Every failure a caller of ``BridgeClient.send_request`` can see is a
``BridgeError`` with a stable ``code``, so tools can tell a timeout from a
dead game from a command the addon rejected.
"""

from __future__ import annotations

from godot_bridge.protocol import ErrorCode


class BridgeError(Exception):
    """Base class for all bridge failures."""

    code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.args[0]}"


class BridgeNotConnectedError(BridgeError):
    code = ErrorCode.BRIDGE_NOT_CONNECTED


class BridgeTimeoutError(BridgeError):
    code = ErrorCode.TIMEOUT


class BridgeConnectionLostError(BridgeError):
    code = ErrorCode.PROCESS_EXITED


class MissingCapabilityError(BridgeError):
    code = ErrorCode.MISSING_CAPABILITY


class BridgeCommandError(BridgeError):
    """The addon answered with an error response."""

    def __init__(self, code: str, message: str, command: str = "") -> None:
        super().__init__(message, code)
        self.command = command
