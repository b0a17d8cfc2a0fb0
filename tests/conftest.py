import asyncio

import pytest

from godot_bridge.addon.demo import build_tree
from godot_bridge.protocol import BridgeMessage, decode_message, encode_message


class FakeStdin:
    """Stands in for a child's stdin. Decodes every frame written to it."""

    def __init__(self) -> None:
        self.requests: asyncio.Queue[BridgeMessage] = asyncio.Queue()
        self.raw: list[bytes] = []
        self.broken = False

    def write(self, data: bytes) -> None:
        if self.broken:
            raise BrokenPipeError("stdin closed")
        self.raw.append(data)
        for line in data.decode("utf-8").splitlines():
            message = decode_message(line)
            if message is not None:
                self.requests.put_nowait(message)

    async def drain(self) -> None:
        return None

    async def next_request(self, timeout: float = 1.0) -> BridgeMessage:
        return await asyncio.wait_for(self.requests.get(), timeout)


def frame(message: BridgeMessage) -> bytes:
    return (encode_message(message) + "\n").encode("utf-8")


async def settle(rounds: int = 5) -> None:
    """Let the client's reader task catch up with fed data."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def tree():
    return build_tree()
