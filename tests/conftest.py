"""Shared fixtures: an in-memory fake of the desktop client's end of the IPC socket."""

from typing import Any, Awaitable, Callable, List, Optional

import pytest
import trio
import trio.testing

from richpipe.event import Close, Debug, Message, Open, Ping
from richpipe.ipc.locator import LocatorConfig
from richpipe.ipc.packet import IPCOpcode, IPCPacket, PacketBuffer, encode
from richpipe.ipc.transport import IPCTransport

CLIENT_ID = "323578534763298816"


class FakePeer:
    """The server side of a memory stream, speaking the IPC framing."""

    def __init__(self, stream: trio.abc.Stream) -> None:
        self.stream = stream
        self.received: List[IPCPacket] = []
        self.responder: Optional[Callable[["FakePeer", IPCPacket], Awaitable[None]]] = None
        self.hang_up_on_eof = True

        self._buffer = PacketBuffer()

    async def run(self) -> None:
        """Collect packets until the client half-closes, then hang up."""
        while True:
            try:
                data = await self.stream.receive_some()
            except trio.ClosedResourceError:
                return

            if not data:
                break

            packets, _ = self._buffer.feed(data)
            for packet in packets:
                self.received.append(packet)
                if self.responder is not None:
                    await self.responder(self, packet)

        if self.hang_up_on_eof:
            await self.stream.aclose()

    async def send(self, opcode: IPCOpcode, data: Any = None) -> None:
        await self.stream.send_all(encode(opcode, data))

    async def send_raw(self, data: bytes) -> None:
        await self.stream.send_all(data)

    def received_with(self, opcode: IPCOpcode) -> List[IPCPacket]:
        return [packet for packet in self.received if packet.opcode == opcode]


class Recorder:
    """Subscribes to every transport topic and keeps what it saw."""

    def __init__(self, transport: IPCTransport) -> None:
        self.notifications: list = []
        for topic in (Open, Message, Close, Ping, Debug):
            transport.events.subscribe(topic, self.notifications.append)

    def of(self, kind: type) -> list:
        return [n for n in self.notifications if isinstance(n, kind)]

    def debug_texts(self) -> List[str]:
        return [n.text for n in self.of(Debug)]


@pytest.fixture
def locator_config(tmp_path) -> LocatorConfig:
    return LocatorConfig(platform="linux", environ={"XDG_RUNTIME_DIR": str(tmp_path)})


@pytest.fixture
def stream_pair():
    return trio.testing.memory_stream_pair()


@pytest.fixture
def opener(stream_pair):
    client_stream, _ = stream_pair

    async def _open(path: str) -> trio.abc.Stream:
        return client_stream

    return _open


@pytest.fixture
def peer(stream_pair) -> FakePeer:
    _, server_stream = stream_pair
    return FakePeer(server_stream)


@pytest.fixture
def transport(locator_config, opener) -> IPCTransport:
    return IPCTransport(CLIENT_ID, config=locator_config, opener=opener, close_timeout=1)


@pytest.fixture
def recorder(transport) -> Recorder:
    return Recorder(transport)
