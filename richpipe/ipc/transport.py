# This file is part of richpipe.
#
# richpipe is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# richpipe is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with richpipe.  If not, see <http://www.gnu.org/licenses/>.

"""
The transport that owns a connection to the IPC socket.

.. currentmodule:: richpipe.ipc.transport
"""
import enum
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Union

import trio

from richpipe.event import Close, Debug, EventChannel, Message, Open, Ping
from richpipe.exc import WriteWithoutConnectionError
from richpipe.ipc.locator import LocatorConfig, Opener, locate
from richpipe.ipc.packet import IPCOpcode, IPCPacket, PacketBuffer
from richpipe.util import get_nonce, hexdump

RECEIVE_SIZE = 65536

#: The close reason used when the client closes the connection itself.
CLIENT_CLOSE_REASON = {"code": -1, "message": "Closed by client"}

#: The close reason used when the peer hangs up without sending a CLOSE.
CONNECTION_LOST_REASON = {"code": -1, "message": "Connection lost"}


class TransportState(enum.Enum):
    """
    The states of an :class:`.IPCTransport`.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class IPCTransport(object):
    """
    Owns a single connection to the IPC socket.

    .. code-block:: python3

        transport = IPCTransport("323578534763298816")
        transport.events.subscribe(Message, print)

        async with trio.open_nursery() as nursery:
            await transport.connect(nursery)
            ...
            await transport.close()

    """

    #: The protocol version sent in the handshake.
    VERSION = 1

    def __init__(self, client_id: Union[int, str], *,
                 config: LocatorConfig = None,
                 events: EventChannel = None,
                 opener: Opener = None,
                 close_timeout: float = 5.0):
        """
        :param client_id: The application ID to identify as in the handshake.
        :param config: The :class:`.LocatorConfig` used to find the socket.
        :param events: The :class:`.EventChannel` to publish to. A new one is made if not passed.
        :param opener: Overrides how a socket path is opened.
        :param close_timeout: How long :meth:`.close` waits for the peer to hang up.
        """
        self.client_id = str(client_id)
        self.config = config
        self.opener = opener
        self.close_timeout = close_timeout

        #: The :class:`.EventChannel` notifications are published on.
        self.events = events if events is not None else EventChannel()

        #: The current :class:`.TransportState`.
        self.state = TransportState.DISCONNECTED

        self._logger: Optional[logging.Logger] = None

        self._stream: Optional[trio.abc.Stream] = None
        self._buffer = PacketBuffer()
        self._write_lock = trio.Lock()
        # set when the read loop of the current connection exits
        self._loop_done: Optional[trio.Event] = None

    @property
    def logger(self) -> logging.Logger:
        if self._logger:
            return self._logger

        self._logger = logging.getLogger("richpipe.ipc.transport:{}".format(self.client_id))
        return self._logger

    @property
    def is_connected(self) -> bool:
        """
        :return: If this transport has a live connection.
        """
        return self._stream is not None and self.state == TransportState.CONNECTED

    def _debug(self, text: str, data: Any = None) -> None:
        if data is None:
            self.logger.debug(text)
        else:
            self.logger.debug(f"{text} {data!r}")

        self.events.publish(Debug(text, data))

    def _malformed(self, reason: Any) -> None:
        self.logger.warning(f"Received malformed packet: {reason}")
        self.events.publish(Debug("SERVER => CLIENT | Malformed packet, invalid payload", reason))

    # connection lifecycle
    async def connect(self, nursery: trio.Nursery) -> None:
        """
        Connects to the IPC socket, sends the handshake, and starts the read loop.

        Does nothing if already connected.

        :param nursery: The nursery to run the read loop in.
        :raises ConnectionNotFoundError: If no IPC socket could be connected to.
        """
        if self._stream is not None:
            return

        if self.state != TransportState.DISCONNECTED:
            raise RuntimeError("Cannot connect while {}".format(self.state.value))

        self.state = TransportState.CONNECTING
        try:
            stream = await locate(self.config, opener=self.opener)
        except BaseException:
            self.state = TransportState.DISCONNECTED
            raise

        self._stream = stream
        self._buffer.clear()
        self._loop_done = trio.Event()
        self.state = TransportState.CONNECTED
        self.events.publish(Open())

        try:
            await self._send_handshake()
        except (trio.BrokenResourceError, trio.ClosedResourceError):
            await self._detach(stream, {"code": -1, "message": "Handshake failed"})
            raise

        nursery.start_soon(self._read_loop, stream, self._loop_done)

    async def close(self) -> None:
        """
        Closes the connection gracefully.

        The write side is shut down, then the peer is given ``close_timeout`` seconds to hang up
        before the stream is forcibly closed.
        """
        stream = self._stream
        if stream is None:
            return

        if self.state == TransportState.CLOSING:
            raise RuntimeError("Already closing")

        self.state = TransportState.CLOSING
        loop_done = self._loop_done

        try:
            # without a half-close there is nothing to wait for, the peer never learns we're done
            if isinstance(stream, trio.abc.HalfCloseableStream):
                async with self._write_lock:
                    await stream.send_eof()

                with trio.move_on_after(self.close_timeout) as scope:
                    await loop_done.wait()

                if scope.cancelled_caught:
                    self.logger.warning("Peer did not hang up in time, forcibly closing.")
        except (trio.BrokenResourceError, trio.ClosedResourceError):
            pass
        finally:
            await self._detach(stream, CLIENT_CLOSE_REASON)

    async def _detach(self, stream: trio.abc.Stream, reason: Any) -> None:
        """
        Drops a connection and publishes its close. Only the first call per stream does anything.
        """
        if self._stream is not stream:
            return

        self._stream = None
        self._buffer.clear()
        self.state = TransportState.DISCONNECTED
        self.logger.info(f"Connection closed: {reason}")

        try:
            self.events.publish(Close(reason))
        finally:
            await stream.aclose()

    # writer methods
    async def send(self, opcode: IPCOpcode = IPCOpcode.FRAME, data: Any = None, *,
                   strict: bool = False) -> None:
        """
        Writes a packet to the connection.

        :param opcode: The :class:`.IPCOpcode` of the packet.
        :param data: The JSON-serializable payload, or None for an empty payload.
        :param strict: If True, writing without a connection raises instead of being ignored.
        :raises WriteWithoutConnectionError: If ``strict`` and there is no live connection.
        """
        opcode = IPCOpcode(opcode)
        stream = self._stream
        if stream is None or self.state != TransportState.CONNECTED:
            if strict:
                raise WriteWithoutConnectionError(
                    "Cannot send OPCODE.{} without a connection".format(opcode.name)
                )

            self._debug(f"CLIENT => SERVER | Dropped OPCODE.{opcode.name}, not connected", data)
            return

        self._debug(f"CLIENT => SERVER | OPCODE.{opcode.name} |", data)
        packet = IPCPacket(opcode, data).serialize()

        async with self._write_lock:
            await stream.send_all(packet)

    def _send_handshake(self):
        """
        Writes an IPC handshake.
        """
        data = {
            "v": self.VERSION,
            "client_id": self.client_id
        }

        return self.send(IPCOpcode.HANDSHAKE, data)

    async def ping(self) -> str:
        """
        Sends a PING with a random payload.

        :return: The payload sent, which the peer echoes back in its PONG.
        """
        nonce = get_nonce()
        await self.send(IPCOpcode.PING, nonce)
        return nonce

    # reader methods
    async def _read_loop(self, stream: trio.abc.Stream, done: trio.Event) -> None:
        """
        Reads off of the stream until it ends or this transport lets go of it.
        """
        try:
            while self._stream is stream:
                try:
                    data = await stream.receive_some(RECEIVE_SIZE)
                except (trio.BrokenResourceError, trio.ClosedResourceError):
                    data = b""

                if not data:
                    break

                try:
                    await self.feed_data(data)
                except (trio.BrokenResourceError, trio.ClosedResourceError):
                    break
        finally:
            done.set()

        if self._buffer.pending:
            self._malformed("{} bytes of a truncated packet".format(self._buffer.pending))

        # a closing transport detaches itself in close()
        if self._stream is stream and self.state == TransportState.CONNECTED:
            await self._detach(stream, CONNECTION_LOST_REASON)

    async def feed_data(self, data: bytes) -> None:
        """
        Handles one read's worth of bytes.
        """
        self._debug(f"SERVER => CLIENT | {hexdump(data)}")

        packets, errors = self._buffer.feed(data)
        for error in errors:
            self._malformed(error)

        for packet in packets:
            await self._handle_packet(packet)
            if self._stream is None:
                # closed by the peer, anything after the CLOSE is irrelevant
                return

        if self._buffer.pending:
            self._debug(
                f"SERVER => CLIENT | Incomplete packet, {self._buffer.pending} bytes buffered"
            )

    async def _handle_packet(self, packet: IPCPacket) -> None:
        """
        The grand old opcode switch.
        """
        self._debug(f"SERVER => CLIENT | OPCODE.{packet.opcode.name} |", packet.data)

        if packet.opcode == IPCOpcode.FRAME:
            self.events.publish(Message(packet.data))

        elif packet.opcode == IPCOpcode.CLOSE:
            await self._detach(self._stream, packet.data)

        elif packet.opcode == IPCOpcode.PING:
            await self.send(IPCOpcode.PONG, packet.data)
            self.events.publish(Ping())

        # PONG and HANDSHAKE need nothing beyond the debug log


@asynccontextmanager
async def open_transport(client_id: Union[int, str], **kwargs) -> AsyncIterator[IPCTransport]:
    """
    Opens a new :class:`.IPCTransport`, closing it when the block exits.

    .. code-block:: python3

        async with open_transport(client_id) as transport:
            await transport.send(IPCOpcode.FRAME, {...})

    :param client_id: The application ID.
    :param kwargs: Passed to :class:`.IPCTransport`.
    """
    transport = IPCTransport(client_id, **kwargs)

    async with trio.open_nursery() as nursery:
        await transport.connect(nursery)
        try:
            yield transport
        finally:
            with trio.CancelScope(shield=True):
                await transport.close()
