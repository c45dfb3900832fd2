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
Represents an IPC packet, and the buffer that reassembles them off of a stream.

.. currentmodule:: richpipe.ipc.packet
"""
import enum
import json
import struct
from typing import Any, List, Optional, Tuple

from richpipe.exc import MalformedFrameError

#: The header is two little-endian unsigned ints: opcode, then payload length.
HEADER = struct.Struct("<II")
HEADER_SIZE = HEADER.size

#: Anything bigger than this is treated as a corrupted length field.
MAX_PAYLOAD_SIZE = 64 * 1024 * 1024


class IPCOpcode(enum.IntEnum):
    """
    Represents an IPC opcode.
    """
    HANDSHAKE = 0
    FRAME = 1
    CLOSE = 2
    PING = 3
    PONG = 4


class IPCPacket(object):
    """
    Represents an IPC packet.
    """

    __slots__ = "opcode", "data"

    def __init__(self, opcode: IPCOpcode, data: Any = None):
        """
        :param opcode: The :class:`.IPCOpcode` for this packet.
        :param data: The JSON-serializable data enclosed in this packet, or None for no payload.
        """
        self.opcode = IPCOpcode(opcode)
        self.data = data

    def __repr__(self) -> str:
        return "<IPCPacket opcode={} data={!r}>".format(self.opcode.name, self.data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, IPCPacket):
            return NotImplemented

        return self.opcode == other.opcode and self.data == other.data

    @staticmethod
    def _pack_json(data: Any) -> bytes:
        """
        Packs JSON in a compact representation.

        :param data: The data to pack.
        """
        if data is None:
            return b""

        return json.dumps(data, indent=None, separators=(',', ':')).encode("utf-8")

    # properties
    @property
    def cmd(self) -> Optional[str]:
        """
        Gets the command for this packet.
        """
        if not isinstance(self.data, dict):
            return None

        return self.data.get("cmd")

    @property
    def nonce(self) -> Optional[str]:
        """
        Gets the nonce for this packet.
        """
        if not isinstance(self.data, dict):
            return None

        return self.data.get("nonce")

    def serialize(self) -> bytes:
        """
        Serializes this packet into a series of bytes.
        """
        body = self._pack_json(self.data)
        return HEADER.pack(self.opcode, len(body)) + body

    @staticmethod
    def unpack_header(data: bytes) -> Tuple[int, int]:
        """
        Unpacks the opcode and declared payload length from the first 8 bytes of ``data``.
        """
        if len(data) < HEADER_SIZE:
            raise MalformedFrameError(
                "Header too short: got {} of {} bytes".format(len(data), HEADER_SIZE)
            )

        return HEADER.unpack_from(data)

    @classmethod
    def deserialize(cls, data: bytes) -> 'Optional[IPCPacket]':
        """
        Deserializes exactly one full packet.

        Empty input means that nothing has arrived yet, and returns None.

        :param data: The raw bytes, header included.
        :raises MalformedFrameError: If the bytes do not make up exactly one valid packet.
        """
        if not data:
            return None

        opcode, length = cls.unpack_header(data)

        if len(data) != HEADER_SIZE + length:
            raise MalformedFrameError(
                "Declared length {} does not match payload length {}"
                .format(length, len(data) - HEADER_SIZE)
            )

        try:
            opcode = IPCOpcode(opcode)
        except ValueError:
            raise MalformedFrameError("Unknown opcode {}".format(opcode)) from None

        body = bytes(data[HEADER_SIZE:])
        if not body:
            return IPCPacket(opcode)

        try:
            parsed = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedFrameError("Invalid payload: {}".format(e)) from e

        return IPCPacket(opcode, parsed)


def encode(opcode: IPCOpcode, data: Any = None) -> bytes:
    """
    Encodes an opcode and optional payload into wire bytes.
    """
    return IPCPacket(opcode, data).serialize()


def decode(data: bytes) -> Optional[IPCPacket]:
    """
    Decodes wire bytes holding exactly one packet. See :meth:`.IPCPacket.deserialize`.
    """
    return IPCPacket.deserialize(data)


class PacketBuffer(object):
    """
    Accumulates raw bytes read off a stream and cuts complete packets from them.

    Partial packets are kept until the rest of their bytes arrive, and any number of packets can
    be produced by one :meth:`feed`.
    """

    def __init__(self, max_payload_size: int = MAX_PAYLOAD_SIZE):
        self.max_payload_size = max_payload_size

        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """
        :return: The number of buffered bytes that are not yet part of a complete packet.
        """
        return len(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()

    def feed(self, data: bytes) -> 'Tuple[List[IPCPacket], List[MalformedFrameError]]':
        """
        Feeds some bytes into this buffer.

        :param data: The bytes just read.
        :return: A tuple of (packets, errors) for every complete frame found, in stream order.
        """
        self._buffer.extend(data)
        packets = []
        errors = []

        while len(self._buffer) >= HEADER_SIZE:
            _, length = HEADER.unpack_from(self._buffer)

            # a bad length field can't be recovered from, there's no way to find the next header
            if length > self.max_payload_size:
                errors.append(MalformedFrameError(
                    "Declared length {} exceeds maximum of {}".format(length, self.max_payload_size)
                ))
                self._buffer.clear()
                break

            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                break

            frame = bytes(self._buffer[:end])
            del self._buffer[:end]

            try:
                packets.append(IPCPacket.deserialize(frame))
            except MalformedFrameError as e:
                errors.append(e)

        return packets, errors
