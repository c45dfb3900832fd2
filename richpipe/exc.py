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
Exceptions raised from within the library.

.. currentmodule:: richpipe.exc
"""
from typing import List


class RichPipeError(Exception):
    """
    The base class for all richpipe exceptions.
    """


class ConnectionNotFoundError(RichPipeError, ConnectionError):
    """
    Raised when no IPC socket candidate could be connected to.
    """

    def __init__(self, attempted: List[str]):
        #: The list of paths that were tried, in order.
        self.attempted = attempted

        super().__init__(attempted)

    def __str__(self) -> str:
        if not self.attempted:
            return "Could not connect: no IPC socket candidates exist on this platform"

        return "Could not connect to any of {} IPC socket(s): {}".format(
            len(self.attempted), ", ".join(self.attempted)
        )

    __repr__ = __str__


class MalformedFrameError(RichPipeError, ValueError):
    """
    Raised when a frame's header, length or payload is invalid.
    """


class WriteWithoutConnectionError(RichPipeError, ConnectionError):
    """
    Raised when a strict write is attempted with no live connection.
    """


class HandshakeTimeoutError(RichPipeError, TimeoutError):
    """
    Raised when the peer does not send a READY event in time after the handshake.
    """


class IPCError(RichPipeError):
    """
    Represents an error reported by the peer over the IPC protocol.
    """

    def __init__(self, code: int, message: str):
        #: The error code sent by the peer.
        self.code = code

        #: The error message sent by the peer.
        self.message = message

        super().__init__(code, message)

    @classmethod
    def from_payload(cls, payload) -> 'IPCError':
        """
        Creates a new :class:`.IPCError` from an error or close payload.
        """
        if not isinstance(payload, dict):
            return cls(0, str(payload))

        return cls(payload.get("code", 0), payload.get("message", ""))

    def __str__(self) -> str:
        return "IPC error {}: {}".format(self.code, self.message)

    __repr__ = __str__
