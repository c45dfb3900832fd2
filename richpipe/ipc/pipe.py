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
A trio stream over a Windows named pipe.

.. currentmodule:: richpipe.ipc.pipe
"""
import sys

import trio

DEFAULT_RECEIVE_SIZE = 65536


class NamedPipeStream(trio.abc.Stream):
    """
    Wraps an overlapped Windows named pipe handle, registered with trio's IOCP.
    """

    def __init__(self, handle: int):
        self._handle = handle
        self._closed = False

        self._send_lock = trio.StrictFIFOLock()

        trio.lowlevel.register_with_iocp(handle)

    async def send_all(self, data: bytes) -> None:
        if self._closed:
            raise trio.ClosedResourceError("this pipe was already closed")

        async with self._send_lock:
            view = memoryview(data)
            total = 0
            while total < len(view):
                try:
                    total += await trio.lowlevel.write_overlapped(self._handle, view[total:])
                except BrokenPipeError as e:
                    raise trio.BrokenResourceError from e

    async def wait_send_all_might_not_block(self) -> None:
        await trio.lowlevel.checkpoint()

    async def receive_some(self, max_bytes: int = None) -> bytes:
        if self._closed:
            raise trio.ClosedResourceError("this pipe was already closed")

        if max_bytes is None:
            max_bytes = DEFAULT_RECEIVE_SIZE

        buffer = bytearray(max_bytes)
        try:
            size = await trio.lowlevel.readinto_overlapped(self._handle, buffer)
        except BrokenPipeError:
            # the other end hung up, which is just end of file for us
            if self._closed:
                raise trio.ClosedResourceError("this pipe was closed") from None

            return b""

        return bytes(buffer[:size])

    async def aclose(self) -> None:
        if not self._closed:
            import _winapi

            self._closed = True
            trio.lowlevel.notify_closing(self._handle)
            _winapi.CloseHandle(self._handle)

        await trio.lowlevel.checkpoint()


async def open_named_pipe(path: str) -> NamedPipeStream:
    """
    Opens a Windows named pipe for overlapped reading and writing.

    :param path: The pipe path, e.g. ``\\\\?\\pipe\\discord-ipc-0``.
    :raises OSError: If the pipe doesn't exist or is busy.
    """
    if sys.platform != "win32":
        raise OSError("Named pipes are only available on Windows")

    import _winapi

    handle = _winapi.CreateFile(
        path,
        _winapi.GENERIC_READ | _winapi.GENERIC_WRITE,
        0,
        _winapi.NULL,
        _winapi.OPEN_EXISTING,
        _winapi.FILE_FLAG_OVERLAPPED,
        _winapi.NULL,
    )
    await trio.lowlevel.checkpoint()
    return NamedPipeStream(handle)
