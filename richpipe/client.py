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
The client for a Rich Presence IPC connection.

.. currentmodule:: richpipe.client
"""
import logging
import os
from typing import Any, Optional, Union

import trio

from richpipe.dataclasses.presence import RichPresence
from richpipe.event import Close, Debug, EventChannel, Message
from richpipe.exc import HandshakeTimeoutError, IPCError
from richpipe.ipc.locator import LocatorConfig
from richpipe.ipc.packet import IPCOpcode
from richpipe.ipc.transport import IPCTransport
from richpipe.util import get_nonce

logger = logging.getLogger("richpipe.client")


class Client(object):
    """
    Represents an IPC (interprocess communication) client. This connects to the Discord client on
    the IPC socket.

    To use, create a new instance with your app's client ID:

    .. code-block:: python3

        client = Client(323578534763298816)

        @client.events.on("ready")
        def ready(data):
            print("Logged in as", data["user"]["username"])

    Make sure to log in before doing anything with it:

    .. code-block:: python3

        async with trio.open_nursery() as nursery:
            await client.login(nursery)
            await client.set_activity(RichPresence(state="Testing"))
            ...
            await client.destroy()

    """

    def __init__(self, client_id: Union[int, str], *,
                 config: LocatorConfig = None,
                 ready_timeout: float = 10.0,
                 **transport_kwargs):
        """
        :param client_id: The client ID to authenticate with.
        :param config: The :class:`.LocatorConfig` used to find the IPC socket.
        :param ready_timeout: How long to wait for the READY event after the handshake.
        :param transport_kwargs: Extra keyword arguments for the :class:`.IPCTransport`.
        """
        self.client_id = str(client_id)
        self.ready_timeout = ready_timeout

        #: The :class:`.EventChannel` for client events. Topics are ``ready``, ``close``,
        #: ``debug``, and the name of any other event the peer dispatches.
        self.events = EventChannel()

        #: The underlying :class:`.IPCTransport`.
        self.transport = IPCTransport(client_id, config=config, **transport_kwargs)
        self.transport.events.subscribe(Message, self._handle_message)
        self.transport.events.subscribe(Close, self._handle_close)
        self.transport.events.subscribe(Debug, self._handle_debug)

        #: The user the peer is logged in as. Only available once ready.
        self.user: Optional[dict] = None

        self._ready = False
        self._login_done = trio.Event()
        self._login_error: Optional[Exception] = None

    @property
    def is_ready(self) -> bool:
        """
        :return: If the peer has acknowledged the handshake.
        """
        return self._ready and self.transport.is_connected

    # transport handlers
    def _handle_message(self, notification: Message) -> None:
        message = notification.data
        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message {message!r}")
            return

        cmd, evt = message.get("cmd"), message.get("evt")
        data = message.get("data")

        if cmd == "DISPATCH" and evt == "READY":
            self._ready = True
            if isinstance(data, dict):
                self.user = data.get("user")

            self._login_done.set()
            logger.info("Received READY from the IPC socket")
            self.events.emit("ready", data)
            return

        if evt == "ERROR":
            logger.error(f"Command {cmd} failed: {data}")

        # command responses have no event, so fall back to their command
        name = evt or cmd
        if not isinstance(name, str):
            logger.warning(f"Ignoring message with no event or command name {message!r}")
            return

        self.events.emit(name, data)

    def _handle_close(self, notification: Close) -> None:
        self._ready = False
        if not self._login_done.is_set():
            self._login_error = IPCError.from_payload(notification.reason)
            self._login_done.set()

        self.events.emit("close", notification.reason)

    def _handle_debug(self, notification: Debug) -> None:
        self.events.emit("debug", notification.text, notification.data)

    # connection
    async def login(self, nursery: trio.Nursery) -> None:
        """
        Connects to the IPC socket and waits for the peer to become ready.

        :param nursery: The nursery to run the transport's read loop in.
        :raises ConnectionNotFoundError: If the IPC socket could not be found.
        :raises HandshakeTimeoutError: If the peer never sent a READY.
        :raises IPCError: If the peer closed the connection instead.
        """
        self._ready = False
        self._login_done = trio.Event()
        self._login_error = None

        await self.transport.connect(nursery)

        with trio.move_on_after(self.ready_timeout) as scope:
            await self._login_done.wait()

        if scope.cancelled_caught:
            await self.transport.close()
            raise HandshakeTimeoutError(
                "Did not receive READY within {} seconds".format(self.ready_timeout)
            )

        if self._login_error is not None:
            raise self._login_error

    async def destroy(self) -> None:
        """
        Closes the connection to the IPC socket.
        """
        await self.transport.close()

    # commands
    async def request(self, cmd: str, args: Any = None) -> str:
        """
        Sends a command frame.

        :param cmd: The command name.
        :param args: The arguments for the command.
        :return: The nonce of the command, which the response carries too.
        :raises WriteWithoutConnectionError: If not connected.
        """
        nonce = get_nonce()
        data = {
            "cmd": cmd,
            "args": args,
            "nonce": nonce
        }
        await self.transport.send(IPCOpcode.FRAME, data, strict=True)
        return nonce

    async def set_activity(self, activity: Union[RichPresence, dict], pid: int = None) -> str:
        """
        Sets the Rich Presence activity.

        :param activity: A :class:`.RichPresence`, or a dict of its fields.
        :param pid: The process ID the activity belongs to. Defaults to this process.
        """
        if not isinstance(activity, RichPresence):
            activity = RichPresence(**activity)

        args = {
            "pid": pid if pid is not None else os.getpid(),
            "activity": activity.to_dict()
        }
        return await self.request("SET_ACTIVITY", args)

    async def clear_activity(self, pid: int = None) -> str:
        """
        Clears the Rich Presence activity.

        :param pid: The process ID the activity belongs to. Defaults to this process.
        """
        args = {
            "pid": pid if pid is not None else os.getpid()
        }
        return await self.request("CLEAR_ACTIVITY", args)
