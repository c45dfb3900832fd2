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
Notifications and the channel they are published on.

.. currentmodule:: richpipe.event
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Union

from multidict import MultiDict

logger = logging.getLogger("richpipe.events")


@dataclass(frozen=True)
class Notification:
    """
    The base class for a notification published by a transport.
    """

    #: The topic this notification is published under.
    topic: ClassVar[str] = ""


@dataclass(frozen=True)
class Open(Notification):
    """
    Published when a connection to the IPC socket is established, before the handshake is sent.
    """

    topic: ClassVar[str] = "open"


@dataclass(frozen=True)
class Message(Notification):
    """
    Published for every FRAME packet received.
    """

    topic: ClassVar[str] = "message"

    #: The parsed payload of the frame.
    data: Any = None


@dataclass(frozen=True)
class Close(Notification):
    """
    Published once when a connection ends, for any reason.
    """

    topic: ClassVar[str] = "close"

    #: The close reason. Usually a dict of ``{"code": int, "message": str}``.
    reason: Any = None

    @property
    def code(self) -> int:
        if isinstance(self.reason, dict):
            return self.reason.get("code", 0)

        return 0

    @property
    def message(self) -> str:
        if isinstance(self.reason, dict):
            return self.reason.get("message", "")

        return str(self.reason)


@dataclass(frozen=True)
class Ping(Notification):
    """
    Published after a PING has been answered.
    """

    topic: ClassVar[str] = "ping"


@dataclass(frozen=True)
class Debug(Notification):
    """
    A diagnostic about wire traffic.
    """

    topic: ClassVar[str] = "debug"

    #: The diagnostic text.
    text: str = ""

    #: Any data attached to this diagnostic.
    data: Any = None


TopicType = Union[str, type]


def _topic_name(topic: TopicType) -> str:
    if isinstance(topic, type) and issubclass(topic, Notification):
        return topic.topic

    return topic


class EventChannel(object):
    """
    A minimal publish/subscribe channel.

    Handlers are called synchronously, in the order they were subscribed. Exceptions raised by a
    handler propagate to the publisher.

    .. code-block:: python3

        channel = EventChannel()

        @channel.on(Message)
        def got_message(notification: Message):
            print(notification.data)

    """

    def __init__(self):
        #: A MultiDict of topic name -> handler.
        self.listeners = MultiDict()

    def subscribe(self, topic: TopicType, handler: Callable[..., Any]) -> None:
        """
        Subscribes a handler to a topic.

        :param topic: The topic name, or a :class:`.Notification` subclass.
        :param handler: The callable to invoke.
        """
        name = _topic_name(topic)
        logger.debug("Registered handler `%s` for topic `%s`", handler, name)
        self.listeners.add(name, handler)

    def on(self, topic: TopicType):
        """
        A decorator form of :meth:`.subscribe`.
        """

        def __innr(f):
            self.subscribe(topic, f)
            return f

        return __innr

    def handlers(self, topic: TopicType) -> list:
        """
        :return: The handlers registered for a topic, in call order.
        """
        return self.listeners.getall(_topic_name(topic), [])

    def publish(self, notification: Notification) -> None:
        """
        Publishes a notification to every handler for its topic.
        """
        for handler in self.handlers(notification.topic):
            handler(notification)

    def emit(self, topic: str, *args) -> None:
        """
        Calls every handler for an untyped topic with arbitrary arguments.
        """
        for handler in self.handlers(topic):
            handler(*args)
