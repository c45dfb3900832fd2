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
Finds the IPC socket of the running desktop client.

The candidates are tried in a fixed order, so that the same set of reachable sockets always
produces the same connection.

.. currentmodule:: richpipe.ipc.locator
"""
import logging
import os
import posixpath
import sys
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Iterator, Mapping

import trio

from richpipe.exc import ConnectionNotFoundError
from richpipe.ipc.pipe import open_named_pipe

logger = logging.getLogger("richpipe.ipc.locator")

#: The slots each candidate is tried with.
SLOT_COUNT = 10

#: The environment variables checked for a runtime directory, in order.
RUNTIME_DIR_VARIABLES = ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP")

Opener = Callable[[str], Awaitable[trio.abc.Stream]]


@dataclass(frozen=True)
class LocatorConfig:
    """
    The inputs used to find the IPC socket.
    """

    #: The platform, as a :data:`sys.platform` value.
    platform: str

    #: The environment variables to resolve the runtime directory from.
    environ: Mapping[str, str] = field(default_factory=dict)

    #: The runtime directory used when none of the environment variables are set.
    default_tmp: str = "/tmp"

    #: How long a single connection attempt may take, in seconds.
    attempt_timeout: float = 2.0

    @classmethod
    def from_environment(cls, **kwargs) -> 'LocatorConfig':
        """
        Creates a new config from the current process' platform and environment.
        """
        return cls(platform=sys.platform, environ=dict(os.environ), **kwargs)

    @property
    def is_windows(self) -> bool:
        return self.platform == "win32"


def runtime_dir(config: LocatorConfig) -> str:
    """
    Resolves the runtime directory that the IPC sockets live in.
    """
    for variable in RUNTIME_DIR_VARIABLES:
        value = config.environ.get(variable)
        if value:
            break
    else:
        value = config.default_tmp

    return os.path.realpath(value)


@dataclass(frozen=True)
class SocketCandidate:
    """
    A rule that produces a socket path for a slot.
    """

    #: A short name for this candidate, used in logging.
    name: str

    #: The platforms this candidate applies to.
    platforms: FrozenSet[str]

    #: Produces the path for a slot.
    format: Callable[[LocatorConfig, int], str]

    def applies_to(self, config: LocatorConfig) -> bool:
        return config.platform in self.platforms

    def path(self, config: LocatorConfig, slot: int) -> str:
        return self.format(config, slot)


def _under_runtime_dir(*parts: str) -> Callable[[LocatorConfig, int], str]:
    def _format(config: LocatorConfig, slot: int) -> str:
        return posixpath.join(runtime_dir(config), *parts, f"discord-ipc-{slot}")

    return _format


CANDIDATES = (
    SocketCandidate(
        name="windows",
        platforms=frozenset({"win32"}),
        format=lambda config, slot: fr"\\?\pipe\discord-ipc-{slot}",
    ),
    SocketCandidate(
        name="unix",
        platforms=frozenset({"darwin", "linux"}),
        format=_under_runtime_dir(),
    ),
    SocketCandidate(
        name="snap",
        platforms=frozenset({"linux"}),
        format=_under_runtime_dir("snap.discord"),
    ),
    SocketCandidate(
        name="flatpak",
        platforms=frozenset({"linux"}),
        format=_under_runtime_dir("app", "com.discordapp.Discord"),
    ),
)


def iter_candidate_paths(config: LocatorConfig, candidates=CANDIDATES) -> Iterator[str]:
    """
    Yields every socket path worth trying, in priority order.

    Paths in a directory that doesn't exist are skipped, except for Windows pipes.
    """
    for candidate in candidates:
        if not candidate.applies_to(config):
            continue

        for slot in range(SLOT_COUNT):
            path = candidate.path(config, slot)
            if not config.is_windows and not os.path.isdir(posixpath.dirname(path)):
                logger.debug(f"Skipping {candidate.name} candidate {path}, no such directory")
                # every slot of a candidate shares the same directory
                break

            yield path


def default_opener(config: LocatorConfig) -> Opener:
    """
    :return: The function used to open a candidate path on this platform.
    """
    if config.is_windows:
        return open_named_pipe

    return trio.open_unix_socket


async def locate(config: LocatorConfig = None, *, opener: Opener = None,
                 candidates=CANDIDATES) -> trio.abc.Stream:
    """
    Connects to the first reachable IPC socket.

    :param config: The :class:`.LocatorConfig` to use. Defaults to the current environment.
    :param opener: An async callable that opens a path into a stream.
    :param candidates: The candidate rules to use, in order.
    :raises ConnectionNotFoundError: If every candidate failed.
    """
    if config is None:
        config = LocatorConfig.from_environment()

    if opener is None:
        opener = default_opener(config)

    attempted = []
    for path in iter_candidate_paths(config, candidates):
        attempted.append(path)

        stream = None
        with trio.move_on_after(config.attempt_timeout):
            try:
                stream = await opener(path)
            except OSError as e:
                logger.debug(f"Failed to connect to {path}: {e}")
                continue

        if stream is None:
            logger.debug(f"Timed out connecting to {path}")
            continue

        logger.info(f"Connected to IPC socket at {path}")
        return stream

    raise ConnectionNotFoundError(attempted)
