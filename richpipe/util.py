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
Misc utilities shared throughout the library.

.. currentmodule:: richpipe.util
"""
import datetime
import uuid
from typing import Union


def get_nonce() -> str:
    """
    Gets a random nonce.
    """
    return str(uuid.uuid4())


def hexdump(data: bytes) -> str:
    """
    Formats bytes as space separated upper case hex pairs, e.g. ``01 00 0A``.
    """
    return data.hex(" ").upper()


def to_epoch_ms(value: Union[int, float, datetime.datetime]) -> int:
    """
    Converts a timestamp to integer milliseconds since the epoch.

    Plain numbers are assumed to already be milliseconds.

    :param value: The int, float or :class:`datetime.datetime` to convert.
    """
    if isinstance(value, datetime.datetime):
        return int(value.timestamp() * 1000)

    return int(value)
