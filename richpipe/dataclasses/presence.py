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
Wrappers for Rich Presence activities.

.. currentmodule:: richpipe.dataclasses.presence
"""

import enum
from typing import List

from richpipe.util import to_epoch_ms

ASSET_KEYS = ('large_image', 'large_text', 'small_image', 'small_text')
TIMESTAMP_KEYS = ('start', 'end')

MAX_BUTTONS = 2

FIELDS = ("state", "details", "type", "timestamps", "assets", "buttons")


class ActivityType(enum.IntEnum):
    """
    Represents an activity's type.
    """
    #: Shows the ``Playing`` text.
    PLAYING = 0

    #: Shows the ``Listening to`` text.
    LISTENING = 2

    #: Shows the ``Watching`` text.
    WATCHING = 3

    #: Shows the ``Competing in`` text.
    COMPETING = 5


def _make_property(field: str, doc: str = None, max_size: int = None) -> property:
    def _getter(self):
        return self._rich_fields.get(field)

    def _setter(self, value: str):
        if value is not None and max_size is not None and len(value) > max_size:
            raise ValueError("Field '{}' cannot be longer than {} characters"
                             .format(field, max_size))

        self._rich_fields[field] = value

    prop = property(_getter, _setter, doc=doc)
    return prop


class RichPresence(object):
    """
    Represents a Rich Presence. This class can be created safely for usage with :class:`.Client`.

    .. code-block:: python3

        presence = RichPresence(state="In a match", details="Ranked")
        presence.timestamps = {"start": datetime.datetime.now()}
        presence.assets = {"large_image": "map_icon"}

    """

    def __init__(self, **fields):
        """
        :param fields: The rich presence fields.
        """
        self._rich_fields = {}

        for name, value in fields.items():
            if name not in FIELDS:
                raise TypeError("Unknown rich presence field: {}".format(name))

            setattr(self, name, value)

    def __repr__(self) -> str:
        return "<RichPresence {}>".format(self.to_dict())

    state = _make_property("state", "The state for this presence.", 128)
    details = _make_property("details", "The details for this presence.", 128)

    @property
    def type(self) -> ActivityType:
        """
        The :class:`.ActivityType` of this presence.
        """
        return self._rich_fields.get("type", ActivityType.PLAYING)

    @type.setter
    def type(self, value):
        self._rich_fields["type"] = ActivityType(value)

    @property
    def timestamps(self) -> dict:
        """
        The timestamps for this rich presence. A dict of (start, end), either epoch milliseconds
        or :class:`datetime.datetime` objects.
        """
        return self._rich_fields.get("timestamps", {})

    @timestamps.setter
    def timestamps(self, value: dict):
        for key in value.keys():
            if key not in TIMESTAMP_KEYS:
                raise ValueError("Bad timestamp key: {}".format(key))

        self._rich_fields["timestamps"] = value

    @property
    def assets(self) -> dict:
        """
        The assets for this rich presence. Returns a dict of
        (large_image, large_text, small_image, small_text).
        """
        return self._rich_fields.get("assets", {})

    @assets.setter
    def assets(self, value: dict):
        for key in value.keys():
            if key not in ASSET_KEYS:
                raise ValueError("Bad asset key: {}".format(key))

        self._rich_fields["assets"] = value

    @property
    def buttons(self) -> List[dict]:
        """
        The buttons for this rich presence. A list of dicts with a ``label`` and ``url``.
        """
        return self._rich_fields.get("buttons", [])

    @buttons.setter
    def buttons(self, value: List[dict]):
        if len(value) > MAX_BUTTONS:
            raise ValueError("Cannot have more than {} buttons".format(MAX_BUTTONS))

        for button in value:
            if "label" not in button or "url" not in button:
                raise ValueError("Buttons need both a label and a url")

        self._rich_fields["buttons"] = value

    def to_dict(self) -> dict:
        """
        :return: The activity payload for this presence, with any empty fields left out.
        """
        d = {}
        for field in ("state", "details"):
            if self._rich_fields.get(field):
                d[field] = self._rich_fields[field]

        timestamps = {
            key: to_epoch_ms(value) for key, value in self.timestamps.items() if value
        }
        if timestamps:
            d["timestamps"] = timestamps

        assets = {key: value for key, value in self.assets.items() if value}
        if assets:
            d["assets"] = assets

        if self.buttons:
            d["buttons"] = [
                {"label": button["label"], "url": button["url"]} for button in self.buttons
            ]

        if "type" in self._rich_fields:
            d["type"] = int(self.type)

        return d
