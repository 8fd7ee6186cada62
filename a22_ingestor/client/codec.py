"""Encoding helpers for the A22 web service wire format.

The service decorates timestamps as ``/Date(<epoch ms><+hhmm>)/``. The
millisecond epoch is already UTC; the offset suffix only reflects the
local wall clock of the detector and must be ignored. Events recorded
around the CET daylight saving switch on 2018-10-28 confirm this::

    /Date(1540688390000+0200)/  ->  2018-10-28 00:59:50 UTC (02:59 CEST)
    /Date(1540688560000+0100)/  ->  2018-10-28 01:02:40 UTC (02:02 CET)
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Final

from ..exceptions import ProtocolError

NOT_AVAILABLE: Final[str] = "n/a"

LANES: Final[dict[str, str]] = {
    "1": "marcia nord",
    "2": "sorpasso nord",
    "3": "marcia sud",
    "4": "sorpasso sud",
    "5": "emergenza nord",
    "6": "emergenza sud",
}

ORIENTATIONS: Final[dict[str, str]] = {
    "1": "sud",
    "2": "nord",
    "3": "entrambe",
    "4": "non definita",
}

_EPOCH_START: Final[int] = len("/Date(")
_EPOCH_END: Final[int] = _EPOCH_START + 10


def format_window_bound(timestamp: int, *, upper: bool = False) -> str:
    """Return the decorated token for a second-granularity window bound.

    Lower bounds start at millisecond 000 and upper bounds end at 999 so
    that ``[from, to]`` is inclusive on both sides.
    """

    millis = "999" if upper else "000"
    return f"/Date({int(timestamp)}{millis}+0000)/"


def parse_decorated_timestamp(token: Any) -> int:
    """Extract the UTC Unix seconds from a decorated timestamp token."""

    if not isinstance(token, str):
        raise ProtocolError("transit event", f"timestamp is not a string: {token!r}")
    epoch = token[_EPOCH_START:_EPOCH_END]
    if len(epoch) != _EPOCH_END - _EPOCH_START or not epoch.isdigit():
        raise ProtocolError("transit event", f"unexpected timestamp token {token!r}")
    return int(epoch)


def lane_description(lane: Any, orientation: Any) -> str:
    """Describe a detector channel from its lane and orientation codes."""

    lane_text = LANES.get(str(lane), NOT_AVAILABLE)
    orientation_text = ORIENTATIONS.get(str(orientation), NOT_AVAILABLE)
    return f"corsia di {lane_text}, direzione {orientation_text}"


def build_station_code(group_id: Any, channel_id: Any, prefix: str = "A22") -> str:
    """Return the natural key ``<prefix>:<group>:<channel>`` of a station."""

    return f"{prefix}:{group_id}:{channel_id}"


def split_station_code(code: str) -> tuple[str, str, str]:
    """Split a station code into ``(prefix, group_id, channel_id)``."""

    parts = code.split(":")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"station code does not have the expected format: {code!r}")
    return parts[0], parts[1], parts[2]


def group_of(code: str) -> str:
    """Return the detector group id embedded in a station code."""

    return split_station_code(code)[1]


def serialize_raw_metadata(document: Mapping[str, Any]) -> str:
    """Serialise vendor metadata deterministically (keys sorted)."""

    return json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)


def mask_token(token: str | None) -> str:
    """Hide the last 12 characters of a session token for logging."""

    if not token:
        return "-"
    if len(token) <= 12:
        return "*" * len(token)
    return token[:-12] + "*" * 12
