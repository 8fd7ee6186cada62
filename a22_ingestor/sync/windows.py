"""Historical window validation for bulk loads."""

from __future__ import annotations

from calendar import timegm
from typing import Final, NamedTuple

from ..exceptions import InvalidWindowError

MIN_YEAR: Final[int] = 1990
MAX_YEAR: Final[int] = 2100
MIN_TIMESTAMP: Final[int] = 631152000  # 1990-01-01T00:00:00Z
MAX_TIMESTAMP: Final[int] = 4102444800  # 2100-01-01T00:00:00Z


class SyncWindow(NamedTuple):
    """Inclusive ``[start, end]`` range of Unix seconds to load."""

    start: int
    end: int

    @property
    def span(self) -> int:
        return self.end - self.start


def month_window(year: int, month: int) -> SyncWindow:
    """Return the UTC boundaries of a calendar month.

    ``end`` is the first second of the following month.

    Raises:
        InvalidWindowError: If the year lies outside 1990..2100 or the
            month outside 1..12.
    """

    if not MIN_YEAR <= year <= MAX_YEAR or not 1 <= month <= 12:
        raise InvalidWindowError(f"invalid month {year}-{month:02d}")

    start = timegm((year, month, 1, 0, 0, 0))
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    end = timegm((next_year, next_month, 1, 0, 0, 0))
    return SyncWindow(start, end)


def interval_window(start: int, end: int) -> SyncWindow:
    """Validate an explicit timestamp interval."""

    if start < MIN_TIMESTAMP or end > MAX_TIMESTAMP or start > end:
        raise InvalidWindowError(f"invalid interval {start}..{end}")
    return SyncWindow(start, end)
