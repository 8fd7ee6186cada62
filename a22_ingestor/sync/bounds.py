"""Per-station observed time bounds and their widen-only persistence."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from ..models.repository import TrafficRepository
from ..schemas.records import TransitEvent

BoundsMap = dict[str, tuple[int, int]]


def observe(bounds: BoundsMap, events: Iterable[TransitEvent]) -> BoundsMap:
    """Fold event timestamps into ``bounds`` in place and return it."""

    for event in events:
        current = bounds.get(event.stationcode)
        if current is None:
            bounds[event.stationcode] = (event.timestamp, event.timestamp)
        else:
            low, high = current
            bounds[event.stationcode] = (min(low, event.timestamp), max(high, event.timestamp))
    return bounds


def merge_bounds(*maps: Mapping[str, tuple[int, int]]) -> BoundsMap:
    """Merge several bounds maps, keeping the overall min and max per station.

    The result does not depend on the order of ``maps``, and merging a map
    with itself returns the same bounds.
    """

    merged: BoundsMap = {}
    for bounds in maps:
        for code, (low, high) in bounds.items():
            current = merged.get(code)
            if current is None:
                merged[code] = (low, high)
            else:
                merged[code] = (min(current[0], low), max(current[1], high))
    return merged


def apply_bounds(repository: TrafficRepository, bounds: Mapping[str, tuple[int, int]]) -> int:
    """Persist ``bounds`` through the repository's widen-only update."""

    return repository.widen_bounds(bounds)
