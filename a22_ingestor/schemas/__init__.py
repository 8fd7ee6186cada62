"""Schemas package initialization."""
from .records import FetchResult, Station, TransitEvent

__all__ = [
    "FetchResult",
    "Station",
    "TransitEvent",
]
