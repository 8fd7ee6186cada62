"""Pydantic schemas for stations, transit events and fetch results."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..client.codec import group_of


class Station(BaseModel):
    """A detector channel as listed in the web service catalog."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Natural key <prefix>:<group>:<channel>")
    name: str = Field(..., description="Group description plus lane/direction text")
    latitude: float | None = Field(None, description="WGS84 latitude of the group")
    longitude: float | None = Field(None, description="WGS84 longitude of the group")
    raw_metadata: str = Field("{}", description="All vendor fields as sorted-key JSON")

    @property
    def group_id(self) -> str:
        """Detector group (coil) id this channel belongs to."""

        return group_of(self.code)

    @property
    def geo(self) -> str:
        """Point projection stored as ``lat,long``."""

        return f"{self.latitude},{self.longitude}"


class TransitEvent(BaseModel):
    """One vehicle passing one detector channel."""

    model_config = ConfigDict(frozen=True)

    stationcode: str
    timestamp: int = Field(..., description="UTC Unix seconds")
    distance: float
    headway: float
    length: float
    axles: int
    against_traffic: bool
    vehicle_class: int
    speed: float
    direction: int
    country: str | None = None
    license_plate_initials: str | None = None

    @field_validator("license_plate_initials", mode="before")
    @classmethod
    def _empty_plate_is_null(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @property
    def group_id(self) -> str:
        return group_of(self.stationcode)

    def as_row(self) -> dict[str, Any]:
        """Return the column mapping used by the traffic event table."""

        return {
            "stationcode": self.stationcode,
            "timestamp": self.timestamp,
            "distance": self.distance,
            "headway": self.headway,
            "length": self.length,
            "axles": self.axles,
            "against_traffic": self.against_traffic,
            "vehicle_class": self.vehicle_class,
            "speed": self.speed,
            "direction": self.direction,
            "country": self.country,
            "license_plate_initials": self.license_plate_initials,
        }


@dataclass(slots=True)
class FetchResult:
    """Transit events returned by one fetch plus its per-call observations."""

    events: list[TransitEvent] = field(default_factory=list)
    status_counts: Counter[int] = field(default_factory=Counter)
    skipped_groups: dict[str, str] = field(default_factory=dict)

    def __iter__(self) -> Iterator[TransitEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)

    def station_codes(self) -> set[str]:
        """Return the distinct station codes present in the events."""

        return {event.stationcode for event in self.events}
