"""SQLAlchemy model definitions for A22 traffic persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StationRecord(Base):
    """Catalog entry of one detector channel, with its observed time bounds."""

    __tablename__ = "station"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    geo: Mapped[str | None] = mapped_column(String(64), nullable=True)
    min_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    max_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<StationRecord code={self.code} "
            f"bounds=({self.min_timestamp}, {self.max_timestamp})>"
        )


class StationDetailRecord(Base):
    """Raw vendor metadata of a station, serialised with sorted keys."""

    __tablename__ = "station_detail"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)


class TrafficEventRecord(Base):
    """One vehicle transit, keyed by station and second."""

    __tablename__ = "traffic_event"
    __table_args__ = (Index("ix_traffic_event_timestamp", "timestamp"),)

    stationcode: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    distance: Mapped[float] = mapped_column(Float, nullable=False)
    headway: Mapped[float] = mapped_column(Float, nullable=False)
    length: Mapped[float] = mapped_column(Float, nullable=False)
    axles: Mapped[int] = mapped_column(Integer, nullable=False)
    against_traffic: Mapped[bool] = mapped_column(Boolean, nullable=False)
    vehicle_class: Mapped[int] = mapped_column(Integer, nullable=False)
    speed: Mapped[float] = mapped_column(Float, nullable=False)
    direction: Mapped[int] = mapped_column(Integer, nullable=False)
    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    license_plate_initials: Mapped[str | None] = mapped_column(String(16), nullable=True)

    def __repr__(self) -> str:
        return f"<TrafficEventRecord {self.stationcode}@{self.timestamp}>"


class GhostStationRecord(Base):
    """Station code seen in transit events but missing from the catalog."""

    __tablename__ = "ghost_station"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class WebserviceRecord(Base):
    """Web service endpoint and credentials kept in the database."""

    __tablename__ = "webservice"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    url: Mapped[str] = mapped_column(String(512), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
