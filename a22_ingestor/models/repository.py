"""Repository helpers for traffic persistence models."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from functools import wraps
from typing import Any, TypeVar

from sqlalchemy import BigInteger, bindparam, case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import StorageError
from ..schemas.records import Station, TransitEvent
from .tables import (
    GhostStationRecord,
    StationDetailRecord,
    StationRecord,
    TrafficEventRecord,
    WebserviceRecord,
)

_T = TypeVar("_T")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _storage_errors(func_: Callable[..., _T]) -> Callable[..., _T]:
    """Re-raise SQLAlchemy failures as :class:`StorageError`."""

    @wraps(func_)
    def wrapper(*args: Any, **kwargs: Any) -> _T:
        try:
            return func_(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StorageError(f"{func_.__name__} failed: {exc}") from exc

    return wrapper


class TrafficRepository:
    """Data access helpers for stations, transit events and ghost stations."""

    def __init__(self, session: Session):
        """Store the SQLAlchemy session used for persistence operations."""

        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def _insert(self, model: type[Any]) -> Any:
        dialect = self._session.get_bind().dialect.name
        try:
            factory = _DIALECT_INSERTS[dialect]
        except KeyError as exc:
            raise StorageError(f"unsupported database dialect '{dialect}'") from exc
        return factory(model.__table__)

    @_storage_errors
    def upsert_stations(self, stations: Sequence[Station]) -> int:
        """Create or refresh catalog rows and their raw metadata.

        Name and geometry are overwritten; the observed time bounds of an
        existing station are left untouched.
        """

        if not stations:
            return 0

        station_rows = [
            {"code": station.code, "name": station.name, "geo": station.geo}
            for station in stations
        ]
        station_stmt = self._insert(StationRecord)
        station_stmt = station_stmt.on_conflict_do_update(
            index_elements=["code"],
            set_={"name": station_stmt.excluded.name, "geo": station_stmt.excluded.geo},
        )
        self._session.execute(station_stmt, station_rows)

        detail_rows = [{"code": station.code, "data": station.raw_metadata} for station in stations]
        detail_stmt = self._insert(StationDetailRecord)
        detail_stmt = detail_stmt.on_conflict_do_update(
            index_elements=["code"],
            set_={"data": detail_stmt.excluded.data},
        )
        self._session.execute(detail_stmt, detail_rows)
        return len(station_rows)

    @_storage_errors
    def insert_events(self, events: Iterable[TransitEvent]) -> int:
        """Insert transit events, ignoring rows whose natural key already exists.

        Returns the number of rows actually inserted.
        """

        rows = [event.as_row() for event in events]
        if not rows:
            return 0
        stmt = (
            self._insert(TrafficEventRecord)
            .on_conflict_do_nothing(index_elements=["stationcode", "timestamp"])
            .returning(TrafficEventRecord.__table__.c.stationcode)
        )
        return len(self._session.execute(stmt, rows).all())

    @_storage_errors
    def max_timestamp(self, codes: Iterable[str], cutoff: int) -> int | None:
        """Return the newest event timestamp strictly after ``cutoff`` for ``codes``."""

        code_list = sorted(set(codes))
        if not code_list:
            return None
        stmt = select(func.max(TrafficEventRecord.timestamp)).where(
            TrafficEventRecord.stationcode.in_(code_list),
            TrafficEventRecord.timestamp > cutoff,
        )
        value = self._session.execute(stmt).scalar_one_or_none()
        return int(value) if value is not None else None

    @_storage_errors
    def station_codes(self) -> set[str]:
        return set(self._session.execute(select(StationRecord.code)).scalars())

    @_storage_errors
    def active_ghost_codes(self) -> set[str]:
        """Return ghost station codes that are still absent from the catalog."""

        stmt = select(GhostStationRecord.code).where(
            GhostStationRecord.code.not_in(select(StationRecord.code))
        )
        return set(self._session.execute(stmt).scalars())

    @_storage_errors
    def add_ghosts(self, codes: Iterable[str]) -> list[str]:
        """Record ghost stations that are not yet known and return the new ones."""

        candidates = sorted(set(codes))
        if not candidates:
            return []
        existing = set(
            self._session.execute(
                select(GhostStationRecord.code).where(GhostStationRecord.code.in_(candidates))
            ).scalars()
        )
        fresh = [code for code in candidates if code not in existing]
        if fresh:
            stmt = self._insert(GhostStationRecord).on_conflict_do_nothing(
                index_elements=["code"],
            )
            self._session.execute(stmt, [{"code": code} for code in fresh])
        return fresh

    @_storage_errors
    def widen_bounds(self, bounds: Mapping[str, tuple[int, int]]) -> int:
        """Extend the stored ``[min, max]`` of each station, never shrinking it.

        Codes without a catalog row are ignored.
        """

        if not bounds:
            return 0

        table = StationRecord.__table__
        new_min = bindparam("b_min", type_=BigInteger)
        new_max = bindparam("b_max", type_=BigInteger)
        stmt = (
            update(table)
            .where(table.c.code == bindparam("b_code"))
            .values(
                min_timestamp=case(
                    (or_(table.c.min_timestamp.is_(None), table.c.min_timestamp > new_min), new_min),
                    else_=table.c.min_timestamp,
                ),
                max_timestamp=case(
                    (or_(table.c.max_timestamp.is_(None), table.c.max_timestamp < new_max), new_max),
                    else_=table.c.max_timestamp,
                ),
            )
        )
        params = [
            {"b_code": code, "b_min": low, "b_max": high}
            for code, (low, high) in sorted(bounds.items())
        ]
        self._session.execute(stmt, params)
        return len(params)

    @_storage_errors
    def station_bounds(self, code: str) -> tuple[int | None, int | None] | None:
        record = self._session.get(StationRecord, code)
        if record is None:
            return None
        return record.min_timestamp, record.max_timestamp

    @_storage_errors
    def webservice_credentials(self) -> WebserviceRecord | None:
        """Return the web service endpoint row kept in the database, if any."""

        return self._session.get(WebserviceRecord, 1)
