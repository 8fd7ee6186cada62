"""Tests for the traffic repository against SQLite."""

from __future__ import annotations

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from a22_ingestor.models.base import get_engine, session_scope
from a22_ingestor.models.repository import TrafficRepository
from a22_ingestor.models.tables import (
    GhostStationRecord,
    StationDetailRecord,
    StationRecord,
    TrafficEventRecord,
    WebserviceRecord,
)
from a22_ingestor.schemas.records import Station, TransitEvent


def _station(code: str, name: str = "Bolzano Nord", **kwargs) -> Station:
    return Station(code=code, name=name, latitude=46.5, longitude=11.3, **kwargs)


def _event(code: str, timestamp: int, **kwargs) -> TransitEvent:
    values = {
        "stationcode": code,
        "timestamp": timestamp,
        "distance": 10.0,
        "headway": 1.5,
        "length": 4.0,
        "axles": 2,
        "against_traffic": False,
        "vehicle_class": 1,
        "speed": 90.0,
        "direction": 1,
        "country": "I",
        "license_plate_initials": "AB",
    }
    values.update(kwargs)
    return TransitEvent(**values)


def _count_events(session: Session) -> int:
    return session.execute(select(func.count()).select_from(TrafficEventRecord)).scalar_one()


def test_upsert_stations_overwrites_name_and_metadata() -> None:
    with session_scope() as session:
        TrafficRepository(session).upsert_stations(
            [_station("A22:101:1", raw_metadata='{"a":1}')]
        )

    with session_scope() as session:
        repository = TrafficRepository(session)
        repository.widen_bounds({"A22:101:1": (100, 200)})
        repository.upsert_stations([_station("A22:101:1", name="Renamed", raw_metadata='{"a":2}')])

    with session_scope() as session:
        record = session.get(StationRecord, "A22:101:1")
        assert record.name == "Renamed"
        assert record.geo == "46.5,11.3"
        assert (record.min_timestamp, record.max_timestamp) == (100, 200)
        assert session.get(StationDetailRecord, "A22:101:1").data == '{"a":2}'


def test_insert_events_ignores_existing_natural_keys() -> None:
    events = [_event("A22:101:1", 1000), _event("A22:101:1", 1001), _event("A22:202:1", 1000)]

    with session_scope() as session:
        assert TrafficRepository(session).insert_events(events) == 3
    with session_scope() as session:
        inserted = TrafficRepository(session).insert_events(events + [_event("A22:101:1", 1002)])

    assert inserted == 1

    with session_scope() as session:
        assert _count_events(session) == 4
        stored = session.get(TrafficEventRecord, ("A22:101:1", 1000))
        assert stored.vehicle_class == 1
        assert stored.country == "I"


def test_insert_events_stores_nullable_fields() -> None:
    with session_scope() as session:
        TrafficRepository(session).insert_events(
            [_event("A22:101:1", 1000, country=None, license_plate_initials="")]
        )

    with session_scope() as session:
        stored = session.get(TrafficEventRecord, ("A22:101:1", 1000))
        assert stored.country is None
        assert stored.license_plate_initials is None


def test_max_timestamp_respects_cutoff() -> None:
    with session_scope() as session:
        TrafficRepository(session).insert_events(
            [_event("A22:101:1", 500), _event("A22:101:2", 900), _event("A22:202:1", 2000)]
        )

    with session_scope() as session:
        repository = TrafficRepository(session)
        assert repository.max_timestamp(["A22:101:1", "A22:101:2"], 100) == 900
        assert repository.max_timestamp(["A22:101:1", "A22:101:2"], 900) is None
        assert repository.max_timestamp(["A22:101:1"], 499) == 500
        assert repository.max_timestamp([], 0) is None


def test_ghosts_are_recorded_once_and_hidden_once_catalogued() -> None:
    with session_scope() as session:
        repository = TrafficRepository(session)
        assert repository.add_ghosts(["A22:101:9", "A22:404:1"]) == ["A22:101:9", "A22:404:1"]
        assert repository.add_ghosts(["A22:101:9"]) == []

    with session_scope() as session:
        repository = TrafficRepository(session)
        assert repository.active_ghost_codes() == {"A22:101:9", "A22:404:1"}
        repository.upsert_stations([_station("A22:404:1")])

    with session_scope() as session:
        repository = TrafficRepository(session)
        assert repository.active_ghost_codes() == {"A22:101:9"}
        ghost_rows = session.execute(select(func.count()).select_from(GhostStationRecord)).scalar_one()
        assert ghost_rows == 2


def test_widen_bounds_never_narrows() -> None:
    with session_scope() as session:
        TrafficRepository(session).upsert_stations([_station("A22:101:1"), _station("A22:202:1")])

    updates = [
        {"A22:101:1": (500, 600)},
        {"A22:101:1": (550, 580)},
        {"A22:101:1": (400, 590), "A22:202:1": (10, 20)},
        {"A22:101:1": (450, 700), "A22:999:1": (1, 2)},
    ]
    for bounds in updates:
        with session_scope() as session:
            TrafficRepository(session).widen_bounds(bounds)

    with session_scope() as session:
        repository = TrafficRepository(session)
        assert repository.station_bounds("A22:101:1") == (400, 700)
        assert repository.station_bounds("A22:202:1") == (10, 20)
        assert repository.station_bounds("A22:999:1") is None


def test_widen_bounds_is_idempotent() -> None:
    with session_scope() as session:
        TrafficRepository(session).upsert_stations([_station("A22:101:1")])

    for _ in range(2):
        with session_scope() as session:
            TrafficRepository(session).widen_bounds({"A22:101:1": (100, 200)})

    with session_scope() as session:
        assert TrafficRepository(session).station_bounds("A22:101:1") == (100, 200)


def test_webservice_credentials() -> None:
    with session_scope() as session:
        assert TrafficRepository(session).webservice_credentials() is None
        session.add(
            WebserviceRecord(id=1, url="https://a22.example.test", username="u", password="p")
        )

    with session_scope() as session:
        record = TrafficRepository(session).webservice_credentials()
        assert record is not None
        assert (record.url, record.username, record.password) == ("https://a22.example.test", "u", "p")


@pytest.mark.parametrize("empty", [[], {}])
def test_empty_batches_do_not_touch_the_database(empty) -> None:
    with session_scope() as session:
        repository = TrafficRepository(session)
        assert repository.insert_events(empty) == 0
        assert repository.widen_bounds(empty) == 0
        assert repository.upsert_stations(empty) == 0
        assert repository.add_ghosts(empty) == []


def test_created_schema_indexes_event_timestamps() -> None:
    indexes = {
        index["name"]: index["column_names"]
        for index in inspect(get_engine()).get_indexes("traffic_event")
    }

    assert indexes["ix_traffic_event_timestamp"] == ["timestamp"]
