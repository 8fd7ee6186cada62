"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest
from sqlalchemy.orm import Session, sessionmaker

from a22_ingestor.client.source_client import SourceClient
from a22_ingestor.models.base import get_session_factory, reset_engine
from a22_ingestor.utils.config import SyncSettings, WebserviceSettings, get_settings

BASE_URL = "https://a22.example.test"


@pytest.fixture(autouse=True)
def _ensure_database_url(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Guarantee A22_DATABASE_URL points at a throwaway SQLite database."""

    if os.getenv("A22_DATABASE_URL") is None:
        db_path = tmp_path_factory.mktemp("sqlite-db") / "traffic.sqlite"
        monkeypatch.setenv("A22_DATABASE_URL", f"sqlite:///{db_path}")

    get_settings(reload=True)
    reset_engine()
    yield
    reset_engine()
    get_settings(reload=True)


def make_event(group: int, sensor: int, timestamp: int, **overrides: Any) -> dict[str, Any]:
    """Build one raw transit event as the web service returns it."""

    entry: dict[str, Any] = {
        "idspira": group,
        "idsensore": sensor,
        "distanza": 12.5,
        "avanzamento": 1.3,
        "velocita": 98.0,
        "lunghezza": 4.2,
        "assi": 2,
        "classe": 1,
        "direzione": 1,
        "data": f"/Date({timestamp}000+0100)/",
        "controsenso": False,
        "nazionalita": 1,
        "targa": "AB",
    }
    entry.update(overrides)
    return entry


class FakeA22Service:
    """In-memory stand-in for the A22 web service."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.issued_tokens: list[str] = []
        self.released_tokens: list[str] = []
        self.event_requests: list[dict[str, Any]] = []
        self.catalog: list[dict[str, Any]] = [
            {
                "idspira": 101,
                "descrizione": "Bolzano Nord",
                "latitudine": 46.51,
                "longitudine": 11.35,
                "sensori": [
                    {"idsensore": 1, "idcorsia": 1, "iddirezione": 2},
                    {"idsensore": 2, "idcorsia": 2, "iddirezione": 2},
                ],
            },
            {
                "idspira": 202,
                "descrizione": "Trento Sud",
                "latitudine": 46.03,
                "longitudine": 11.12,
                "sensori": [{"idsensore": 1, "idcorsia": 3, "iddirezione": 1}],
            },
            {
                "idspira": 303,
                "descrizione": "Rovereto",
                "latitudine": 45.89,
                "longitudine": 11.04,
                "sensori": [],
            },
        ]
        self.codes: list[dict[str, Any]] = [
            {"idnazione": 1, "sigla": "I"},
            {"idnazione": 2, "sigla": "D"},
        ]
        self.events: dict[int, list[dict[str, Any]]] = {}
        # statuses returned before a group's events are served, consumed in order
        self.event_statuses: dict[int, list[int]] = {}
        self.events_override: Callable[[dict[str, Any]], httpx.Response | None] | None = None
        self.token_status = 200
        self.release_status = 200

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_events(self, *entries: dict[str, Any]) -> None:
        for entry in entries:
            self.events.setdefault(entry["idspira"], []).append(entry)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content.strip() else None

        if request.method == "POST" and path == "/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"Message": "error"})
            with self._lock:
                token = f"session-{len(self.issued_tokens) + 1:02d}-0123456789abcdef"
                self.issued_tokens.append(token)
            return httpx.Response(200, json={"SubscribeResult": {"sessionId": token}})

        if request.method == "DELETE" and path.startswith("/token/"):
            if self.release_status != 200:
                return httpx.Response(self.release_status, json={"Message": "error"})
            with self._lock:
                self.released_tokens.append(path.removeprefix("/token/"))
            return httpx.Response(200, json={"RemoveSubscribeResult": True})

        if request.method == "GET" and path == "/traffico/anagrafica":
            return httpx.Response(200, json={"Traffico_GetAnagraficaResult": self.catalog})

        if request.method == "GET" and path == "/traffico/nazioni":
            return httpx.Response(200, json={"Traffico_GetNazioniResult": self.codes})

        if request.method == "GET" and path == "/traffico/transiti":
            return self._handle_events(body["request"])

        return httpx.Response(404, json={"error": "unknown endpoint"})

    def _handle_events(self, params: dict[str, Any]) -> httpx.Response:
        with self._lock:
            self.event_requests.append(dict(params))
            queued = self.event_statuses.get(params["idspira"])
            status = queued.pop(0) if queued else 200

        if self.events_override is not None:
            response = self.events_override(params)
            if response is not None:
                return response
        if status != 200:
            return httpx.Response(status, json={"Message": "error"})

        first = int(params["fromData"][6:16])
        last = int(params["toData"][6:16])
        matching = [
            entry
            for entry in self.events.get(params["idspira"], [])
            if first <= int(entry["data"][6:16]) <= last
        ]
        return httpx.Response(200, json={"Traffico_GetTransitiResult": matching})


@pytest.fixture
def fake_service() -> FakeA22Service:
    return FakeA22Service()


@pytest.fixture
def webservice_settings() -> WebserviceSettings:
    return WebserviceSettings(url=BASE_URL, username="a22-user", password="a22-secret")


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        worker_count=2,
        window_seconds=1000,
        auth_backoff_seconds=0.025,
        inter_group_delay_seconds=0.025,
        follow_interval_seconds=0,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def client_factory(
    fake_service: FakeA22Service,
    webservice_settings: WebserviceSettings,
    sync_settings: SyncSettings,
    sleeps: list[float],
) -> Callable[[], SourceClient]:
    """Return a callable opening authenticated clients against the fake service."""

    def _open() -> SourceClient:
        return SourceClient.open(
            webservice_settings,
            sync=sync_settings,
            transport=fake_service.transport,
            sleep=sleeps.append,
        )

    return _open


@pytest.fixture
def source_client(client_factory: Callable[[], SourceClient]) -> Iterator[SourceClient]:
    with client_factory() as client:
        yield client


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    return get_session_factory()


@pytest.fixture
def raw_event() -> Callable[..., dict[str, Any]]:
    return make_event
