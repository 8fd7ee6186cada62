"""Incremental follower keeping the store current with the web service."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..client.codec import group_of
from ..client.source_client import SourceClient
from ..exceptions import ConfigurationError
from ..models.base import get_session_factory, session_scope
from ..models.repository import TrafficRepository
from ..monitoring.metrics import (
    observe_window_duration,
    record_events_written,
    record_follower_iteration,
    record_ghost_stations,
)
from ..utils.config import SyncSettings, WebserviceSettings
from ..utils.logging import log_sync_window, setup_logger
from .bounds import observe

logger = setup_logger(__name__, context={"mode": "follow", "worker": 0})

SECONDS_PER_DAY = 86400


def compute_watermark(latest: int | None, cutoff: int) -> int:
    """Return where the next fetch of a group resumes.

    One second after the newest stored event, or ``cutoff`` when nothing
    newer than the cutoff is stored.
    """

    if latest is None:
        return cutoff
    return latest + 1


def group_codes(codes: Iterable[str]) -> dict[str, set[str]]:
    """Group station codes by their detector group id."""

    groups: dict[str, set[str]] = defaultdict(set)
    for code in codes:
        groups[group_of(code)].add(code)
    return dict(groups)


@dataclass(slots=True)
class IterationReport:
    """What one follower iteration observed and wrote."""

    started_at: int
    cutoff: int
    stations: int = 0
    ghosts: int = 0
    watermarks: dict[str, int] = field(default_factory=dict)
    events_written: int = 0
    new_ghosts: list[str] = field(default_factory=list)
    skipped_groups: dict[str, str] = field(default_factory=dict)
    status_counts: dict[int, int] = field(default_factory=dict)


class IncrementalFollower:
    """Polls the web service forever, resuming every group at its watermark.

    Each iteration opens a fresh session, refreshes the catalog, derives a
    watermark per detector group from stored events (never looking further
    back than ``lookback_days``), fetches everything newer in one pass and
    records stations that show up in events without being catalogued.
    """

    def __init__(
        self,
        webservice: WebserviceSettings | None = None,
        *,
        sync: SyncSettings | None = None,
        client_factory: Callable[[], AbstractContextManager[SourceClient]] | None = None,
        session_factory: Callable[[], Session] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if client_factory is None and webservice is None:
            raise ValueError("either webservice settings or a client factory is required")
        self._sync = sync or SyncSettings()
        self._webservice = webservice
        self._client_factory = client_factory or self._open_client
        self._session_factory = session_factory
        self._clock = clock
        self.iterations = 0

    def _open_client(self) -> SourceClient:
        if self._webservice is None:
            raise ConfigurationError("web service settings are required to open a client")
        return SourceClient.open(self._webservice, sync=self._sync)

    def _new_session(self) -> Session:
        factory = self._session_factory or get_session_factory()
        return factory()

    def run_iteration(self) -> IterationReport:
        """Run one catalog, watermark, fetch and ghost reconciliation cycle.

        Errors propagate to the caller.
        """

        now = int(self._clock())
        cutoff = now - self._sync.lookback_days * SECONDS_PER_DAY
        report = IterationReport(started_at=now, cutoff=cutoff)
        started = time.perf_counter()

        session = self._new_session()
        try:
            with self._client_factory() as client:
                stations = client.list_stations()
                catalog = {station.code for station in stations}
                with session_scope(session) as active:
                    TrafficRepository(active).upsert_stations(stations)
                report.stations = len(catalog)

                with session_scope(session) as active:
                    repository = TrafficRepository(active)
                    ghosts = repository.active_ghost_codes() - catalog
                    known = catalog | ghosts
                    report.watermarks = {
                        group_id: compute_watermark(repository.max_timestamp(codes, cutoff), cutoff)
                        for group_id, codes in group_codes(known).items()
                    }
                report.ghosts = len(ghosts)

                country_codes = client.list_country_codes()
                fetched = client.fetch_events(
                    sorted(known),
                    cutoff,
                    now,
                    report.watermarks,
                    country_codes=country_codes,
                )
            retrieved = time.perf_counter()

            with session_scope(session) as active:
                repository = TrafficRepository(active)
                report.events_written = repository.insert_events(fetched.events)
                repository.widen_bounds(observe({}, fetched.events))

            with session_scope(session) as active:
                report.new_ghosts = TrafficRepository(active).add_ghosts(
                    fetched.station_codes() - known
                )
        finally:
            session.close()
        stored = time.perf_counter()

        report.skipped_groups = dict(fetched.skipped_groups)
        report.status_counts = dict(fetched.status_counts)
        record_events_written("follow", report.events_written)
        record_ghost_stations(len(report.new_ghosts))
        observe_window_duration("follow", stored - started)
        if report.new_ghosts:
            logger.warning(
                "detected %d ghost stations: %s",
                len(report.new_ghosts),
                ", ".join(report.new_ghosts),
            )
        log_sync_window(
            logger,
            mode="follow",
            worker=0,
            window=(min(report.watermarks.values(), default=cutoff), now),
            records=len(fetched),
            retrieve_ms=int((retrieved - started) * 1000),
            store_ms=int((stored - retrieved) * 1000),
            status="success",
            groups=len(report.watermarks),
            skipped_groups=len(report.skipped_groups),
        )
        return report

    def run_forever(
        self,
        stop_event: threading.Event | None = None,
        *,
        max_iterations: int | None = None,
    ) -> None:
        """Repeat iterations until ``stop_event`` is set.

        A failed iteration is logged and followed by the regular pause; it
        never ends the loop.
        """

        stop_event = stop_event or threading.Event()
        interval = self._sync.follow_interval_seconds
        while not stop_event.is_set():
            self.iterations += 1
            try:
                self.run_iteration()
            except Exception:
                record_follower_iteration("error")
                logger.exception(
                    "iteration %d failed, retrying in %.0f s",
                    self.iterations,
                    interval,
                    extra={"status": "error"},
                )
            else:
                record_follower_iteration("success")

            if max_iterations is not None and self.iterations >= max_iterations:
                break
            stop_event.wait(interval)

        logger.info("follower stopped after %d iterations", self.iterations)
