"""Parallel historical backfill over a fixed time window."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..client.source_client import SourceClient
from ..models.base import get_session_factory, session_scope
from ..models.repository import TrafficRepository
from ..monitoring.metrics import observe_window_duration, record_events_written
from ..schemas.records import Station
from ..utils.config import SyncSettings
from ..utils.logging import log_sync_window, setup_logger
from .bounds import BoundsMap, apply_bounds, merge_bounds, observe
from .windows import SyncWindow

logger = setup_logger(__name__, context={"mode": "bulk"})


def partition_range(start: int, end: int, workers: int) -> list[SyncWindow]:
    """Split ``[start, end]`` into contiguous inclusive ranges, one per worker.

    All ranges have the same width except the last one, which runs up to
    ``end``. Consecutive ranges neither overlap nor leave a gap. Fewer
    ranges than ``workers`` are returned when the interval is shorter than
    the worker count.
    """

    if workers < 1:
        raise ValueError("workers must be positive")
    if end < start:
        raise ValueError(f"empty interval {start}..{end}")

    span = end - start
    count = max(1, min(workers, span))
    delta = span // count
    ranges: list[SyncWindow] = []
    for index in range(count):
        first = start + index * delta
        last = end if index == count - 1 else first + delta - 1
        ranges.append(SyncWindow(first, last))
    return ranges


def iter_windows(first: int, last: int, size: int) -> Iterator[SyncWindow]:
    """Yield consecutive inclusive windows of ``size`` seconds covering ``[first, last]``."""

    if size < 1:
        raise ValueError("window size must be positive")
    cursor = first
    while cursor <= last:
        yield SyncWindow(cursor, min(last, cursor + size - 1))
        cursor += size


@dataclass(slots=True)
class WorkerResult:
    """Outcome of one bulk worker."""

    index: int
    window: SyncWindow
    bounds: BoundsMap = field(default_factory=dict)
    events_written: int = 0
    windows_completed: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class BulkLoadReport:
    """Summary of a complete bulk load."""

    window: SyncWindow
    workers: list[WorkerResult]
    bounds: BoundsMap
    stations: int

    @property
    def events_written(self) -> int:
        return sum(result.events_written for result in self.workers)

    @property
    def failed_workers(self) -> list[WorkerResult]:
        return [result for result in self.workers if not result.succeeded]


class BulkWorker:
    """Loads one partition of a bulk window, one small window at a time.

    Every window is fetched for all groups of the catalog and written in
    its own transaction. The first failure stops the worker; bounds of the
    windows committed before it are kept in the result.
    """

    def __init__(
        self,
        index: int,
        window: SyncWindow,
        *,
        client: SourceClient,
        stations: Sequence[Station],
        country_codes: dict[int, str],
        session_factory: Callable[[], Session],
        window_seconds: int = 1000,
    ) -> None:
        self.index = index
        self.window = window
        self._client = client
        self._stations = stations
        self._country_codes = country_codes
        self._session_factory = session_factory
        self._window_seconds = window_seconds

    def run(self) -> WorkerResult:
        result = WorkerResult(index=self.index, window=self.window)
        session = self._session_factory()
        try:
            for window in iter_windows(self.window.start, self.window.end, self._window_seconds):
                self._load_window(window, session, result)
        except Exception as exc:
            result.error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "worker %d stopped after %d windows",
                self.index,
                result.windows_completed,
                extra={"worker": self.index, "status": "error"},
            )
        finally:
            session.close()

        logger.info(
            "worker %d finished %d..%d: %d events in %d windows",
            self.index,
            self.window.start,
            self.window.end,
            result.events_written,
            result.windows_completed,
            extra={"worker": self.index, "status": "success" if result.succeeded else "error"},
        )
        return result

    def _load_window(self, window: SyncWindow, session: Session, result: WorkerResult) -> None:
        started = time.perf_counter()
        fetched = self._client.fetch_events(
            self._stations,
            window.start,
            window.end,
            country_codes=self._country_codes,
        )
        retrieved = time.perf_counter()

        with session_scope(session) as active:
            written = TrafficRepository(active).insert_events(fetched.events)
        stored = time.perf_counter()

        observe(result.bounds, fetched.events)
        result.events_written += written
        result.windows_completed += 1
        record_events_written("bulk", written)
        observe_window_duration("bulk", stored - started)
        log_sync_window(
            logger,
            mode="bulk",
            worker=self.index,
            window=(window.start, window.end),
            records=len(fetched),
            retrieve_ms=int((retrieved - started) * 1000),
            store_ms=int((stored - retrieved) * 1000),
            status="success",
            skipped_groups=len(fetched.skipped_groups),
        )


def run_bulk_load(
    window: SyncWindow,
    *,
    client: SourceClient,
    sync: SyncSettings | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> BulkLoadReport:
    """Backfill ``window`` with parallel workers sharing ``client``.

    The catalog and the country code table are fetched once. The catalog
    is upserted before the workers start so that the bounds collected by
    all workers, failed ones included, can be widened on existing rows
    after the join.
    """

    sync = sync or SyncSettings()
    factory = session_factory or get_session_factory()

    stations = client.list_stations()
    session = factory()
    try:
        with session_scope(session) as active:
            TrafficRepository(active).upsert_stations(stations)
    finally:
        session.close()
    country_codes = client.list_country_codes()
    logger.info(
        "loading %d..%d for %d stations with %d country codes",
        window.start,
        window.end,
        len(stations),
        len(country_codes),
    )

    workers = [
        BulkWorker(
            index,
            partition,
            client=client,
            stations=stations,
            country_codes=country_codes,
            session_factory=factory,
            window_seconds=sync.window_seconds,
        )
        for index, partition in enumerate(
            partition_range(window.start, window.end, sync.worker_count)
        )
    ]
    with ThreadPoolExecutor(
        max_workers=len(workers),
        thread_name_prefix="a22-bulk",
    ) as executor:
        futures = [executor.submit(worker.run) for worker in workers]
        results = [future.result() for future in futures]

    bounds = merge_bounds(*(result.bounds for result in results))
    session = factory()
    try:
        with session_scope(session) as active:
            apply_bounds(TrafficRepository(active), bounds)
    finally:
        session.close()

    report = BulkLoadReport(window=window, workers=results, bounds=bounds, stations=len(stations))
    logger.info(
        "bulk load %d..%d done: %d events, %d stations with bounds, %d failed workers",
        window.start,
        window.end,
        report.events_written,
        len(bounds),
        len(report.failed_workers),
        extra={"status": "success" if not report.failed_workers else "error"},
    )
    return report
