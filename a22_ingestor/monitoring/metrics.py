"""Prometheus metrics definitions for A22_Ingestor."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

HTTP_RESPONSES = Counter(
    "a22_http_responses_total",
    "Web service responses grouped by operation and HTTP status code.",
    labelnames=("operation", "status"),
)

GROUPS_ABANDONED = Counter(
    "a22_groups_abandoned_total",
    "Detector groups skipped for one fetch, grouped by reason.",
    labelnames=("reason",),
)

EVENTS_WRITTEN = Counter(
    "a22_events_written_total",
    "Transit events handed to the database, grouped by sync mode.",
    labelnames=("mode",),
)

FOLLOWER_ITERATIONS = Counter(
    "a22_follower_iterations_total",
    "Follower iterations grouped by outcome.",
    labelnames=("outcome",),
)

GHOST_STATIONS_DETECTED = Counter(
    "a22_ghost_stations_detected_total",
    "Station codes seen in transit events but missing from the catalog.",
)

WINDOW_DURATION = Histogram(
    "a22_window_duration_seconds",
    "Distribution of fetch-and-store window durations in seconds.",
    labelnames=("mode",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)


def record_http_response(operation: str, status: int) -> None:
    """Increment the response counter for an operation and status code."""

    HTTP_RESPONSES.labels(operation=operation, status=str(status)).inc()


def record_group_abandoned(reason: str) -> None:
    """Increment the abandoned-group counter for the provided reason."""

    GROUPS_ABANDONED.labels(reason=reason).inc()


def record_events_written(mode: str, count: int) -> None:
    """Add the number of events written in one batch."""

    EVENTS_WRITTEN.labels(mode=mode).inc(max(count, 0))


def record_follower_iteration(outcome: str) -> None:
    """Count a finished follower iteration ("success" or "error")."""

    FOLLOWER_ITERATIONS.labels(outcome=outcome).inc()


def record_ghost_stations(count: int) -> None:
    """Add newly detected ghost stations."""

    GHOST_STATIONS_DETECTED.inc(max(count, 0))


def observe_window_duration(mode: str, duration_seconds: float) -> None:
    """Record the duration of one fetch-and-store window in seconds."""

    WINDOW_DURATION.labels(mode=mode).observe(max(duration_seconds, 0.0))
