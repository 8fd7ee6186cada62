"""Bulk and incremental synchronisation of A22 transit events."""

from .bounds import BoundsMap, apply_bounds, merge_bounds, observe
from .bulk import (
    BulkLoadReport,
    BulkWorker,
    WorkerResult,
    iter_windows,
    partition_range,
    run_bulk_load,
)
from .follower import IncrementalFollower, IterationReport, compute_watermark
from .windows import SyncWindow, interval_window, month_window

__all__ = [
    "BoundsMap",
    "BulkLoadReport",
    "BulkWorker",
    "IncrementalFollower",
    "IterationReport",
    "SyncWindow",
    "WorkerResult",
    "apply_bounds",
    "compute_watermark",
    "interval_window",
    "iter_windows",
    "merge_bounds",
    "month_window",
    "observe",
    "partition_range",
    "run_bulk_load",
]
