"""Logging configuration for A22_Ingestor."""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final

from .config import get_settings

# Define log format with structured context placeholders.
LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "mode=%(mode)s | worker=%(worker)s | group_id=%(group_id)s | "
    "status=%(status)s | duration_ms=%(duration_ms)s | %(message)s"
)

DEFAULT_CONTEXT: Final[dict[str, str]] = {
    "mode": "-",
    "worker": "-",
    "group_id": "-",
    "status": "-",
    "duration_ms": "-",
}

_LOG_CONFIGURED = False
_CONFIG_LOCK: Final = Lock()


class ContextualFormatter(logging.Formatter):
    """Formatter that injects default structured context fields when absent."""

    def __init__(self, fmt: str, defaults: dict[str, str] | None = None) -> None:
        super().__init__(fmt)
        self._defaults = defaults or {}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for key, value in self._defaults.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return super().format(record)


def _configure_root_logger() -> None:
    """Configure the root logger exactly once based on global settings."""

    global _LOG_CONFIGURED
    with _CONFIG_LOCK:
        if _LOG_CONFIGURED:
            return

        settings = get_settings()
        resolved_level = getattr(logging, settings.log_level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(resolved_level)

        formatter = ContextualFormatter(LOG_FORMAT, DEFAULT_CONTEXT)

        if not root_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(resolved_level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
        else:
            for handler in root_logger.handlers:
                handler.setLevel(resolved_level)
                handler.setFormatter(formatter)

        _LOG_CONFIGURED = True


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that lets per-call extras override defaults."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        base_extra = self.extra or {}
        extra = dict(base_extra)
        provided_extra = kwargs.get("extra") or {}
        extra.update(provided_extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> logging.LoggerAdapter:
    """Return a logger configured with the global logging defaults.

    Args:
        name: Logger name to retrieve.
        level: Optional log level override (primarily for tests).
        context: Optional default structured context to include with every entry.

    Returns:
        LoggerAdapter injecting structured defaults for consistent formatting.
    """

    _configure_root_logger()
    logger = logging.getLogger(name)

    if level is not None:
        resolved_value = getattr(logging, level.upper(), logging.INFO)
        logger.setLevel(resolved_value)
    else:
        logger.setLevel(logging.NOTSET)

    adapter_context: dict[str, Any] = dict(DEFAULT_CONTEXT)
    if context:
        adapter_context.update(context)

    return StructuredLoggerAdapter(logger, adapter_context)


def log_sync_window(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    mode: str,
    worker: int | str,
    window: tuple[int, int],
    records: int,
    retrieve_ms: int,
    store_ms: int,
    status: str,
    **extra_context: Any,
) -> None:
    """
    Log the outcome of one fetch-and-store window with structured context.

    Args:
        logger: Logger instance
        mode: Sync mode ("bulk" or "follow")
        worker: Worker number (0 for the follower)
        window: Inclusive (from, to) Unix timestamps covered
        records: Number of transit events retrieved
        retrieve_ms: Time spent talking to the web service
        store_ms: Time spent writing to the database
        status: Status (success, error, etc.)
        **extra_context: Additional context to log
    """
    structured_context: dict[str, Any] = {
        "mode": mode,
        "worker": worker,
        "status": status,
        "duration_ms": retrieve_ms + store_ms,
    }
    suffix = f" | context={extra_context}" if extra_context else ""
    message = (
        f"Window {window[0]}..{window[1]}: {records} records "
        f"(retrieve {retrieve_ms} ms, store {store_ms} ms){suffix}"
    )

    log_method = logger.info if status.lower() == "success" else logger.error
    log_method(message, extra=structured_context)
