"""Signal handling and graceful shutdown utilities."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from typing import Any

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class GracefulShutdown:
    """
    Manages graceful shutdown for the long-running follower.

    Handles SIGTERM and SIGINT signals by setting a stop event that the
    follower checks between iterations, then executes registered shutdown
    handlers.
    """

    def __init__(self) -> None:
        """Initialize graceful shutdown manager."""
        self._shutdown_handlers: list[Callable[[], Any]] = []
        self._is_shutting_down = False
        self._lock = threading.Lock()
        self.stop_event = threading.Event()

    def register_handler(self, handler: Callable[[], Any]) -> None:
        """
        Register a shutdown handler to be called during shutdown.

        Handlers are called in reverse registration order (LIFO).

        Args:
            handler: Callable to execute during shutdown
        """
        self._shutdown_handlers.append(handler)
        logger.info(f"Registered shutdown handler: {handler.__name__}")

    def request_stop(self) -> None:
        """Ask the follower loop to stop after its current iteration or sleep."""
        self.stop_event.set()

    def shutdown(self) -> None:
        """
        Execute graceful shutdown sequence.

        Sets the stop event, then calls all registered handlers in reverse order.
        """
        with self._lock:
            if self._is_shutting_down:
                logger.warning("Shutdown already in progress")
                return
            self._is_shutting_down = True

        logger.info("Starting graceful shutdown...")
        self.stop_event.set()

        for handler in reversed(self._shutdown_handlers):
            try:
                logger.info(f"Executing shutdown handler: {handler.__name__}")
                handler()
                logger.info(f"Completed shutdown handler: {handler.__name__}")
            except Exception as e:
                logger.error(
                    f"Error in shutdown handler {handler.__name__}: {e}", exc_info=True
                )

        logger.info("Graceful shutdown complete")

    def is_shutting_down(self) -> bool:
        """Check if shutdown is in progress."""
        return self._is_shutting_down


def install_signal_handlers(
    shutdown_manager: GracefulShutdown,
    signals: list[signal.Signals] | None = None,
) -> None:
    """
    Install signal handlers that request a stop of the follower loop.

    Args:
        shutdown_manager: Shutdown manager whose stop event is set
        signals: List of signals to handle (defaults to SIGTERM and SIGINT)
    """
    if threading.current_thread() is not threading.main_thread():
        logger.info("Skipping signal handler installation outside main thread")
        return

    if signals is None:
        signals = [signal.SIGTERM, signal.SIGINT]

    def signal_handler(signum: int, frame: Any) -> None:
        """Handle shutdown signal."""
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, stopping after the current iteration...")
        shutdown_manager.request_stop()

    for sig in signals:
        signal.signal(sig, signal_handler)
        logger.info(f"Installed signal handler for {sig.name}")
