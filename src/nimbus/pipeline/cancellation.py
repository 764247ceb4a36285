"""Cooperative cancellation for pipeline execution."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class CommandCancelledError(Exception):
    """Raised by an internal command that observed cancellation."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class CancellationSignal:
    """Thread-safe, one-shot cancellation flag with callbacks.

    Internal commands poll ``is_cancelled`` (or call ``raise_if_cancelled``);
    the executor registers callbacks that kill external processes.
    """

    def __init__(self):
        """Initialize an unset signal."""
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Set the signal and run registered callbacks once.

        Callbacks run on the calling thread. A failing callback is logged and
        does not prevent the remaining ones from running.
        """
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        logger.debug(f"Cancellation requested ({len(callbacks)} callbacks)")
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run on cancellation.

        If the signal is already set the callback runs immediately.

        Args:
            callback: Zero-argument callable

        Returns:
            Function that unregisters the callback
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove

        callback()
        return lambda: None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout elapses.

        Returns:
            True if the signal is set
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise CommandCancelledError if the signal is set."""
        if self._event.is_set():
            raise CommandCancelledError()
