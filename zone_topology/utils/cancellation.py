"""
Cancellation tokens shared by the coordinator and the resolvers.

A token is created per resolution run and threaded through every resolver
call; each suspension point checks it before doing more network work.
"""

import logging
import threading
from typing import Callable, List

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised at a suspension point once the owning run has been superseded."""


class CancellationToken:
    """Thread-safe, one-way cancellation flag with callbacks."""

    def __init__(self, reason: str = ""):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "") -> None:
        """Cancel the token and fire registered callbacks exactly once."""
        with self._lock:
            if self._event.is_set():
                return
            if reason:
                self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "operation cancelled")

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)
