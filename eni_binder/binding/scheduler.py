"""One-shot timer that the binder re-arms after every pass."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Scheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        """Run callback once after delay_seconds."""
        ...

    def cancel(self) -> None:
        """Drop any pending callback and refuse new ones."""
        ...


class TimerScheduler:
    """threading.Timer based scheduler holding at most one pending callback."""

    def __init__(self, name: str = "eni-binder-timer"):
        self._name = name
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._cancelled:
                logger.debug("Scheduler %s cancelled, not scheduling", self._name)
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(delay_seconds, callback)
            timer.name = self._name
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
