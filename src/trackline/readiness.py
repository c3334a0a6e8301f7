"""
TrackLine Readiness - Backend Availability Signal

A vision backend may need time to become usable (library import, model
or native runtime initialization). Instead of polling, the loader runs
once on a daemon thread and signals an Event; waiters block with a
deadline.

States:
    PENDING ──loader ok──→ READY
       │
       └──loader error / wait() deadline──→ FAILED   (terminal)
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .errors import BackendNotReadyError


class ReadinessState(Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"    # never became ready


class ReadinessSignal:
    """One-shot readiness signal with a bounded wait."""

    def __init__(self, name: str = "vision-backend"):
        self.name = name
        self.logger = logging.getLogger(f"Readiness-{name}")

        self._lock = threading.Lock()
        self._event = threading.Event()
        self._state = ReadinessState.PENDING
        self._failure: Optional[str] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def ready(cls, name: str = "vision-backend") -> "ReadinessSignal":
        """A signal that is READY from the start."""
        signal = cls(name)
        signal.mark_ready()
        return signal

    def start(self, loader: Callable[[], None]) -> "ReadinessSignal":
        """
        Run loader once on a background thread.

        loader returning normally marks READY; raising marks FAILED.
        """
        if self._thread is not None:
            return self

        def _run():
            try:
                loader()
            except Exception as e:
                self.mark_failed(f"loader raised {type(e).__name__}: {e}")
            else:
                self.mark_ready()

        self._thread = threading.Thread(target=_run, name=f"{self.name}-loader", daemon=True)
        self._thread.start()
        return self

    def mark_ready(self) -> bool:
        """Transition PENDING → READY. Returns False if already terminal."""
        with self._lock:
            if self._state != ReadinessState.PENDING:
                if self._state == ReadinessState.FAILED:
                    self.logger.warning(f"{self.name} became available after failing, ignoring")
                return self._state == ReadinessState.READY
            self._state = ReadinessState.READY
            self._event.set()
        self.logger.info(f"{self.name} is ready")
        return True

    def mark_failed(self, reason: str = "") -> bool:
        """Transition PENDING → FAILED. Returns False if already terminal."""
        with self._lock:
            if self._state != ReadinessState.PENDING:
                return False
            self._state = ReadinessState.FAILED
            self._failure = reason or "unknown"
            self._event.set()
        self.logger.error(f"{self.name} never became ready: {self._failure}")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until READY or FAILED, at most timeout seconds.

        A wait that expires while PENDING moves the signal to FAILED.

        Returns:
            True if READY
        """
        if not self._event.wait(timeout):
            self.mark_failed(f"not ready within {timeout:.1f}s")
        return self.is_ready

    def require(self, timeout: Optional[float] = None) -> None:
        """wait(), raising BackendNotReadyError unless READY."""
        if not self.wait(timeout):
            raise BackendNotReadyError(f"{self.name}: {self._failure}")

    @property
    def state(self) -> ReadinessState:
        with self._lock:
            return self._state

    @property
    def is_ready(self) -> bool:
        return self.state == ReadinessState.READY

    @property
    def failure_reason(self) -> Optional[str]:
        with self._lock:
            return self._failure
