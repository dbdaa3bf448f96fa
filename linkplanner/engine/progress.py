"""Shared cancellation and progress state for one generation run."""

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Callable, Dict, Optional

from .errors import RunCanceled
from .types import PHASES

# Percent range covered by each phase.
PHASE_RANGES: Dict[str, tuple] = {
    "loading": (0, 10),
    "analyzing": (10, 25),
    "generating": (25, 80),
    "checking_404": (80, 90),
    "finalizing": (90, 100),
}


class RunControl:
    """Cancel flag plus a lock-protected progress snapshot.

    The pipeline writes at checkpoints; pollers only ever copy the snapshot,
    so reading progress never blocks on generation work.

    A run executing in another process is controlled through ``watch``: the
    poll callback receives the snapshot at checkpoints (throttled to
    ``interval`` seconds) and returns True once cancellation was requested
    elsewhere.
    """

    def __init__(self, run_id: str = "") -> None:
        self.run_id = run_id
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._phase = PHASES[0]
        self._percent = 0.0
        self._scenarios: Dict[str, Dict[str, int]] = {}
        self._message: Optional[str] = None
        self._poll: Optional[Callable[[Dict[str, Any]], bool]] = None
        self._poll_interval = 0.0
        self._polled_at: Optional[float] = None

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancellation arrived meanwhile."""

        return self._cancel.wait(timeout)

    def raise_if_canceled(self) -> None:
        if self._cancel.is_set():
            raise RunCanceled(f"Run {self.run_id} was canceled.")

    def checkpoint(self, phase: str, done: int = 0, total: int = 0) -> None:
        """Record progress inside ``phase`` and abort if cancellation was requested."""

        self.raise_if_canceled()
        low, high = PHASE_RANGES[phase]
        fraction = (done / total) if total else 0.0
        percent = low + (high - low) * min(1.0, max(0.0, fraction))
        with self._lock:
            if PHASES.index(phase) >= PHASES.index(self._phase):
                self._phase = phase
            self._percent = max(self._percent, round(percent, 2))
        self.sync()
        self.raise_if_canceled()

    def watch(self, poll: Callable[[Dict[str, Any]], bool], interval: float = 0.0) -> None:
        self._poll = poll
        self._poll_interval = max(0.0, interval)
        self._polled_at = None

    def sync(self, force: bool = False) -> None:
        """Hand the snapshot to the poll callback; a True reply cancels the run."""

        if self._poll is None:
            return
        now = time.monotonic()
        if not force and self._polled_at is not None and now - self._polled_at < self._poll_interval:
            return
        self._polled_at = now
        if self._poll(self.snapshot()):
            self._cancel.set()

    def complete(self) -> None:
        with self._lock:
            self._phase = PHASES[-1]
            self._percent = 100.0

    def update_scenario(self, name: str, **counts: int) -> None:
        with self._lock:
            entry = self._scenarios.setdefault(
                name, {"scanned": 0, "candidates": 0, "accepted": 0, "rejected": 0}
            )
            entry.update(counts)

    def note(self, message: str) -> None:
        with self._lock:
            self._message = message

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "run_id": self.run_id,
                "phase": self._phase,
                "percent": self._percent,
                "scenarios": copy.deepcopy(self._scenarios),
                "message": self._message,
                "cancel_requested": self._cancel.is_set(),
            }
