"""Execution guard — per-entry allow/deny-overlap gate.

WHY
───
A job registered with ``can_run_concurrently=False`` must never have two
runs in flight. When its next slot comes up while the previous run is
still going, that slot is **skipped**: not queued, not retried. The
scheduler still advances the entry to its next fire time.

ARCHITECTURE
────────────
::

    ExecutionGuard(allow_concurrent)
      ├── .try_acquire()   ─ non-blocking; False means "skip this slot"
      ├── .release()       ─ called by the worker when the run ends
      ├── .in_flight       ─ number of runs currently holding the guard
      └── .blocked         ─ True while a non-concurrent run is in flight

The guard is scoped to one entry and is the only synchronisation shared
between runs of that entry.

Example::

    guard = ExecutionGuard(allow_concurrent=False)
    if guard.try_acquire():
        try:
            run_job()
        finally:
            guard.release()
"""

from __future__ import annotations

import threading


class ExecutionGuard:
    """Gate enforcing one entry's concurrency policy."""

    def __init__(self, allow_concurrent: bool):
        self.allow_concurrent = allow_concurrent
        self._lock = threading.Lock()
        self._in_flight = 0

    def try_acquire(self) -> bool:
        """Try to start a run.

        Returns:
            True if the run may proceed, False if a non-concurrent run is
            already in flight.
        """
        with self._lock:
            if not self.allow_concurrent and self._in_flight > 0:
                return False
            self._in_flight += 1
            return True

    def release(self) -> None:
        """Mark one run as finished."""
        with self._lock:
            if self._in_flight == 0:
                raise RuntimeError("ExecutionGuard released more times than acquired")
            self._in_flight -= 1

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def blocked(self) -> bool:
        """True while the next slot would be skipped."""
        return not self.allow_concurrent and self._in_flight > 0

    def __repr__(self) -> str:
        return f"ExecutionGuard(allow_concurrent={self.allow_concurrent}, in_flight={self._in_flight})"


__all__ = ["ExecutionGuard"]
