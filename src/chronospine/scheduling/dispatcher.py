"""Worker dispatcher — hands fired slots to a thread pool.

Manifesto:
    The scheduler loop must never run user code. It submits each fired
    slot here and moves on; the run happens on a pool thread. Whatever the
    job raises is caught, wrapped in :class:`ExecutionError`, logged and
    counted, and the entry's execution guard is released no matter how the
    run ended. Nothing a job does can stop the loop or the next slot.

ARCHITECTURE
────────────
::

    WorkerDispatcher(max_workers=10)
      ├── .dispatch(entry, scheduled, fired) ─ submit; guard already held
      ├── ._run(entry, context)              ─ on a pool thread
      │       with LogContext(job_name=...):
      │           entry.job.run(context)
      │       except Exception → ExecutionError → log + on_error
      │       finally          → entry.guard.release()
      ├── .stats()                            ─ submitted/succeeded/failed
      └── .shutdown(wait)                     ─ drain the pool

The executor is injectable; tests pass one that runs work inline so a
whole fire cycle completes on the calling thread.

Tags:
    chrono-spine, scheduling, executor, thread-pool, error-isolation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any

from chronospine.errors import ExecutionError, SchedulingError
from chronospine.logging import LogContext, get_logger

from .entry import ScheduleEntry
from .jobs import JobContext

logger = get_logger(__name__)

ErrorHandler = Callable[[str | None, ExecutionError], None]
"""Called with ``(job_name, error)`` after a run raises."""


class WorkerDispatcher:
    """Runs units of work on a thread pool with failures isolated.

    Example:
        >>> dispatcher = WorkerDispatcher(max_workers=4)
        >>> dispatcher.dispatch(entry, scheduled_time, now)
        >>> dispatcher.shutdown(wait=True)
    """

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        max_workers: int = 10,
        thread_name_prefix: str = "chronospine-worker",
        on_error: ErrorHandler | None = None,
    ):
        """Initialize with a worker pool.

        Args:
            executor: Executor to submit to; a ThreadPoolExecutor is created
                (and owned) when omitted
            max_workers: Pool size for the owned pool
            thread_name_prefix: Thread name prefix for the owned pool
            on_error: Optional hook called after a run raises
        """
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        self.on_error = on_error
        self._lock = threading.Lock()
        self._submitted = 0
        self._succeeded = 0
        self._failed = 0
        self._running = 0
        self._shutdown = False

    def dispatch(
        self, entry: ScheduleEntry, scheduled_time: datetime, fire_time: datetime
    ) -> Future:
        """Submit one run of ``entry``.

        The caller must already hold ``entry.guard``; it is released when
        the run ends, or here if the submit itself fails.

        Raises:
            SchedulingError: if the pool no longer accepts work.
        """
        context = entry.context_for(scheduled_time, fire_time)
        try:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
            future = self.executor.submit(self._run, entry, context)
        except RuntimeError as exc:
            entry.guard.release()
            raise SchedulingError("worker pool is shut down", cause=exc).with_context(
                job_name=entry.name, scheduled_time=scheduled_time.isoformat()
            ) from exc

        with self._lock:
            self._submitted += 1
        return future

    def _run(self, entry: ScheduleEntry, context: JobContext) -> bool:
        with self._lock:
            self._running += 1
        started = time.monotonic()
        try:
            with LogContext(job_name=entry.label, scheduled_time=context.scheduled_time.isoformat()):
                entry.job.run(context)
        except Exception as exc:
            error = ExecutionError(
                entry.name, exc, scheduled_time=context.scheduled_time.isoformat()
            )
            self._record_failure(entry, error)
            return False
        finally:
            with self._lock:
                self._running -= 1
            entry.guard.release()

        with self._lock:
            self._succeeded += 1
        logger.debug(
            "job.completed",
            job_name=entry.label,
            duration_ms=round((time.monotonic() - started) * 1000, 3),
        )
        return True

    def _record_failure(self, entry: ScheduleEntry, error: ExecutionError) -> None:
        with self._lock:
            self._failed += 1
        logger.error("job.failed", job_name=entry.label, **error.to_dict())

        if self.on_error is None:
            return
        try:
            self.on_error(entry.name, error)
        except Exception as exc:
            logger.exception(
                "job.error_handler_failed", job_name=entry.label, error=str(exc)
            )

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "submitted": self._submitted,
                "succeeded": self._succeeded,
                "failed": self._failed,
                "running": self._running,
            }

    def reset_stats(self) -> None:
        with self._lock:
            self._submitted = 0
            self._succeeded = 0
            self._failed = 0

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work.

        Args:
            wait: If True, wait for in-flight runs to finish
        """
        self._shutdown = True
        if self._owns_executor:
            self.executor.shutdown(wait=wait)

    def __enter__(self) -> WorkerDispatcher:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)


__all__ = ["ErrorHandler", "WorkerDispatcher"]
