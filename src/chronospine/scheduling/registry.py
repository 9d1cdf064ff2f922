"""Job registry — active entries by name and by next fire time.

Manifesto:
    The registry is the single place that answers "what fires next?".
    Every mutation happens inside one critical section guarded by a
    ``threading.Condition``, and every mutation notifies it, so the
    scheduler loop sleeping on that condition re-evaluates its deadline
    as soon as an earlier entry is added or the current one is removed.

┌──────────────────────────────────────────────────────────────────────────────┐
│  JOB REGISTRY                                                                 │
│                                                                               │
│   _by_name : {name → entry}              named entries only                   │
│   _entries : {seq → entry}               every active entry                   │
│   _heap    : [(next_fire_time, seq, entry)]                                   │
│                                                                               │
│   add(entry)          cancel old entry of the same name, then insert          │
│   remove(name)        cancel + forget; NotFoundError if absent                │
│   pop_due(now)        take due entries out of the heap, earliest first        │
│   rearm(entry)        put an entry back with its new next_fire_time           │
│   retire(entry)       forget an exhausted entry                               │
│   close()             cancel everything, refuse further adds                  │
│                                                                               │
│  Heap ties are broken by insertion sequence: the earlier registration fires  │
│  first. Cancelled entries are dropped lazily when they reach the heap top.   │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    chrono-spine, scheduling, registry, heap, condition-variable

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import heapq
import itertools
import threading
from datetime import datetime

from chronospine.errors import NotFoundError, SchedulingError

from .entry import ScheduleEntry


class JobRegistry:
    """Thread-safe registry of active schedule entries.

    Example:
        >>> registry = JobRegistry()
        >>> registry.add(entry)
        >>> due = registry.pop_due(now)
    """

    def __init__(self) -> None:
        self.condition = threading.Condition(threading.RLock())
        self._by_name: dict[str, ScheduleEntry] = {}
        self._entries: dict[int, ScheduleEntry] = {}
        self._heap: list[tuple[datetime, int, ScheduleEntry]] = []
        self._seq = itertools.count()
        self._closed = False

    # === Mutation ===

    def add(self, entry: ScheduleEntry) -> ScheduleEntry | None:
        """Insert ``entry``, replacing any active entry with the same name.

        Returns:
            The entry that was replaced, or None.

        Raises:
            SchedulingError: if the registry is closed or the entry has no
                fire time.
        """
        with self.condition:
            if self._closed:
                raise SchedulingError("scheduler is shut down").with_context(job_name=entry.name)
            if entry.next_fire_time is None:
                raise SchedulingError("entry has no fire time").with_context(
                    job_name=entry.name, trigger=entry.trigger.describe()
                )

            replaced = None
            if entry.name:
                replaced = self._by_name.pop(entry.name, None)
                if replaced is not None:
                    replaced.cancel()
                    self._entries.pop(replaced.seq, None)
                self._by_name[entry.name] = entry

            entry.seq = next(self._seq)
            self._entries[entry.seq] = entry
            heapq.heappush(self._heap, (entry.next_fire_time, entry.seq, entry))
            self.condition.notify_all()
            return replaced

    def remove(self, name: str) -> ScheduleEntry:
        """Cancel the entry registered under ``name``.

        Raises:
            NotFoundError: if no active entry has that name.
        """
        with self.condition:
            entry = self._by_name.pop(name, None) if name else None
            if entry is None:
                raise NotFoundError(name)
            entry.cancel()
            self._entries.pop(entry.seq, None)
            self.condition.notify_all()
            return entry

    def pop_due(self, now: datetime) -> list[ScheduleEntry]:
        """Take every entry due at ``now`` out of the ordering, earliest first.

        Each returned entry must be handed back through :meth:`rearm` or
        :meth:`retire`.
        """
        with self.condition:
            due = []
            while self._heap and self._heap[0][0] <= now:
                _, _, entry = heapq.heappop(self._heap)
                if entry.is_active:
                    due.append(entry)
            return due

    def rearm(self, entry: ScheduleEntry) -> bool:
        """Put ``entry`` back into the ordering unless it was cancelled meanwhile."""
        with self.condition:
            if not entry.is_active or entry.next_fire_time is None:
                return False
            heapq.heappush(self._heap, (entry.next_fire_time, entry.seq, entry))
            self.condition.notify_all()
            return True

    def retire(self, entry: ScheduleEntry) -> None:
        """Forget an entry whose trigger is exhausted."""
        with self.condition:
            entry.retire()
            self._entries.pop(entry.seq, None)
            if entry.name and self._by_name.get(entry.name) is entry:
                del self._by_name[entry.name]
            self.condition.notify_all()

    def close(self) -> list[ScheduleEntry]:
        """Cancel every entry and refuse further adds.

        Returns:
            The entries that were cancelled.
        """
        with self.condition:
            cancelled = list(self._entries.values())
            for entry in cancelled:
                entry.cancel()
            self._entries.clear()
            self._by_name.clear()
            self._heap.clear()
            self._closed = True
            self.condition.notify_all()
            return cancelled

    # === Queries ===

    def peek_deadline(self) -> datetime | None:
        """Earliest next fire time among active entries."""
        with self.condition:
            while self._heap and not self._heap[0][2].is_active:
                heapq.heappop(self._heap)
            return self._heap[0][0] if self._heap else None

    def lookup_due(self, now: datetime) -> list[ScheduleEntry]:
        """Entries due at ``now`` in firing order, without removing them."""
        with self.condition:
            due = [item for item in self._heap if item[0] <= now and item[2].is_active]
            return [entry for _, _, entry in sorted(due, key=lambda item: item[:2])]

    def get(self, name: str) -> ScheduleEntry | None:
        with self.condition:
            return self._by_name.get(name)

    def names(self) -> list[str]:
        with self.condition:
            return sorted(self._by_name)

    def entries(self) -> list[ScheduleEntry]:
        """All active entries, in registration order."""
        with self.condition:
            return [self._entries[seq] for seq in sorted(self._entries)]

    @property
    def closed(self) -> bool:
        return self._closed

    def __contains__(self, name: object) -> bool:
        with self.condition:
            return name in self._by_name

    def __len__(self) -> int:
        with self.condition:
            return len(self._entries)


__all__ = ["JobRegistry"]
