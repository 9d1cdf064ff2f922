"""Tests for SchedulerLoop cycles and the daemon thread."""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from chronospine.errors import SchedulingError
from chronospine.scheduling.dispatcher import WorkerDispatcher
from chronospine.scheduling.entry import EntryState, ScheduleEntry
from chronospine.scheduling.jobs import freeze_config, resolve_job
from chronospine.scheduling.loop import FireOutcome, SchedulerLoop
from chronospine.scheduling.registry import JobRegistry
from chronospine.scheduling.triggers import OneShotTrigger, PeriodicTrigger, RepeatTrigger, Trigger


def arm(registry, trigger, job, now, *, name=None, allow_concurrent=True):
    entry = ScheduleEntry(
        name=name,
        trigger=trigger,
        job=resolve_job(job),
        config=freeze_config(None),
        allow_concurrent=allow_concurrent,
        next_fire_time=trigger.first_fire_time(now),
    )
    registry.add(entry)
    return entry


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def loop(registry, inline_executor, clock):
    return SchedulerLoop(registry, WorkerDispatcher(inline_executor), clock=clock)


class TestRunPending:
    """One synchronous cycle at a time."""

    def test_nothing_due(self, loop, registry, clock, recording_job, at):
        """Entries in the future are left alone."""
        arm(registry, PeriodicTrigger(5), recording_job, clock())
        assert loop.run_pending(at(4)) == []
        assert recording_job.contexts == []

    def test_periodic_rearms(self, loop, registry, clock, recording_job, at):
        """A fired periodic entry is re-armed one period later."""
        entry = arm(registry, PeriodicTrigger(5), recording_job, clock())
        [result] = loop.run_pending(at(5))
        assert result.outcome is FireOutcome.FIRED
        assert result.next_fire_time == at(10)
        assert entry.next_fire_time == at(10)
        assert entry.fire_count == 1

    def test_late_wake_fires_once(self, loop, registry, clock, recording_job, at):
        """Missed ticks are coalesced into one fire."""
        arm(registry, PeriodicTrigger(5), recording_job, clock())
        results = loop.run_pending(at(23))
        assert len(results) == 1
        assert results[0].scheduled_time == at(5)
        assert results[0].next_fire_time == at(25)
        assert len(recording_job.contexts) == 1

    def test_one_shot_retires(self, loop, registry, clock, recording_job, at):
        """One-shot entries retire after their only fire."""
        entry = arm(registry, OneShotTrigger(), recording_job, clock(), name="once")
        [result] = loop.run_pending(at(0))
        assert result.retired
        assert entry.state is EntryState.RETIRED
        assert "once" not in registry
        assert loop.stats()["retired"] == 1

    def test_repeat_runs_exactly_n_times(self, loop, registry, clock, recording_job, at):
        """RepeatTrigger(now, 3, 2) fires at 0, 2 and 4, then retires."""
        arm(registry, RepeatTrigger(None, 3, 2), recording_job, clock())
        for second in range(0, 10):
            loop.run_pending(at(second))
        assert recording_job.scheduled_times == [at(0), at(2), at(4)]
        assert len(registry) == 0

    def test_fire_order_is_by_time_then_registration(self, loop, registry, clock, at):
        """Entries due in the same cycle fire in (time, registration) order."""
        order = []
        arm(registry, OneShotTrigger(at(3)), lambda: order.append("late"), clock())
        arm(registry, OneShotTrigger(at(1)), lambda: order.append("first"), clock())
        arm(registry, OneShotTrigger(at(1)), lambda: order.append("second"), clock())
        loop.run_pending(at(5))
        assert order == ["first", "second", "late"]

    def test_failing_job_keeps_schedule(self, loop, registry, clock, job_factory, at):
        """A raising job does not disturb the entry's schedule."""
        job = job_factory(fail_with=RuntimeError("boom"))
        entry = arm(registry, PeriodicTrigger(5), job, clock(), name="flaky")
        loop.run_pending(at(5))
        loop.run_pending(at(10))
        assert len(job.contexts) == 2
        assert entry.next_fire_time == at(15)
        assert loop.dispatcher.stats()["failed"] == 2

    def test_job_removing_itself_is_not_rearmed(self, loop, registry, clock, at):
        """A job that removes its own entry while running is not re-armed."""
        arm(registry, PeriodicTrigger(5), lambda: registry.remove("self"), clock(), name="self")
        [result] = loop.run_pending(at(5))
        assert result.next_fire_time is None
        assert registry.peek_deadline() is None


class TestSkipPolicy:
    """Non-concurrent entries skip slots while a run is in flight."""

    @pytest.fixture
    def held_loop(self, registry, manual_executor, clock):
        return SchedulerLoop(registry, WorkerDispatcher(manual_executor), clock=clock)

    def test_skip_not_queue(self, held_loop, registry, clock, manual_executor, recording_job, at):
        """A blocked slot is skipped, not queued, and the schedule advances."""
        entry = arm(registry, PeriodicTrigger(5), recording_job, clock(), allow_concurrent=False)

        with capture_logs() as logs:
            [first] = held_loop.run_pending(at(5))
            [second] = held_loop.run_pending(at(10))

        assert first.outcome is FireOutcome.FIRED
        assert second.outcome is FireOutcome.SKIPPED
        assert entry.next_fire_time == at(15)
        assert entry.skip_count == 1
        assert any(log["event"] == "job.skipped" for log in logs)

        # only the first run was ever submitted
        assert manual_executor.run_all() == 1
        assert len(recording_job.contexts) == 1

        [third] = held_loop.run_pending(at(15))
        assert third.outcome is FireOutcome.FIRED

    def test_concurrent_entries_overlap(self, held_loop, registry, clock, manual_executor, at):
        """allow_concurrent=True submits every slot."""
        arm(registry, PeriodicTrigger(5), lambda: None, clock(), allow_concurrent=True)
        held_loop.run_pending(at(5))
        held_loop.run_pending(at(10))
        assert len(manual_executor.pending) == 2

    def test_skipped_slot_counts_toward_times(self, held_loop, registry, clock, manual_executor, at):
        """With count_skipped_runs a skip uses up one of the repeat's times."""
        entry = arm(registry, RepeatTrigger(None, 3, 2), lambda: None, clock(), allow_concurrent=False)
        held_loop.run_pending(at(0))  # fired, still in flight
        held_loop.run_pending(at(2))  # skipped
        manual_executor.run_all()
        [last] = held_loop.run_pending(at(4))
        assert last.outcome is FireOutcome.FIRED
        assert last.retired
        assert entry.fire_count == 2
        assert entry.skip_count == 1

    def test_skipped_slot_not_counted(self, registry, manual_executor, clock, at):
        """With count_skipped_runs=False the skip is made up later."""
        loop = SchedulerLoop(
            registry, WorkerDispatcher(manual_executor), clock=clock, count_skipped_runs=False
        )
        entry = arm(registry, RepeatTrigger(None, 2, 2), lambda: None, clock(), allow_concurrent=False)
        loop.run_pending(at(0))
        loop.run_pending(at(2))  # skipped, not counted
        manual_executor.run_all()
        [result] = loop.run_pending(at(4))
        assert result.retired
        assert entry.fire_count == 2


class TestDispatchRejection:
    """Dispatch failures are contained in the cycle."""

    def test_shut_down_dispatcher(self, registry, inline_executor, clock, at):
        """A refused submit is recorded as REJECTED and the entry still advances."""
        dispatcher = WorkerDispatcher(inline_executor)
        dispatcher.shutdown()
        loop = SchedulerLoop(registry, dispatcher, clock=clock)
        entry = arm(registry, PeriodicTrigger(5), lambda: None, clock())

        [result] = loop.run_pending(at(5))

        assert result.outcome is FireOutcome.REJECTED
        assert entry.next_fire_time == at(10)
        assert entry.guard.in_flight == 0
        assert loop.stats()["rejected"] == 1


class TestLoopThread:
    """The daemon thread, with the real clock and thread pool."""

    def test_thread_fires_due_entries(self, registry):
        """An added entry wakes the loop and fires on a worker."""
        loop = SchedulerLoop(registry, WorkerDispatcher(max_workers=2))
        fired = threading.Event()
        loop.start()
        try:
            assert loop.is_running
            arm(registry, OneShotTrigger(), fired.set, loop.clock())
            assert fired.wait(timeout=5)
        finally:
            registry.close()
            loop.stop(timeout=5)
            loop.dispatcher.shutdown(wait=True)
        assert not loop.is_running

    def test_earlier_entry_interrupts_long_wait(self, registry):
        """A new earlier deadline is picked up without waiting for the old one."""
        loop = SchedulerLoop(registry, WorkerDispatcher(max_workers=2))
        arm(registry, PeriodicTrigger(3600), lambda: None, loop.clock())
        fired = threading.Event()
        loop.start()
        try:
            time.sleep(0.05)
            arm(registry, OneShotTrigger(), fired.set, loop.clock())
            assert fired.wait(timeout=5)
        finally:
            registry.close()
            loop.stop(timeout=5)
            loop.dispatcher.shutdown(wait=True)

    def test_start_twice_is_harmless(self, registry):
        """A second start() only logs a warning."""
        loop = SchedulerLoop(registry, WorkerDispatcher(max_workers=1))
        loop.start()
        try:
            loop.start()
            assert loop.is_running
        finally:
            loop.stop(timeout=5)
            loop.dispatcher.shutdown()

    def test_start_after_close_raises(self, registry):
        """A closed registry cannot be driven again."""
        registry.close()
        loop = SchedulerLoop(registry, WorkerDispatcher(max_workers=1))
        with pytest.raises(SchedulingError):
            loop.start()
        loop.dispatcher.shutdown()


class UnknownTrigger(Trigger):
    """Trigger the evaluator has no rule for, so computing its next slot raises."""

    kind = "unknown"

    def first_fire_time(self, now):
        return now


class TestBookkeepingFailures:
    """One entry's failure never strands the rest of the batch."""

    def test_failing_entry_is_retired_and_batch_continues(self, loop, registry, clock, recording_job, at):
        """Entries due after a broken one still fire and are re-armed."""
        broken = arm(registry, UnknownTrigger(), lambda: None, clock(), name="broken")
        arm(registry, OneShotTrigger(), recording_job, clock(), name="other")
        periodic = arm(registry, PeriodicTrigger(2), lambda: None, at(-2), name="tick")

        with capture_logs() as logs:
            results = loop.run_pending(at(0))

        assert [r.outcome for r in results] == [
            FireOutcome.FAILED,
            FireOutcome.FIRED,
            FireOutcome.FIRED,
        ]
        assert broken.state is EntryState.RETIRED
        assert "broken" not in registry
        assert len(recording_job.contexts) == 1
        assert "other" not in registry
        assert periodic.next_fire_time == at(2)
        assert registry.peek_deadline() == at(2)
        assert any(log["event"] == "job.abandoned" for log in logs)
        assert loop.stats()["last_error"]

    def test_next_slot_past_datetime_max_retires(self, loop, registry, clock, recording_job, at):
        """A period that overflows the calendar ends the series instead of raising."""
        entry = arm(
            registry, RepeatTrigger(at(0), 2, timedelta(days=3_000_000)), recording_job, clock(), name="big"
        )
        arm(registry, OneShotTrigger(), lambda: None, clock(), name="other")

        results = loop.run_pending(at(0))

        assert [r.outcome for r in results] == [FireOutcome.FIRED, FireOutcome.FIRED]
        assert results[0].retired
        assert entry.state is EntryState.RETIRED
        assert len(recording_job.contexts) == 1
