"""Pytest fixtures for scheduling tests.

Loop cycles run deterministically: the clock is a ``FakeClock`` the test
advances by hand, and jobs run through an executor that either runs them
inline or holds them until the test releases them.
"""

from __future__ import annotations

from concurrent.futures import Executor, Future
from datetime import UTC, datetime, timedelta

import pytest

from chronospine.scheduling import SchedulerService
from chronospine.settings import SchedulerSettings

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def at(seconds: float) -> datetime:
    """``T0`` plus ``seconds``."""
    return T0 + timedelta(seconds=seconds)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def set(self, seconds: float) -> datetime:
        self.now = at(seconds)
        return self.now


class InlineExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def __init__(self):
        self.submitted = 0
        self.closed = False

    def submit(self, fn, /, *args, **kwargs):
        if self.closed:
            raise RuntimeError("cannot schedule new futures after shutdown")
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.closed = True


class ManualExecutor(Executor):
    """Holds submitted work until ``run_all`` so runs stay in flight."""

    def __init__(self):
        self.pending: list[tuple[Future, object, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> int:
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)
        return len(pending)


class RecordingJob:
    """Structured job that records every context it receives."""

    def __init__(self, fail_with: Exception | None = None):
        self.contexts = []
        self.fail_with = fail_with

    def execute(self, context):
        self.contexts.append(context)
        if self.fail_with is not None:
            raise self.fail_with

    @property
    def scheduled_times(self):
        return [context.scheduled_time for context in self.contexts]


@pytest.fixture
def clock():
    """Fake clock starting at 2024-01-01T00:00:00Z."""
    return FakeClock()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return SchedulerSettings(_env_file=None, max_workers=2)


@pytest.fixture
def recording_job():
    return RecordingJob()


@pytest.fixture
def scheduler(settings, clock, inline_executor):
    """Scheduler wired to the fake clock and the inline executor (not started)."""
    service = SchedulerService(settings, clock=clock, executor=inline_executor)
    yield service
    service.stop(wait=True)


@pytest.fixture
def held_scheduler(settings, clock, manual_executor):
    """Scheduler whose runs stay in flight until ``manual_executor.run_all()``."""
    service = SchedulerService(settings, clock=clock, executor=manual_executor)
    yield service
    service.stop(wait=True)


@pytest.fixture(name="at")
def at_fixture():
    """Offset helper: ``at(5)`` is five seconds after the fake clock's start."""
    return at


@pytest.fixture
def job_factory():
    """Build extra ``RecordingJob`` instances, optionally failing with an exception."""
    return RecordingJob
