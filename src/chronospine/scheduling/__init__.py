"""In-memory job scheduling.

Manifesto:
    Register a unit of work against a trigger and the scheduler fires it
    on a worker thread at the right instants, for as long as the trigger
    lasts or until the job is removed. Cron expressions, fixed periods,
    one-shot runs and bounded repeats share one registry, one loop and one
    worker pool.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CHRONO-SPINE SCHEDULER                                                       │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from chronospine.scheduling import create_scheduler                │   │
│  │                                                                      │   │
│  │   with create_scheduler() as scheduler:                              │   │
│  │       scheduler.add_job("nightly", ReportJob(), {"report": "sales"}, │   │
│  │                         "0 0 2 * * ?")                               │   │
│  │       scheduler.add_periodic_job("heartbeat", ping, period=5)        │   │
│  │       scheduler.fire_job(warm_cache)                                 │   │
│  │       ...                                                            │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Components (leaves first):                                                   │
│   cron.py        six/seven-field cron parsing and evaluation (croniter)      │
│   triggers.py    trigger variants + next_fire_time                           │
│   jobs.py        job shapes, JobContext, config keys                         │
│   guard.py       per-entry overlap gate                                      │
│   entry.py       ScheduleEntry                                               │
│   registry.py    name map + fire-time heap                                   │
│   dispatcher.py  thread-pool execution, failure isolation                    │
│   loop.py        daemon control loop                                         │
│   service.py     SchedulerService public API                                 │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    chrono-spine, scheduling, cron, interval, package

Doc-Types:
    api-reference, architecture-diagram
"""

from .cron import CronExpression, is_valid_expression, parse_expression
from .dispatcher import ErrorHandler, WorkerDispatcher
from .entry import EntryState, ScheduleEntry
from .guard import ExecutionGuard
from .jobs import (
    PROPERTY_SCHEDULER_CONCURRENT,
    PROPERTY_SCHEDULER_EXPRESSION,
    PROPERTY_SCHEDULER_NAME,
    PROPERTY_SCHEDULER_PERIOD,
    Job,
    JobContext,
    PlainCallable,
    StructuredJob,
    resolve_job,
)
from .loop import FireOutcome, SchedulerLoop, SlotResult
from .registry import JobRegistry
from .service import SchedulerHealth, SchedulerService, SchedulerStats, create_scheduler
from .triggers import (
    CronTrigger,
    OneShotTrigger,
    PeriodicTrigger,
    RepeatTrigger,
    Trigger,
    TriggerState,
    immediate,
    immediate_repeat,
    next_fire_time,
)

__all__ = [
    # Cron
    "CronExpression",
    "parse_expression",
    "is_valid_expression",
    # Triggers
    "Trigger",
    "TriggerState",
    "CronTrigger",
    "PeriodicTrigger",
    "OneShotTrigger",
    "RepeatTrigger",
    "immediate",
    "immediate_repeat",
    "next_fire_time",
    # Jobs
    "Job",
    "JobContext",
    "StructuredJob",
    "PlainCallable",
    "resolve_job",
    "PROPERTY_SCHEDULER_PERIOD",
    "PROPERTY_SCHEDULER_EXPRESSION",
    "PROPERTY_SCHEDULER_CONCURRENT",
    "PROPERTY_SCHEDULER_NAME",
    # Runtime
    "ExecutionGuard",
    "EntryState",
    "ScheduleEntry",
    "JobRegistry",
    "WorkerDispatcher",
    "ErrorHandler",
    "SchedulerLoop",
    "FireOutcome",
    "SlotResult",
    # Service
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    "create_scheduler",
]
