"""chrono-spine: an in-memory cron and interval job scheduler.

Example:
    >>> from chronospine import create_scheduler
    >>> scheduler = create_scheduler()
    >>> scheduler.add_periodic_job("heartbeat", lambda: print("tick"), period=5)
    >>> scheduler.start()
"""

__version__ = "0.1.0"

from chronospine.errors import (
    ChronoSpineError,
    ExecutionError,
    InvalidArgumentError,
    InvalidExpressionError,
    NotFoundError,
    SchedulingError,
)
from chronospine.scheduling import (
    PROPERTY_SCHEDULER_CONCURRENT,
    PROPERTY_SCHEDULER_EXPRESSION,
    PROPERTY_SCHEDULER_NAME,
    PROPERTY_SCHEDULER_PERIOD,
    Job,
    JobContext,
    SchedulerService,
    create_scheduler,
)
from chronospine.settings import SchedulerSettings

__all__ = [
    "__version__",
    "ChronoSpineError",
    "ExecutionError",
    "InvalidArgumentError",
    "InvalidExpressionError",
    "NotFoundError",
    "SchedulingError",
    "Job",
    "JobContext",
    "SchedulerService",
    "SchedulerSettings",
    "create_scheduler",
    "PROPERTY_SCHEDULER_PERIOD",
    "PROPERTY_SCHEDULER_EXPRESSION",
    "PROPERTY_SCHEDULER_CONCURRENT",
    "PROPERTY_SCHEDULER_NAME",
]
