"""
Structured error types for chrono-spine.

Every failure the scheduler surfaces carries a category, a retryable flag,
structured context and an optional chained cause, so call sites can log
``error.to_dict()`` instead of formatting messages by hand.

Manifesto:
    - **Typed Error Hierarchy:** Validation, lookup, admission and execution
      failures are different types, never a bare ``Exception``
    - **Synchronous validation:** Argument errors are raised by the call that
      registers the job, never deferred to fire time
    - **Isolated execution:** ``ExecutionError`` is built and logged by the
      worker dispatcher; it never crosses into the scheduler loop
    - **Error Chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      ChronoSpineError                            │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  InvalidArgumentError     NotFoundError     SchedulingError     │
        │  (VALIDATION, ValueError) (NOT_FOUND)       (SCHEDULING)        │
        │        │                                                         │
        │  InvalidExpressionError                     ExecutionError      │
        │  (expression, field)                        (EXECUTION)         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = InvalidArgumentError("period must be > 0", field="period", value=0)
    >>> error.category
    <ErrorCategory.VALIDATION: 'VALIDATION'>
    >>> isinstance(error, ValueError)
    True

    >>> err = NotFoundError("nightly-report")
    >>> err.to_dict()["message"]
    'Job not found: nightly-report'

Tags:
    error-handling, exception-hierarchy, error-context, chrono-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    SCHEDULING = "SCHEDULING"
    EXECUTION = "EXECUTION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover the metadata every scheduler error can have; anything
    else goes into ``metadata``. ``to_dict()`` keeps only the fields that
    were set.

    Attributes:
        job_name: Name of the job, ``None`` for anonymous jobs
        trigger: Short description of the trigger (``cron``, ``periodic``, ...)
        expression: Cron expression being parsed or evaluated
        scheduled_time: ISO timestamp the run was scheduled for
        metadata: Additional key-value pairs
    """

    job_name: str | None = None
    trigger: str | None = None
    expression: str | None = None
    scheduled_time: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_name", "trigger", "expression", "scheduled_time"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ChronoSpineError(Exception):
    """
    Base exception for all chrono-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ChronoSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SchedulingError("registry closed").with_context(job_name="nightly")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class InvalidArgumentError(ChronoSpineError, ValueError):
    """
    A job could not be constructed from the given arguments.

    Raised for a malformed cron expression, a non-positive period,
    ``times <= 1`` on the repeat forms, an unusable config payload or a unit
    of work that is neither a structured job nor a plain callable.
    Never retryable.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class InvalidExpressionError(InvalidArgumentError):
    """Cron expression cannot be parsed into valid field constraints."""

    def __init__(self, expression: Any, message: str, *, field: str | None = None):
        self.expression = expression
        super().__init__(
            f"Invalid cron expression {expression!r}: {message}",
            field=field,
            value=expression,
            context=ErrorContext(expression=str(expression), trigger="cron"),
        )


# =============================================================================
# LOOKUP / ADMISSION ERRORS
# =============================================================================


class NotFoundError(ChronoSpineError, LookupError):
    """No job is registered under the given name."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, name: str | None):
        self.name = name
        super().__init__(
            f"Job not found: {name}",
            context=ErrorContext(job_name=name),
        )


class SchedulingError(ChronoSpineError):
    """
    The registry or loop could not admit an entry.

    Distinct from argument validation: the arguments were fine, but the
    scheduler is shut down or the entry could not be armed.
    """

    default_category = ErrorCategory.SCHEDULING


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(ChronoSpineError):
    """
    A unit of work raised during a fire.

    Created by the worker dispatcher around the original exception, logged
    and counted there. Never re-raised into the scheduler loop.
    """

    default_category = ErrorCategory.EXECUTION

    def __init__(
        self,
        job_name: str | None,
        cause: BaseException,
        *,
        scheduled_time: str | None = None,
    ):
        self.job_name = job_name
        label = job_name or "<anonymous>"
        super().__init__(
            f"Job {label} failed: {type(cause).__name__}: {cause}",
            cause=cause,
            context=ErrorContext(job_name=job_name, scheduled_time=scheduled_time),
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ChronoSpineError):
        return error.category
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    if isinstance(error, LookupError):
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ChronoSpineError",
    "InvalidArgumentError",
    "InvalidExpressionError",
    "NotFoundError",
    "SchedulingError",
    "ExecutionError",
    "categorize_error",
]
