"""
Tests for the chrono-spine error hierarchy.

Tests verify:
- Categories and retryable defaults per error type
- Context and cause end up in to_dict()
- Built-in exception compatibility (ValueError, LookupError)
"""

import pytest

from chronospine.errors import (
    ChronoSpineError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    InvalidArgumentError,
    InvalidExpressionError,
    NotFoundError,
    SchedulingError,
    categorize_error,
)


class TestErrorContext:
    def test_to_dict_excludes_none(self):
        ctx = ErrorContext(job_name="nightly", trigger=None)
        assert ctx.to_dict() == {"job_name": "nightly"}

    def test_metadata_is_flattened(self):
        ctx = ErrorContext(expression="0 0 * * * ?", metadata={"attempt": 2})
        assert ctx.to_dict() == {"expression": "0 0 * * * ?", "attempt": 2}


class TestChronoSpineError:
    def test_defaults(self):
        err = ChronoSpineError("boom")
        assert err.category is ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_with_context_sets_known_fields_and_metadata(self):
        err = SchedulingError("registry closed").with_context(job_name="nightly", reason="stopped")
        assert err.context.job_name == "nightly"
        assert err.context.metadata == {"reason": "stopped"}

    def test_to_dict(self):
        cause = KeyError("missing")
        err = SchedulingError("cannot arm", cause=cause, context=ErrorContext(job_name="a"))
        data = err.to_dict()
        assert data["error_type"] == "SchedulingError"
        assert data["category"] == "SCHEDULING"
        assert data["context"] == {"job_name": "a"}
        assert data["cause"].startswith("KeyError")
        assert err.__cause__ is cause

    def test_overrides(self):
        err = SchedulingError("x", category=ErrorCategory.CONFIG, retryable=True)
        assert err.category is ErrorCategory.CONFIG
        assert err.retryable is True


class TestSubclasses:
    def test_invalid_argument_is_value_error(self):
        err = InvalidArgumentError("period must be > 0", field="period", value=0)
        assert isinstance(err, ValueError)
        assert err.category is ErrorCategory.VALIDATION
        data = err.to_dict()
        assert data["field"] == "period"
        assert data["value"] == "0"

    def test_invalid_expression(self):
        err = InvalidExpressionError("0 0 12 30 2 ?", "never matches", field="day_of_month")
        assert isinstance(err, InvalidArgumentError)
        assert "0 0 12 30 2 ?" in str(err)
        assert err.field == "day_of_month"
        assert err.context.trigger == "cron"

    def test_not_found_is_lookup_error(self):
        err = NotFoundError("heartbeat")
        assert isinstance(err, LookupError)
        assert err.name == "heartbeat"
        assert err.to_dict()["message"] == "Job not found: heartbeat"

    def test_execution_error(self):
        cause = RuntimeError("disk full")
        err = ExecutionError("nightly", cause, scheduled_time="2024-01-01T00:00:00+00:00")
        assert err.cause is cause
        assert "RuntimeError: disk full" in str(err)
        assert err.context.scheduled_time == "2024-01-01T00:00:00+00:00"

    def test_execution_error_for_anonymous_job(self):
        err = ExecutionError(None, ValueError("x"))
        assert "<anonymous>" in str(err)
        assert "job_name" not in err.to_dict().get("context", {})


class TestCategorizeError:
    @pytest.mark.parametrize(
        "error, category",
        [
            (NotFoundError("a"), ErrorCategory.NOT_FOUND),
            (ValueError("x"), ErrorCategory.VALIDATION),
            (TypeError("x"), ErrorCategory.VALIDATION),
            (KeyError("x"), ErrorCategory.NOT_FOUND),
            (OSError("x"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, error, category):
        assert categorize_error(error) is category
