"""
Tests for the logging module.

Tests verify:
- LogContext binds and unbinds context variables
- configure_logging picks the renderer and level
- Events logged by library code are capturable
"""

import threading

import pytest
import structlog
from structlog.contextvars import get_contextvars
from structlog.testing import capture_logs

from chronospine.logging import (
    LogContext,
    add_thread_name,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    service_metadata,
    unbind_context,
)


class TestContextManagement:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_bind_and_unbind(self):
        bind_context(job_name="nightly", scheduled_time="t")
        assert get_contextvars() == {"job_name": "nightly", "scheduled_time": "t"}
        unbind_context("scheduled_time")
        assert get_contextvars() == {"job_name": "nightly"}

    def test_log_context_is_scoped(self):
        bind_context(service="outer")
        with LogContext(job_name="heartbeat"):
            assert get_contextvars() == {"service": "outer", "job_name": "heartbeat"}
        assert get_contextvars() == {"service": "outer"}

    def test_nested_log_context_restores_outer_values(self):
        with LogContext(job_name="outer"):
            with LogContext(job_name="inner", scheduled_time="t"):
                assert get_contextvars() == {"job_name": "inner", "scheduled_time": "t"}
            assert get_contextvars() == {"job_name": "outer"}
        assert get_contextvars() == {}

    def test_log_context_unbinds_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext(job_name="failing"):
                raise RuntimeError("boom")
        assert "job_name" not in get_contextvars()


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_json_renderer(self):
        configure_logging(level="DEBUG", json_format=True)
        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)
        assert config["cache_logger_on_first_use"] is True

    def test_console_renderer(self):
        configure_logging(json_format=False)
        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.dev.ConsoleRenderer)

    def test_timestamp_optional(self):
        configure_logging(json_format=True, add_timestamp=False)
        processors = structlog.get_config()["processors"]
        assert not any(isinstance(p, structlog.processors.TimeStamper) for p in processors)

    def test_level_filters_debug(self):
        configure_logging(level="WARNING", json_format=True)
        wrapper = structlog.get_config()["wrapper_class"]
        assert wrapper.debug is wrapper.info
        assert wrapper.warning is not wrapper.info

    def test_service_metadata_added(self):
        event = service_metadata("report-scheduler")(None, "info", {"event": "x"})
        assert event["service.name"] == "report-scheduler"

    def test_thread_name_processor_in_chain(self):
        configure_logging(json_format=True)
        assert add_thread_name in structlog.get_config()["processors"]

    def test_thread_name_is_the_emitting_thread(self):
        seen = []
        worker = threading.Thread(
            target=lambda: seen.append(add_thread_name(None, "info", {})), name="chronospine-worker_0"
        )
        worker.start()
        worker.join()
        assert seen == [{"thread": "chronospine-worker_0"}]


class TestGetLogger:
    def test_events_are_capturable(self):
        logger = get_logger("chronospine.test")
        with capture_logs() as logs:
            logger.info("job.scheduled", job_name="heartbeat")
        assert logs == [{"event": "job.scheduled", "job_name": "heartbeat", "log_level": "info"}]
