"""Scheduler settings.

``SchedulerSettings`` holds everything the engine needs that is not part
of an individual job: worker pool size, thread names, the default cron
timezone, the skip-counting policy and logging options.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not at fire time
    - **Environment-driven:** ``CHRONOSPINE_*`` env vars and ``.env`` files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> settings = SchedulerSettings(max_workers=4)
    >>> settings.timezone
    'UTC'

    Environment::

        CHRONOSPINE_MAX_WORKERS=20
        CHRONOSPINE_TIMEZONE=Europe/Berlin
        CHRONOSPINE_COUNT_SKIPPED_RUNS=false

Tags:
    settings, configuration, pydantic, environment, chrono-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Scheduler engine configuration.

    Fields
    ──────
    max_workers              : Worker thread-pool size
    thread_name_prefix       : Prefix for worker thread names
    loop_thread_name         : Name of the scheduler loop thread
    timezone                 : Default IANA zone for cron evaluation
    count_skipped_runs       : Guard skips count toward a repeat trigger's times
    shutdown_timeout_seconds : How long stop() waits for the loop thread
    log_level                : Structlog log level
    log_json                 : JSON logs (None = auto-detect tty)
    """

    model_config = SettingsConfigDict(
        env_prefix="CHRONOSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Execution ────────────────────────────────────────────────
    max_workers: int = Field(default=10, ge=1)
    thread_name_prefix: str = "chronospine-worker"
    loop_thread_name: str = "chronospine-scheduler"
    shutdown_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Triggers ─────────────────────────────────────────────────
    timezone: str = "UTC"
    count_skipped_runs: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value!r}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> SchedulerSettings:
    """Return the process-wide settings, read once from the environment."""
    return SchedulerSettings()


__all__ = ["SchedulerSettings", "get_settings"]
