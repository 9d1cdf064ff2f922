"""
Shared pytest fixtures and configuration for chrono-spine tests.

This module provides:
- Import path setup for the src layout
- Settings cache isolation
- Environment isolation for ``CHRONOSPINE_*`` variables
"""

import os
import sys
from pathlib import Path

import pytest

# Ensure chronospine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chronospine.settings import get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Drop CHRONOSPINE_* variables and the cached settings around every test."""
    for key in list(os.environ):
        if key.startswith("CHRONOSPINE_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
