"""Shared fixtures for Layout Sentinel tests."""

import os

import pytest
from structlog.testing import capture_logs

from layout_sentinel.config import Settings


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


@pytest.fixture
def settings(monkeypatch):
    """Settings built from defaults only, ignoring the caller's environment."""
    for name in list(os.environ):
        if name.startswith("LAYOUT_SENTINEL_"):
            monkeypatch.delenv(name, raising=False)
    return Settings(_env_file=None)


@pytest.fixture
def captured_logs():
    """Capture structlog events emitted during a test."""
    with capture_logs() as logs:
        yield logs
