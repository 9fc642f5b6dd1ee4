"""Pytest configuration for the canvasboot test suite."""

from __future__ import annotations

import os

import pytest

from canvasboot import server
from canvasboot.config import BootConfig


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "timing: tests that assert on wall-clock delays and use generous bounds",
    )


@pytest.fixture
def fast_config(tmp_path) -> BootConfig:
    """Config with millisecond-scale delays and a temporary resource root."""
    return BootConfig(
        poll_interval_ms=5,
        dependency_timeout_ms=200,
        unit_max_retries=1,
        unit_retry_delay_ms=0,
        bridge_timeout_ms=100,
        max_recovery_attempts=2,
        recovery_backoff_cap_ms=0,
        resource_root=tmp_path,
    )


@pytest.fixture
def clean_env(monkeypatch) -> None:
    """Remove every CANVASBOOT_* variable for the duration of a test."""
    for key in list(os.environ):
        if key.startswith("CANVASBOOT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_server_container():
    """Each test starts without a process-wide container."""
    server.set_container(None)
    yield
    server.set_container(None)
