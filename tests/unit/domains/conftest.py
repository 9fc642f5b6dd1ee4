"""Pytest fixtures for domain tests.

These fixtures support testing the boot bounded contexts:
- Loading Context
- Pipeline Context
- Recovery Context
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from canvasboot.domains.loading.services import DependencyRegistry
from canvasboot.domains.shared.kernel import EventCollector


@pytest.fixture
def event_collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def telemetry_sink() -> MagicMock:
    """Telemetry sink that records every call and returns real timer results."""
    sink = MagicMock()
    sink.start_timer.side_effect = lambda name, metadata=None: f"{name}_timer"
    sink.end_timer.return_value = {"duration": 1.0}
    return sink


@pytest.fixture
def fast_registry() -> DependencyRegistry:
    return DependencyRegistry(poll_interval_ms=5)
