"""Tests for recovery domain events."""
from datetime import datetime

import pytest

from canvasboot.domains.recovery.events import (
    ErrorClassified,
    ManualRecoveryRequired,
    RecoveryAttempted,
    RecoveryExhausted,
    RecoverySucceeded,
)


class TestErrorClassified:
    def test_to_dict(self):
        e = ErrorClassified(error_message="not found", kind="ResourceNotFound")
        d = e.to_dict()
        assert d["event_type"] == "error_classified"
        assert d["kind"] == "ResourceNotFound"

    def test_frozen(self):
        e = ErrorClassified(error_message="x", kind="Unclassified")
        with pytest.raises(AttributeError):
            e.kind = "other"

    def test_timestamp_auto(self):
        assert isinstance(ErrorClassified(error_message="x", kind="y").timestamp, datetime)


class TestRecoveryAttempted:
    def test_to_dict(self):
        e = RecoveryAttempted(
            plan_id="p1", kind="OperationTimeout", action="extend_timeouts",
            attempt=2, success=False, duration_ms=3.5,
        )
        d = e.to_dict()
        assert d["event_type"] == "recovery_attempted"
        assert d["attempt"] == 2
        assert d["success"] is False


class TestRecoverySucceeded:
    def test_to_dict(self):
        d = RecoverySucceeded(plan_id="p1", kind="X", attempts=1, total_time_ms=10).to_dict()
        assert d["event_type"] == "recovery_succeeded"
        assert d["attempts"] == 1


class TestManualRecoveryRequired:
    def test_to_dict(self):
        d = ManualRecoveryRequired(plan_id="p1", kind="RequiredDependencyMissing", reason="reload").to_dict()
        assert d["event_type"] == "manual_recovery_required"
        assert d["reason"] == "reload"


class TestRecoveryExhausted:
    def test_to_dict(self):
        d = RecoveryExhausted(plan_id="p1", kind="ResourceNotFound", attempts=3).to_dict()
        assert d["event_type"] == "recovery_exhausted"
        assert d["attempts"] == 3
