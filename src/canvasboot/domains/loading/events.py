"""Loading Domain Events.

Events emitted while units load, for observability and diagnostics.
All events are frozen dataclasses.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List


@dataclass(frozen=True)
class DependenciesTimedOut:
    """Emitted when a unit's dependencies never became ready."""
    unit_name: str
    pending: List[str] = field(default_factory=list)
    timeout_ms: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "dependencies_timed_out",
            "unit_name": self.unit_name,
            "pending": list(self.pending),
            "timeout_ms": self.timeout_ms,
        }


@dataclass(frozen=True)
class UnitAttemptFailed:
    """Emitted when a single load attempt fails and a retry may follow.

    Consumers:
    - Diagnostics (retry frequency per unit)
    """
    unit_name: str
    attempt: int
    error_message: str
    abandoned: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "unit_attempt_failed",
            "unit_name": self.unit_name,
            "attempt": self.attempt,
            "error_message": self.error_message,
            "abandoned": self.abandoned,
        }


@dataclass(frozen=True)
class UnitLoaded:
    unit_name: str
    attempts: int
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "unit_loaded",
            "unit_name": self.unit_name,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class UnitLoadFailed:
    """Emitted when a unit settles as FAILED."""
    unit_name: str
    attempts: int
    error_message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "unit_load_failed",
            "unit_name": self.unit_name,
            "attempts": self.attempts,
            "error_message": self.error_message,
        }
