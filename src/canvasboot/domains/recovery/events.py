"""Recovery Domain Events.

Events emitted during the recovery lifecycle for observability.
All events are frozen dataclasses.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict


@dataclass(frozen=True)
class ErrorClassified:
    """Emitted when an error reaching the recovery manager is classified.

    Consumers:
    - Diagnostics (error kind distribution)
    """
    error_message: str
    kind: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "error_classified",
            "error_message": self.error_message,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class RecoveryAttempted:
    """Emitted after each recovery action has run."""
    plan_id: str
    kind: str
    action: str
    attempt: int
    success: bool
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "recovery_attempted",
            "plan_id": self.plan_id,
            "kind": self.kind,
            "action": self.action,
            "attempt": self.attempt,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class RecoverySucceeded:
    plan_id: str
    kind: str
    attempts: int
    total_time_ms: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "recovery_succeeded",
            "plan_id": self.plan_id,
            "kind": self.kind,
            "attempts": self.attempts,
            "total_time_ms": self.total_time_ms,
        }


@dataclass(frozen=True)
class ManualRecoveryRequired:
    """Emitted when the user has to reload the host.

    Consumers:
    - Host UI (reload prompt)
    """
    plan_id: str
    kind: str
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "manual_recovery_required",
            "plan_id": self.plan_id,
            "kind": self.kind,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RecoveryExhausted:
    """Emitted when a kind runs out of attempts and becomes terminal."""
    plan_id: str
    kind: str
    attempts: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "recovery_exhausted",
            "plan_id": self.plan_id,
            "kind": self.kind,
            "attempts": self.attempts,
        }
