"""Pipeline Domain Events."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PipelineStarted:
    run_id: str
    trigger: str
    total_steps: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "pipeline_started",
            "run_id": self.run_id,
            "trigger": self.trigger,
            "total_steps": self.total_steps,
        }


@dataclass(frozen=True)
class StepFailed:
    """Emitted for every failed step, critical or not.

    Consumers:
    - Diagnostics (which steps are flaky)
    """
    run_id: str
    step_name: str
    critical: bool
    error_message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "step_failed",
            "run_id": self.run_id,
            "step_name": self.step_name,
            "critical": self.critical,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class PipelineReady:
    run_id: str
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "pipeline_ready",
            "run_id": self.run_id,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class PipelineFailed:
    run_id: str
    error_message: str
    failed_step: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "pipeline_failed",
            "run_id": self.run_id,
            "error_message": self.error_message,
            "failed_step": self.failed_step,
        }


@dataclass(frozen=True)
class PipelineTerminal:
    """Emitted when the recovery budget is spent and a reload is required."""
    recovery_attempts: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "pipeline_terminal",
            "recovery_attempts": self.recovery_attempts,
        }
