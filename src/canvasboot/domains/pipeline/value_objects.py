"""Pipeline Domain Value Objects."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

StepCallable = Callable[[], Any]


class PipelineState(str, enum.Enum):
    """Initialization state machine.

    IDLE -> INITIALIZING -> {READY, FAILED}
    FAILED -> INITIALIZING (recovery-driven, bounded) -> ... -> TERMINAL
    """
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class PipelineStep:
    """One named initialization step.

    Attributes:
        name: Upper-case step identifier (e.g. "BRIDGE").
        description: Progress text shown while the step runs.
        execute: Zero-argument callable; may return an awaitable.
        critical: A critical step's failure aborts the run.
        timeout_s: Optional bound, scaled by the pipeline's timeout
            multiplier. A step that exceeds it is abandoned.
    """
    name: str
    description: str
    execute: StepCallable = field(compare=False)
    critical: bool = True
    timeout_s: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Step name must not be empty")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {self.timeout_s}")


@dataclass(frozen=True)
class StepOutcome:
    """Result of executing one step in a run."""
    name: str
    success: bool
    duration_ms: float
    critical: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
            "critical": self.critical,
        }
        if self.error:
            d["error"] = self.error
        return d
