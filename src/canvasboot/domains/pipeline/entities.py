"""Pipeline Domain Entities.

A PipelineRun is rebuilt on every execution of the step sequence, fresh
or recovery-driven.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .value_objects import StepOutcome


@dataclass
class PipelineRun:
    """Progress of one pass over the steps.

    ``recovery_attempts`` is copied from the pipeline when the run starts;
    it is the number of recovery-driven re-runs consumed so far.
    """
    run_id: str
    total_steps: int
    trigger: str = "initialize"
    recovery_attempts: int = 0
    current_step_index: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    outcomes: List[StepOutcome] = field(default_factory=list)
    succeeded: Optional[bool] = None
    error: Optional[str] = None

    @classmethod
    def start(cls, total_steps: int, trigger: str = "initialize", recovery_attempts: int = 0) -> PipelineRun:
        return cls(
            run_id=f"run_{uuid.uuid4().hex[:12]}",
            total_steps=total_steps,
            trigger=trigger,
            recovery_attempts=recovery_attempts,
        )

    def progress_percent(self, index: int) -> int:
        """Percent complete once step ``index`` (0-based) has started."""
        if self.total_steps <= 0:
            return 100
        return int(((index + 1) / self.total_steps) * 100 + 0.5)

    def record(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    def complete(self) -> None:
        self.succeeded = True
        self.end_time = datetime.now()

    def fail(self, error: BaseException) -> None:
        self.succeeded = False
        self.error = str(error)
        self.end_time = datetime.now()

    @property
    def duration_ms(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds() * 1000

    @property
    def failed_steps(self) -> List[str]:
        return [o.name for o in self.outcomes if not o.success]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "current_step_index": self.current_step_index,
            "total_steps": self.total_steps,
            "recovery_attempts": self.recovery_attempts,
            "start_time": self.start_time.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
        if self.succeeded is not None:
            d["succeeded"] = self.succeeded
        if self.error:
            d["error"] = self.error
        return d
