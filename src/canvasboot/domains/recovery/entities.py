"""Recovery Domain Entities.

Entities have identity and mutable state. A RecoveryPlan is identified
by its plan_id and tracks one handle_error() call from classification
to its outcome.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..shared.kernel import ErrorKind
from .value_objects import RecoveryAttempt, RecoveryOutcome, RecoveryStrategy


class RecoveryPlanPhase(str, enum.Enum):
    """Lifecycle phases of a recovery plan.

    The plan moves strictly forward through these phases:
    CLASSIFY -> STRATEGIZE -> EXECUTE -> COMPLETED
    A plan may jump to COMPLETED from any phase (no strategy, manual
    recovery).
    """
    CLASSIFY = "CLASSIFY"
    STRATEGIZE = "STRATEGIZE"
    EXECUTE = "EXECUTE"
    COMPLETED = "COMPLETED"

    @property
    def next_phase(self) -> Optional[RecoveryPlanPhase]:
        """Return the next phase in the lifecycle, or None if completed."""
        order = list(RecoveryPlanPhase)
        idx = order.index(self)
        return order[idx + 1] if idx < len(order) - 1 else None


@dataclass
class RecoveryPlan:
    """Lifecycle-tracked recovery entity.

    Invariants:
        - Phase transitions are strictly forward (no going back).
        - Kind can only be set in CLASSIFY phase.
        - Strategy can only be set in STRATEGIZE phase.
        - Attempts can only be recorded in EXECUTE phase.
        - The outcome is set exactly once, moving the plan to COMPLETED.
    """
    plan_id: str
    error_message: str
    context: Dict[str, Any] = field(default_factory=dict)
    kind: Optional[ErrorKind] = None
    strategy: Optional[RecoveryStrategy] = None
    attempts: List[RecoveryAttempt] = field(default_factory=list)
    outcome: Optional[RecoveryOutcome] = None
    phase: RecoveryPlanPhase = RecoveryPlanPhase.CLASSIFY
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        error_message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> RecoveryPlan:
        """Factory: create a new plan in CLASSIFY phase."""
        return cls(
            plan_id=f"recovery_{uuid.uuid4().hex[:12]}",
            error_message=error_message,
            context=dict(context or {}),
        )

    def advance_phase(self) -> None:
        """Advance to the next lifecycle phase.

        Raises:
            ValueError: If already in COMPLETED phase.
        """
        next_p = self.phase.next_phase
        if next_p is None:
            raise ValueError(f"Cannot advance from {self.phase.value}")
        self.phase = next_p

    def set_kind(self, kind: ErrorKind) -> None:
        if self.phase != RecoveryPlanPhase.CLASSIFY:
            raise ValueError(f"Cannot classify in phase {self.phase.value}")
        self.kind = kind
        self.advance_phase()

    def set_strategy(self, strategy: RecoveryStrategy) -> None:
        if self.phase != RecoveryPlanPhase.STRATEGIZE:
            raise ValueError(f"Cannot set strategy in phase {self.phase.value}")
        self.strategy = strategy
        self.advance_phase()

    def record_attempt(self, attempt: RecoveryAttempt) -> None:
        if self.phase != RecoveryPlanPhase.EXECUTE:
            raise ValueError(f"Cannot record attempt in phase {self.phase.value}")
        self.attempts.append(attempt)

    def complete(self, outcome: RecoveryOutcome) -> None:
        """Set the outcome and move to COMPLETED.

        Raises:
            ValueError: If the plan is already completed.
        """
        if self.phase == RecoveryPlanPhase.COMPLETED:
            raise ValueError("Plan is already completed")
        self.outcome = outcome
        self.phase = RecoveryPlanPhase.COMPLETED
        self.finished_at = datetime.now()

    @property
    def succeeded(self) -> bool:
        return self.outcome == RecoveryOutcome.RECOVERED

    @property
    def duration_ms(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "plan_id": self.plan_id,
            "error_message": self.error_message,
            "phase": self.phase.value,
        }
        if self.kind:
            d["kind"] = self.kind.value
        if self.strategy:
            d["strategy"] = self.strategy.action.value
        if self.attempts:
            d["attempts"] = [a.to_dict() for a in self.attempts]
        if self.outcome:
            d["outcome"] = self.outcome.value
            d["duration_ms"] = round(self.duration_ms, 2)
        if self.context:
            d["context"] = {k: str(v) for k, v in self.context.items()}
        return d
