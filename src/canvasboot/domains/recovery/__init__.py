"""Recovery Bounded Context.

Classifies pipeline failures into ErrorKinds, maps each kind to a
recovery strategy, and drives bounded backoff retries per kind until
recovery succeeds or the kind becomes terminal.
"""
from .value_objects import (
    ErrorPattern, RecoveryAction, RecoveryAttempt, RecoveryOutcome, RecoveryStrategy,
)
from .entities import RecoveryPlan, RecoveryPlanPhase
from .aggregates import RecoveryEngine
from .services import ErrorClassifier, RecoveryManager, RecoveryTarget
from .events import (
    ErrorClassified, ManualRecoveryRequired, RecoveryAttempted,
    RecoveryExhausted, RecoverySucceeded,
)

__all__ = [
    "ErrorPattern", "RecoveryAction", "RecoveryAttempt", "RecoveryOutcome",
    "RecoveryStrategy",
    "RecoveryPlan", "RecoveryPlanPhase",
    "RecoveryEngine",
    "ErrorClassifier", "RecoveryManager", "RecoveryTarget",
    "ErrorClassified", "ManualRecoveryRequired", "RecoveryAttempted",
    "RecoveryExhausted", "RecoverySucceeded",
]
