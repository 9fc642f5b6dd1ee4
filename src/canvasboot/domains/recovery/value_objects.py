"""Recovery Domain Value Objects.

Immutable types that carry no identity. Equality is structural.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..shared.kernel import BackoffPolicy, ErrorKind


class RecoveryAction(str, enum.Enum):
    """What a strategy does to the pipeline once its backoff has elapsed.

    Every action except DECLARE_UNRECOVERABLE ends in one recovery-driven
    re-run of the pipeline.
    """
    CLEANUP_AND_REINITIALIZE = "cleanup_and_reinitialize"
    REINITIALIZE = "reinitialize"
    RECREATE_RESOURCE = "recreate_resource"
    EXTEND_TIMEOUTS = "extend_timeouts"
    FALLBACK_MODE = "fallback_mode"
    RELEASE_RESOURCES = "release_resources"
    DECLARE_UNRECOVERABLE = "declare_unrecoverable"
    GENERIC_RETRY = "generic_retry"


class RecoveryOutcome(str, enum.Enum):
    """How a single handle_error() call ended."""
    RECOVERED = "recovered"
    MANUAL = "manual"
    TERMINAL = "terminal"
    NO_STRATEGY = "no_strategy"


@dataclass(frozen=True)
class ErrorPattern:
    """Maps an error message regex pattern to an ErrorKind.

    Attributes:
        kind: The error kind this pattern detects.
        pattern: Compiled regex (case-insensitive matching).
        priority: Higher values are matched first; ties keep
            registration order.
    """
    kind: ErrorKind
    pattern: re.Pattern  # type: ignore[type-arg]
    priority: int = 0

    @classmethod
    def from_string(
        cls,
        kind: ErrorKind,
        pattern_str: str,
        priority: int = 0,
    ) -> ErrorPattern:
        """Convenience factory from a raw regex string."""
        return cls(
            kind=kind,
            pattern=re.compile(pattern_str, re.IGNORECASE),
            priority=priority,
        )

    def matches(self, message: str) -> bool:
        return self.pattern.search(message) is not None


@dataclass(frozen=True)
class RecoveryStrategy:
    """Recovery policy for one error kind.

    Attributes:
        kind: The error kind this strategy handles.
        action: What to run once the backoff delay has elapsed.
        auto_recoverable: False means the user is prompted to reload
            instead of running the action.
        max_retries: Per-kind ceiling on recovery attempts.
        backoff_base_ms: Delay before the first attempt.
        backoff_cap_ms: Upper bound for any single delay.
        message: Progress text shown while recovering.
    """
    kind: ErrorKind
    action: RecoveryAction
    auto_recoverable: bool = True
    max_retries: int = 1
    backoff_base_ms: float = 1000
    backoff_cap_ms: Optional[float] = 5000
    message: str = "Recovering..."

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(base_ms=self.backoff_base_ms, cap_ms=self.backoff_cap_ms)

    def delay_ms(self, attempt: int) -> float:
        """min(base * 2^(attempt-1), cap) for the 1-based ``attempt``."""
        return self.backoff.delay_ms(attempt)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action": self.action.value,
            "auto_recoverable": self.auto_recoverable,
            "max_retries": self.max_retries,
            "backoff_base_ms": self.backoff_base_ms,
            "backoff_cap_ms": self.backoff_cap_ms,
            "message": self.message,
        }


@dataclass(frozen=True)
class RecoveryAttempt:
    """Record of one executed recovery action."""
    attempt: int
    delay_ms: float
    success: bool
    duration_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "attempt": self.attempt,
            "delay_ms": self.delay_ms,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.error:
            d["error"] = self.error
        return d
