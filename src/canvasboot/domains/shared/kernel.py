"""Shared Kernel - Core types shared across the boot bounded contexts.

These types are intentionally minimal and shared between:
- Loading Context (raises tagged dependency/unit errors)
- Pipeline Context (wraps step failures, applies timeouts)
- Recovery Context (classifies errors, computes backoff delays)

Every context publishes its domain events through EventPublisherProtocol.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    """Recovery-relevant failure taxonomy.

    Errors raised inside canvasboot carry their kind directly (see
    BootError). Foreign errors are classified from their message text
    by the recovery engine's rule table.
    """
    DUPLICATE_RESOURCE_DECLARATION = "DuplicateResourceDeclaration"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    RESOURCE_CONTEXT_INVALID = "ResourceContextInvalid"
    REQUIRED_DEPENDENCY_MISSING = "RequiredDependencyMissing"
    OPERATION_TIMEOUT = "OperationTimeout"
    BRIDGE_UNAVAILABLE = "BridgeUnavailable"
    RESOURCE_EXHAUSTION = "ResourceExhaustion"
    UNCLASSIFIED = "Unclassified"


class BootError(Exception):
    """Base class for errors raised by the boot orchestrator.

    Attributes:
        kind: Optional structured classification. When set, the recovery
            engine uses it instead of matching the message text.
    """
    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class DependencyTimeoutError(BootError):
    """Dependencies did not become ready within the allotted time."""
    kind = ErrorKind.OPERATION_TIMEOUT

    def __init__(self, pending: Sequence[str]):
        self.pending = tuple(pending)
        super().__init__(
            f"Timeout waiting for dependencies: [{', '.join(self.pending)}]"
        )


class UnitLoadError(BootError):
    """A unit failed every load attempt.

    The kind is inherited from the last underlying cause when that cause
    is itself tagged, otherwise left unset for message classification.
    """

    def __init__(self, name: str, attempts: int, cause: BaseException):
        self.name = name
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Failed to load {name} after {attempts} attempts: {cause}",
            kind=getattr(cause, "kind", None),
        )


class CriticalUnitError(BootError):
    """A critical unit in a batch failed; carries the unit name."""

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(
            f"Critical unit {name} failed: {cause}",
            kind=getattr(cause, "kind", None),
        )


class StepTimeoutError(BootError):
    """An operation exceeded its time bound and was abandoned."""
    kind = ErrorKind.OPERATION_TIMEOUT


class BridgeUnavailableError(BootError):
    """The host bridge API could not be acquired."""
    kind = ErrorKind.BRIDGE_UNAVAILABLE


class CanvasInitError(BootError):
    """The canvas subsystem refused to initialize."""
    kind = ErrorKind.RESOURCE_CONTEXT_INVALID


class ValidationFailedError(BootError):
    """Post-initialization validation found missing capabilities."""
    kind = ErrorKind.REQUIRED_DEPENDENCY_MISSING

    def __init__(self, failed_checks: List[str]):
        self.failed_checks = list(failed_checks)
        super().__init__(f"Validation failed for: {', '.join(self.failed_checks)}")


class CriticalStepError(BootError):
    """A critical pipeline step failed and aborted initialization."""

    def __init__(self, step_name: str, cause: BaseException):
        self.step_name = step_name
        self.cause = cause
        super().__init__(
            f"Critical step failed: {step_name} - {cause}",
            kind=getattr(cause, "kind", None),
        )


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with an optional cap.

    delay(n) = min(base_ms * 2^(n-1), cap_ms) for the 1-based attempt n.
    The sequence is monotonically non-decreasing.

    Attributes:
        base_ms: Delay before the first retry.
        cap_ms: Upper bound for any single delay; None means uncapped.
    """
    base_ms: float
    cap_ms: Optional[float] = None

    def __post_init__(self) -> None:
        if self.base_ms < 0:
            raise ValueError(f"base_ms must be non-negative, got {self.base_ms}")
        if self.cap_ms is not None and self.cap_ms < 0:
            raise ValueError(f"cap_ms must be non-negative, got {self.cap_ms}")

    def delay_ms(self, attempt: int) -> float:
        """Delay in milliseconds before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = self.base_ms * (2 ** (attempt - 1))
        if self.cap_ms is not None:
            delay = min(delay, self.cap_ms)
        return delay

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0


@runtime_checkable
class EventPublisherProtocol(Protocol):
    """Publishes domain events for observability."""

    def publish(self, event: Any) -> None: ...


@dataclass
class EventCollector:
    """Simple in-memory event collector for domain events."""

    events: List[Any] = field(default_factory=list)
    max_events: int = 1000

    def publish(self, event: Any) -> None:
        if len(self.events) >= self.max_events:
            self.events.pop(0)
        self.events.append(event)
        logger.debug("Domain event: %s", getattr(event, "to_dict", lambda: event)())

    def get_recent(self, n: int = 10) -> List[Any]:
        if n <= 0:
            return []
        return self.events[-n:]

    def clear(self) -> None:
        self.events.clear()
