"""Shared kernel for the boot bounded contexts."""
from .kernel import (
    BackoffPolicy,
    BootError,
    BridgeUnavailableError,
    CanvasInitError,
    CriticalStepError,
    CriticalUnitError,
    DependencyTimeoutError,
    ErrorKind,
    EventCollector,
    EventPublisherProtocol,
    StepTimeoutError,
    UnitLoadError,
    ValidationFailedError,
)
from .hooks import GuardedHooks, NullProgressHooks, ProgressHooks
from .telemetry import GuardedTelemetry, NullTelemetry, TelemetrySink

__all__ = [
    "BackoffPolicy",
    "BootError",
    "BridgeUnavailableError",
    "CanvasInitError",
    "CriticalStepError",
    "CriticalUnitError",
    "DependencyTimeoutError",
    "ErrorKind",
    "EventCollector",
    "EventPublisherProtocol",
    "StepTimeoutError",
    "UnitLoadError",
    "ValidationFailedError",
    "GuardedHooks",
    "NullProgressHooks",
    "ProgressHooks",
    "GuardedTelemetry",
    "NullTelemetry",
    "TelemetrySink",
]
