"""Telemetry port shared by every bounded context.

The core records leveled events, named timers, resource loads and recovery
attempts through ``TelemetrySink``. Calls always go through
``GuardedTelemetry`` so a broken or missing sink never blocks loading or
recovery.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TelemetrySink(Protocol):
    """Protocol for recording boot telemetry (anti-corruption layer)."""

    def log(
        self,
        level: str,
        component: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> None: ...

    def start_timer(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> str: ...

    def end_timer(
        self, timer_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]: ...

    def track_resource_load(
        self,
        resource_type: str,
        name: str,
        duration_ms: float,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    def track_system_event(self, event: str, details: Optional[Dict[str, Any]] = None) -> None: ...

    def track_recovery_attempt(
        self,
        error_kind: str,
        strategy: str,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class NullTelemetry:
    """No-op sink used when no telemetry is configured."""

    def log(self, level, component, message, metadata=None, error=None) -> None:
        return None

    def start_timer(self, name, metadata=None) -> str:
        return f"timer_{name}"

    def end_timer(self, timer_id, metadata=None) -> Dict[str, Any]:
        return {"duration": 0.0}

    def track_resource_load(self, resource_type, name, duration_ms, success, metadata=None) -> None:
        return None

    def track_system_event(self, event, details=None) -> None:
        return None

    def track_recovery_attempt(self, error_kind, strategy, success, metadata=None) -> None:
        return None


class GuardedTelemetry:
    """Wraps any sink so that its failures are logged and absorbed.

    A ``None`` sink degrades to ``NullTelemetry``. Wrapping an already
    guarded sink reuses its inner sink.
    """

    def __init__(self, sink: Optional[Any] = None):
        if isinstance(sink, GuardedTelemetry):
            sink = sink.sink
        self.sink: Any = sink if sink is not None else NullTelemetry()

    def _call(self, method: str, default: Any, *args: Any) -> Any:
        fn = getattr(self.sink, method, None)
        if fn is None:
            return default
        try:
            return fn(*args)
        except Exception as e:
            logger.debug("Telemetry sink %s.%s failed: %s", type(self.sink).__name__, method, e)
            return default

    def log(self, level, component, message, metadata=None, error=None) -> None:
        self._call("log", None, level, component, message, metadata, error)

    def start_timer(self, name, metadata=None) -> str:
        timer_id = self._call("start_timer", None, name, metadata)
        return timer_id if isinstance(timer_id, str) else f"timer_{name}"

    def end_timer(self, timer_id, metadata=None) -> Dict[str, Any]:
        result = self._call("end_timer", None, timer_id, metadata)
        if not isinstance(result, dict) or "duration" not in result:
            return {"duration": 0.0}
        return result

    def track_resource_load(self, resource_type, name, duration_ms, success, metadata=None) -> None:
        self._call("track_resource_load", None, resource_type, name, duration_ms, success, metadata)

    def track_system_event(self, event, details=None) -> None:
        self._call("track_system_event", None, event, details)

    def track_recovery_attempt(self, error_kind, strategy, success, metadata=None) -> None:
        self._call("track_recovery_attempt", None, error_kind, strategy, success, metadata)
