"""Telemetry sink for the boot orchestrator.

The core only needs leveled events, named timers and periodic reports.
``DiagnosticLogger`` is the default in-process sink: it forwards every
record to the standard ``logging`` hierarchy under ``canvasboot.<component>``
and keeps a bounded buffer from which diagnostic reports are built.

The core wraps whichever sink it is given in ``GuardedTelemetry`` (see
``canvasboot.domains.shared.telemetry``).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from ..domains.shared.telemetry import GuardedTelemetry, NullTelemetry, TelemetrySink

logger = logging.getLogger(__name__)

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

ReportCallback = Callable[[Dict[str, Any], str], None]

__all__ = ["DiagnosticLogger", "GuardedTelemetry", "NullTelemetry", "TelemetrySink"]


@dataclass
class _Timer:
    name: str
    started: float
    metadata: Dict[str, Any]


@dataclass
class DiagnosticLogger:
    """In-process telemetry sink with timers, buffers and reports.

    Attributes:
        max_entries: Size of each bounded buffer (logs, resource loads,
            system events, recovery attempts, durations per timer name).
        auto_report_error_threshold: Number of ERROR records after which an
            automatic report is emitted to ``on_report`` subscribers.
            Zero disables automatic reporting.
    """
    max_entries: int = 500
    auto_report_error_threshold: int = 5
    session_id: str = field(default_factory=lambda: f"session_{uuid.uuid4().hex[:12]}")

    _logs: Deque[Dict[str, Any]] = field(init=False, repr=False)
    _resource_loads: Deque[Dict[str, Any]] = field(init=False, repr=False)
    _system_events: Deque[Dict[str, Any]] = field(init=False, repr=False)
    _recovery_attempts: Deque[Dict[str, Any]] = field(init=False, repr=False)
    _timers: Dict[str, _Timer] = field(default_factory=dict, repr=False)
    _durations: Dict[str, Deque[float]] = field(default_factory=dict, repr=False)
    _level_counts: Counter = field(default_factory=Counter, repr=False)
    _report_callbacks: List[ReportCallback] = field(default_factory=list, repr=False)
    _errors_since_report: int = field(default=0, repr=False)
    _periodic_task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self._logs = deque(maxlen=self.max_entries)
        self._resource_loads = deque(maxlen=self.max_entries)
        self._system_events = deque(maxlen=self.max_entries)
        self._recovery_attempts = deque(maxlen=self.max_entries)

    # ---- recording ----

    def log(
        self,
        level: str,
        component: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        level_name = level.upper()
        entry: Dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "level": level_name,
            "component": component,
            "message": message,
            "metadata": dict(metadata or {}),
        }
        if error is not None:
            entry["error"] = {"type": type(error).__name__, "message": str(error)}
        self._logs.append(entry)
        self._level_counts[level_name] += 1

        logging.getLogger(f"canvasboot.{component}").log(
            _LEVELS.get(level_name, logging.INFO),
            "%s %s",
            message,
            entry["metadata"] or "",
            exc_info=error if level_name in ("ERROR", "CRITICAL") and error is not None else None,
        )

        if level_name in ("ERROR", "CRITICAL"):
            self._errors_since_report += 1
            self._check_auto_report()

    def start_timer(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        timer_id = f"{name}_{uuid.uuid4().hex[:8]}"
        self._timers[timer_id] = _Timer(name, time.perf_counter(), dict(metadata or {}))
        return timer_id

    def end_timer(self, timer_id: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        timer = self._timers.pop(timer_id, None)
        if timer is None:
            logger.debug("Unknown timer id %s", timer_id)
            return {"duration": 0.0}
        duration = (time.perf_counter() - timer.started) * 1000
        self._durations.setdefault(timer.name, deque(maxlen=self.max_entries)).append(duration)
        return {
            "name": timer.name,
            "duration": duration,
            "metadata": {**timer.metadata, **(metadata or {})},
        }

    def track_resource_load(
        self,
        resource_type: str,
        name: str,
        duration_ms: float,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._resource_loads.append({
            "timestamp": datetime.now().isoformat(),
            "type": resource_type,
            "name": name,
            "duration": duration_ms,
            "success": success,
            "metadata": dict(metadata or {}),
        })

    def track_system_event(self, event: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._system_events.append({
            "timestamp": datetime.now().isoformat(),
            "event": event,
            "details": dict(details or {}),
        })

    def track_recovery_attempt(
        self,
        error_kind: str,
        strategy: str,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._recovery_attempts.append({
            "timestamp": datetime.now().isoformat(),
            "error_kind": error_kind,
            "strategy": strategy,
            "success": success,
            "metadata": dict(metadata or {}),
        })

    # ---- reporting ----

    def on_report(self, callback: ReportCallback) -> None:
        """Subscribe to generated reports; called with (report, trigger)."""
        self._report_callbacks.append(callback)

    def generate_report(self, log_level: str = "INFO") -> Dict[str, Any]:
        """Build a diagnostic report from the buffered records."""
        threshold = _LEVELS.get(log_level.upper(), logging.INFO)
        logs = [
            entry for entry in self._logs
            if _LEVELS.get(entry["level"], logging.INFO) >= threshold
        ]
        loads = list(self._resource_loads)
        failed_loads = [entry for entry in loads if not entry["success"]]
        recoveries = list(self._recovery_attempts)
        return {
            "session_id": self.session_id,
            "generated_at": datetime.now().isoformat(),
            "summary": {
                "log_counts": dict(self._level_counts),
                "resource_loads": len(loads),
                "failed_resource_loads": len(failed_loads),
                "recovery_attempts": len(recoveries),
                "successful_recoveries": sum(1 for r in recoveries if r["success"]),
            },
            "performance": {
                name: {
                    "count": len(values),
                    "average_ms": sum(values) / len(values),
                    "max_ms": max(values),
                }
                for name, values in self._durations.items()
                if values
            },
            "errors": [entry for entry in self._logs if entry["level"] in ("ERROR", "CRITICAL")],
            "resource_loads": loads,
            "recovery_attempts": recoveries,
            "system_events": list(self._system_events),
            "logs": logs,
        }

    def emit_report(self, trigger: str = "manual") -> Dict[str, Any]:
        """Generate a report and hand it to every subscriber."""
        report = self.generate_report()
        self._errors_since_report = 0
        for callback in list(self._report_callbacks):
            try:
                callback(report, trigger)
            except Exception as e:
                logger.warning("Report callback failed: %s", e)
        return report

    def _check_auto_report(self) -> None:
        if self.auto_report_error_threshold <= 0:
            return
        if self._errors_since_report >= self.auto_report_error_threshold:
            self.emit_report(trigger="auto")

    def start_periodic_reports(self, interval_s: float) -> "asyncio.Task[None]":
        """Emit a report every ``interval_s`` seconds on the running loop."""
        if self._periodic_task is not None and not self._periodic_task.done():
            return self._periodic_task

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_s)
                self.emit_report(trigger="periodic")

        self._periodic_task = asyncio.get_running_loop().create_task(_loop())
        return self._periodic_task

    def stop_periodic_reports(self) -> None:
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "log_entries": len(self._logs),
            "active_timers": len(self._timers),
            "report_subscribers": len(self._report_callbacks),
        }

    def clear(self) -> None:
        self._logs.clear()
        self._resource_loads.clear()
        self._system_events.clear()
        self._recovery_attempts.clear()
        self._timers.clear()
        self._durations.clear()
        self._level_counts.clear()
        self._errors_since_report = 0
