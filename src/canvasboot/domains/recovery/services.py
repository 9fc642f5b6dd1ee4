"""Recovery Domain Services.

Domain services coordinate between the RecoveryEngine aggregate,
RecoveryPlan entities, and the pipeline via a protocol-based
anti-corruption layer.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set, Union, runtime_checkable

from ..shared.hooks import GuardedHooks
from ..shared.kernel import ErrorKind, EventPublisherProtocol
from ..shared.telemetry import GuardedTelemetry
from .aggregates import RecoveryEngine
from .entities import RecoveryPlan
from .events import (
    ErrorClassified, ManualRecoveryRequired, RecoveryAttempted,
    RecoveryExhausted, RecoverySucceeded,
)
from .value_objects import RecoveryAction, RecoveryAttempt, RecoveryOutcome, RecoveryStrategy

logger = logging.getLogger(__name__)


@runtime_checkable
class RecoveryTarget(Protocol):
    """Protocol for the system being recovered (anti-corruption layer).

    The recovery domain never imports the pipeline. The composition root
    attaches an adapter implementing this protocol.
    """

    def has_recovery_budget(self) -> bool: ...

    async def execute(self, action: RecoveryAction, error: BaseException) -> bool: ...


@dataclass
class ErrorClassifier:
    """Thin service wrapper over RecoveryEngine.classify()."""
    engine: RecoveryEngine

    def classify(self, error: Union[BaseException, str]) -> ErrorKind:
        return self.engine.classify(error)


@dataclass
class RecoveryManager:
    """Drives bounded, per-kind recovery of pipeline failures.

    handle_error() is an explicit loop. Each iteration needs both a
    per-kind retry (strategy.max_retries) and remaining pipeline budget
    (target.has_recovery_budget()); whichever runs out first makes the
    kind terminal. Once terminal, further errors of that kind are no-ops
    until reset().

    Only one recovery runs at a time. Errors reported while a recovery
    is in progress (typically from the re-run it triggered) are ignored
    and the outer loop decides what happens next.
    """
    engine: RecoveryEngine = field(default_factory=RecoveryEngine.with_defaults)
    target: Optional[RecoveryTarget] = None
    hooks: Any = None
    telemetry: Any = None
    event_publisher: Optional[EventPublisherProtocol] = None
    max_history: int = 50

    _retry_counts: Dict[ErrorKind, int] = field(default_factory=dict, repr=False)
    _terminal: Set[ErrorKind] = field(default_factory=set, repr=False)
    _recovering: bool = field(default=False, repr=False)
    _history: List[RecoveryPlan] = field(default_factory=list, repr=False)

    COMPONENT = "RecoveryManager"

    def __post_init__(self) -> None:
        self.hooks = GuardedHooks(self.hooks)
        self.telemetry = GuardedTelemetry(self.telemetry)

    def attach(self, target: RecoveryTarget) -> None:
        self.target = target

    def classify(self, error: Union[BaseException, str]) -> ErrorKind:
        return self.engine.classify(error)

    @property
    def is_recovering(self) -> bool:
        return self._recovering

    def retry_count(self, kind: ErrorKind) -> int:
        return self._retry_counts.get(kind, 0)

    def is_terminal(self, kind: ErrorKind) -> bool:
        return kind in self._terminal

    async def handle_error(
        self,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Try to recover from ``error``.

        Returns:
            True if a recovery action succeeded, False otherwise.
        """
        if self._recovering:
            logger.warning("Recovery already in progress, ignoring: %s", error)
            return False

        kind = self.engine.classify(error)
        if kind in self._terminal:
            logger.info("Ignoring %s error, kind is terminal: %s", kind.value, error)
            return False

        plan = RecoveryPlan.create(str(error), context)
        plan.set_kind(kind)
        self._publish(ErrorClassified(error_message=str(error), kind=kind.value))
        self.telemetry.log(
            "ERROR", self.COMPONENT, f"Handling {kind.value} error",
            {"context": dict(context or {})}, error,
        )

        self._recovering = True
        try:
            strategy = self.engine.strategy_for(kind)
            if strategy is None:
                plan.complete(RecoveryOutcome.NO_STRATEGY)
                self._surface_manual(plan, error, context, "No recovery strategy available")
                return False
            plan.set_strategy(strategy)
            return await self._recover(plan, strategy, error, context)
        finally:
            self._recovering = False
            self._remember(plan)

    async def _recover(
        self,
        plan: RecoveryPlan,
        strategy: RecoveryStrategy,
        error: BaseException,
        context: Optional[Dict[str, Any]],
    ) -> bool:
        kind = strategy.kind
        loop = asyncio.get_running_loop()

        while self._retry_counts.get(kind, 0) < strategy.max_retries and self._has_budget():
            attempt = self._retry_counts.get(kind, 0) + 1
            self._retry_counts[kind] = attempt
            self.hooks.show_progress(
                f"{strategy.message} (attempt {attempt}/{strategy.max_retries})"
            )

            if not strategy.auto_recoverable:
                plan.complete(RecoveryOutcome.MANUAL)
                self._surface_manual(plan, error, context, strategy.message)
                return False

            delay_ms = strategy.delay_ms(attempt)
            logger.info(
                "Recovering from %s with %s in %.0fms (attempt %d/%d)",
                kind.value, strategy.action.value, delay_ms, attempt, strategy.max_retries,
            )
            await asyncio.sleep(delay_ms / 1000.0)

            started = loop.time()
            success, failure = await self._run_action(strategy.action, error)
            duration_ms = (loop.time() - started) * 1000
            plan.record_attempt(RecoveryAttempt(
                attempt=attempt,
                delay_ms=delay_ms,
                success=success,
                duration_ms=duration_ms,
                error=failure,
            ))
            self.telemetry.track_recovery_attempt(
                kind.value, strategy.action.value, success,
                {"attempt": attempt, "duration": duration_ms, "plan_id": plan.plan_id},
            )
            self._publish(RecoveryAttempted(
                plan_id=plan.plan_id,
                kind=kind.value,
                action=strategy.action.value,
                attempt=attempt,
                success=success,
                duration_ms=duration_ms,
            ))

            if success:
                self._retry_counts.pop(kind, None)
                self.hooks.hide_progress()
                plan.complete(RecoveryOutcome.RECOVERED)
                self._publish(RecoverySucceeded(
                    plan_id=plan.plan_id,
                    kind=kind.value,
                    attempts=attempt,
                    total_time_ms=plan.duration_ms,
                ))
                logger.info("Recovered from %s after %d attempt(s)", kind.value, attempt)
                return True

        self._terminal.add(kind)
        plan.complete(RecoveryOutcome.TERMINAL)
        self._publish(RecoveryExhausted(
            plan_id=plan.plan_id, kind=kind.value, attempts=len(plan.attempts),
        ))
        logger.error("Recovery exhausted for %s: %s", kind.value, error)
        self.telemetry.log(
            "CRITICAL", self.COMPONENT, f"Recovery exhausted for {kind.value}",
            {"attempts": len(plan.attempts)}, error,
        )
        self.hooks.show_terminal_failure(error, {
            **(context or {}),
            "kind": kind.value,
            "attempts": len(plan.attempts),
            "requires_reload": True,
        })
        return False

    async def _run_action(self, action: RecoveryAction, error: BaseException):
        if self.target is None:
            logger.warning("No recovery target attached, cannot run %s", action.value)
            return False, "no recovery target"
        try:
            return bool(await self.target.execute(action, error)), None
        except Exception as e:
            logger.warning("Recovery action %s failed: %s", action.value, e)
            return False, str(e)

    def _has_budget(self) -> bool:
        if self.target is None:
            return True
        try:
            return bool(self.target.has_recovery_budget())
        except Exception as e:
            logger.warning("Recovery budget check failed: %s", e)
            return False

    def _surface_manual(
        self,
        plan: RecoveryPlan,
        error: BaseException,
        context: Optional[Dict[str, Any]],
        reason: str,
    ) -> None:
        logger.error("Manual recovery required (%s): %s", reason, error)
        self._publish(ManualRecoveryRequired(
            plan_id=plan.plan_id,
            kind=plan.kind.value if plan.kind else ErrorKind.UNCLASSIFIED.value,
            reason=reason,
        ))
        self.hooks.show_terminal_failure(error, {
            **(context or {}),
            "kind": plan.kind.value if plan.kind else None,
            "reason": reason,
            "requires_reload": True,
        })

    def _remember(self, plan: RecoveryPlan) -> None:
        self._history.append(plan)
        if len(self._history) > self.max_history:
            self._history.pop(0)

    def _publish(self, event: Any) -> None:
        if self.event_publisher:
            try:
                self.event_publisher.publish(event)
            except Exception as e:
                logger.debug("Event publishing failed: %s", e)

    def history(self, n: int = 10) -> List[RecoveryPlan]:
        return self._history[-n:]

    def reset(self) -> None:
        """Clear per-kind counters and terminal kinds (user-initiated retry)."""
        self._retry_counts.clear()
        self._terminal.clear()

    def status(self) -> Dict[str, Any]:
        return {
            "recovering": self._recovering,
            "retry_counts": {k.value: v for k, v in self._retry_counts.items()},
            "terminal_kinds": sorted(k.value for k in self._terminal),
            "strategies": len(self.engine.strategies),
            "recent_plans": [plan.to_dict() for plan in self.history(5)],
        }
