"""Pipeline Domain Services.

The InitializationPipeline runs the ordered boot steps and hands any
failure to an error handler (the RecoveryManager). PipelineRecoveryActions
is the adapter through which recovery strategies act back on the
pipeline and its collaborators.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import (
    Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Set,
    runtime_checkable,
)

from ..recovery.value_objects import RecoveryAction
from ..shared.hooks import GuardedHooks
from ..shared.kernel import CriticalStepError, EventPublisherProtocol, StepTimeoutError
from ..shared.telemetry import GuardedTelemetry
from .entities import PipelineRun
from .events import (
    PipelineFailed, PipelineReady, PipelineStarted, PipelineTerminal, StepFailed,
)
from .value_objects import PipelineState, PipelineStep, StepCallable, StepOutcome

logger = logging.getLogger(__name__)

Finalizer = Callable[[], Any]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ErrorHandler(Protocol):
    """What the pipeline delegates failures to (the RecoveryManager)."""

    @property
    def is_recovering(self) -> bool: ...

    async def handle_error(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> bool: ...

    def reset(self) -> None: ...


@runtime_checkable
class CompletionSignal(Protocol):
    """Run-scoped completion signal (the LoadCoordinator)."""

    def begin_run(self) -> None: ...

    def notify_all_loaded(self) -> None: ...


@runtime_checkable
class CanvasSubsystem(Protocol):
    """Opaque rendering surface. init() is callable again after cleanup()."""

    @property
    def ready(self) -> bool: ...

    async def init(self) -> bool: ...

    async def cleanup(self) -> None: ...


async def _invoke(fn: StepCallable) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


# ---------------------------------------------------------------------------
# InitializationPipeline
# ---------------------------------------------------------------------------


@dataclass
class InitializationPipeline:
    """Ordered boot steps with critical/optional failure semantics.

    A critical step's failure aborts the run and reaches the error
    handler. A non-critical step's failure is logged and never does.

    Recovery-driven re-runs (reinitialize()) consume ``max_recovery_attempts``;
    once spent the pipeline is TERMINAL until a user-initiated retry().
    """
    steps: Sequence[PipelineStep]
    coordinator: Optional[CompletionSignal] = None
    recovery: Optional[ErrorHandler] = None
    hooks: Any = None
    telemetry: Any = None
    event_publisher: Optional[EventPublisherProtocol] = None
    max_recovery_attempts: int = 3
    timeout_multiplier: float = 1.0

    _state: PipelineState = field(default=PipelineState.IDLE, repr=False)
    _run: Optional[PipelineRun] = field(default=None, repr=False)
    _recovery_attempts: int = field(default=0, repr=False)
    _finalizers: List[Finalizer] = field(default_factory=list, repr=False)
    _abandoned: Set["asyncio.Future[Any]"] = field(default_factory=set, repr=False)

    COMPONENT = "InitializationPipeline"

    def __post_init__(self) -> None:
        self.steps = tuple(self.steps)
        names = [step.name for step in self.steps]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate step names in pipeline: {names}")
        self.hooks = GuardedHooks(self.hooks)
        self.telemetry = GuardedTelemetry(self.telemetry)

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == PipelineState.READY

    @property
    def current_run(self) -> Optional[PipelineRun]:
        return self._run

    @property
    def recovery_attempts(self) -> int:
        return self._recovery_attempts

    def has_recovery_budget(self) -> bool:
        return self._recovery_attempts < self.max_recovery_attempts

    @property
    def recovery_in_progress(self) -> bool:
        return self.recovery is not None and bool(self.recovery.is_recovering)

    def add_finalizer(self, finalizer: Finalizer) -> None:
        """Run ``finalizer`` after the last step of every successful run."""
        self._finalizers.append(finalizer)

    def extend_timeouts(self, factor: float = 2.0) -> float:
        """Scale every step timeout by ``factor``. Returns the new multiplier."""
        if factor <= 0:
            raise ValueError(f"factor must be > 0, got {factor}")
        self.timeout_multiplier *= factor
        logger.info("Step timeouts extended, multiplier is now %.2f", self.timeout_multiplier)
        return self.timeout_multiplier

    # ---- entry points ----

    async def initialize(self) -> bool:
        """Run the boot steps.

        Returns:
            True if the pipeline is READY, either now or after recovery.
            False while another run or a recovery is in progress, when
            TERMINAL, or when recovery did not succeed.
        """
        if self._state == PipelineState.READY:
            logger.debug("Pipeline already ready")
            return True
        if self._state == PipelineState.INITIALIZING:
            logger.warning("Initialization already in progress, rejecting concurrent call")
            return False
        if self.recovery_in_progress:
            logger.warning("Recovery in progress, rejecting initialization request")
            return False
        if self._state == PipelineState.TERMINAL:
            logger.warning("Pipeline is terminal, a reload or retry() is required")
            return False
        return await self._execute("initialize")

    async def reinitialize(self) -> bool:
        """Recovery-driven re-run. Consumes one unit of recovery budget."""
        if self._state == PipelineState.READY:
            return True
        if self._state in (PipelineState.INITIALIZING, PipelineState.TERMINAL):
            return False
        if not self.has_recovery_budget():
            self._become_terminal()
            return False
        self._recovery_attempts += 1
        logger.info(
            "Recovery re-run %d/%d", self._recovery_attempts, self.max_recovery_attempts,
        )
        return await self._execute("recovery")

    async def retry(self) -> bool:
        """User-initiated retry: clear every budget and terminal state, then run."""
        if self._state == PipelineState.READY:
            return True
        if self._state == PipelineState.INITIALIZING:
            logger.warning("Initialization already in progress, ignoring retry")
            return False
        if self.recovery_in_progress:
            logger.warning("Recovery in progress, ignoring retry")
            return False
        self._recovery_attempts = 0
        if self.recovery is not None:
            self.recovery.reset()
        self._state = PipelineState.IDLE
        logger.info("Retrying initialization on request")
        return await self._execute("retry")

    # ---- execution ----

    async def _execute(self, trigger: str) -> bool:
        self._state = PipelineState.INITIALIZING
        run = PipelineRun.start(len(self.steps), trigger, self._recovery_attempts)
        self._run = run
        if self.coordinator is not None:
            self.coordinator.begin_run()
        self._publish(PipelineStarted(run_id=run.run_id, trigger=trigger, total_steps=run.total_steps))
        self.telemetry.log(
            "INFO", self.COMPONENT, "Starting initialization",
            {"trigger": trigger, "recovery_attempts": self._recovery_attempts},
        )

        try:
            for index, step in enumerate(self.steps):
                run.current_step_index = index
                await self._execute_step(run, index, step)
            await self._finalize()
            if self.coordinator is not None:
                self.coordinator.notify_all_loaded()
        except Exception as e:
            return await self._fail(run, e)

        self._state = PipelineState.READY
        run.complete()
        self.hooks.hide_progress()
        self._publish(PipelineReady(run_id=run.run_id, duration_ms=run.duration_ms))
        self.telemetry.log(
            "INFO", self.COMPONENT, "Initialization completed successfully",
            {"duration": run.duration_ms, "failed_steps": run.failed_steps},
        )
        self.telemetry.track_system_event(
            "initialization-success", {"duration": run.duration_ms, "trigger": trigger},
        )
        return True

    async def _execute_step(self, run: PipelineRun, index: int, step: PipelineStep) -> None:
        self.hooks.show_progress(f"{step.description} ({run.progress_percent(index)}%)")
        logger.info("[%d/%d] %s: %s", index + 1, run.total_steps, step.name, step.description)
        timer_id = self.telemetry.start_timer(
            f"init-step-{step.name}",
            {"step_index": index, "step_name": step.name, "critical": step.critical},
        )

        try:
            await self._run_step(step)
        except Exception as e:
            duration = self.telemetry.end_timer(timer_id, {"success": False})["duration"]
            run.record(StepOutcome(step.name, False, duration, step.critical, str(e)))
            self._publish(StepFailed(
                run_id=run.run_id, step_name=step.name,
                critical=step.critical, error_message=str(e),
            ))
            self.telemetry.log(
                "ERROR", self.COMPONENT, f"Step failed: {step.name}",
                {"step_index": index + 1, "critical": step.critical}, e,
            )
            if step.critical:
                raise CriticalStepError(step.name, e) from e
            logger.warning("Non-critical step %s failed, continuing: %s", step.name, e)
            return

        duration = self.telemetry.end_timer(timer_id, {"success": True})["duration"]
        run.record(StepOutcome(step.name, True, duration, step.critical))
        self.telemetry.log(
            "INFO", self.COMPONENT, f"Step completed: {step.name}", {"duration": duration},
        )

    async def _run_step(self, step: PipelineStep) -> None:
        if step.timeout_s is None:
            await _invoke(step.execute)
            return

        timeout = step.timeout_s * self.timeout_multiplier
        task = asyncio.ensure_future(_invoke(step.execute))
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning("Step %s exceeded %.1fs, abandoning it", step.name, timeout)
            self._abandoned.add(task)
            task.add_done_callback(self._on_abandoned_done)
            raise StepTimeoutError(f"Step {step.name} timed out after {timeout:.1f}s") from None

    def _on_abandoned_done(self, task: "asyncio.Future[Any]") -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Abandoned step finished with error: %s", task.exception())

    async def _finalize(self) -> None:
        for finalizer in list(self._finalizers):
            await _invoke(finalizer)

    async def _fail(self, run: PipelineRun, error: Exception) -> bool:
        self._state = PipelineState.FAILED
        run.fail(error)
        failed_step = getattr(error, "step_name", None)
        logger.error("Initialization failed: %s", error)
        self._publish(PipelineFailed(
            run_id=run.run_id, error_message=str(error), failed_step=failed_step,
        ))
        self.telemetry.track_system_event("initialization-failure", {
            "error": str(error),
            "current_step": run.current_step_index,
            "total_steps": run.total_steps,
        })

        if self.recovery is None:
            self.hooks.show_terminal_failure(error, {"step": failed_step})
            return False

        try:
            recovered = await self.recovery.handle_error(error, {
                "component": self.COMPONENT,
                "step": failed_step,
                "run_id": run.run_id,
            })
        except Exception as e:
            logger.error("Error handler failed: %s", e)
            recovered = False

        if recovered and self._state == PipelineState.READY:
            return True
        if self._state == PipelineState.FAILED and not self.has_recovery_budget():
            self._become_terminal()
        return False

    def _become_terminal(self) -> None:
        if self._state == PipelineState.TERMINAL:
            return
        self._state = PipelineState.TERMINAL
        logger.error(
            "Recovery budget exhausted after %d re-runs, pipeline is terminal",
            self._recovery_attempts,
        )
        self._publish(PipelineTerminal(recovery_attempts=self._recovery_attempts))
        self.telemetry.track_system_event(
            "initialization-terminal", {"recovery_attempts": self._recovery_attempts},
        )

    def _publish(self, event: Any) -> None:
        if self.event_publisher:
            try:
                self.event_publisher.publish(event)
            except Exception as e:
                logger.debug("Event publishing failed: %s", e)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "steps": [step.name for step in self.steps],
            "recovery_attempts": self._recovery_attempts,
            "max_recovery_attempts": self.max_recovery_attempts,
            "timeout_multiplier": self.timeout_multiplier,
            "recovering": self.recovery_in_progress,
            "abandoned_steps": len(self._abandoned),
            "run": self._run.to_dict() if self._run else None,
        }


# ---------------------------------------------------------------------------
# PipelineRecoveryActions (RecoveryTarget adapter)
# ---------------------------------------------------------------------------


@dataclass
class PipelineRecoveryActions:
    """Runs recovery actions against the pipeline and its collaborators.

    Every action except DECLARE_UNRECOVERABLE ends in one
    ``pipeline.reinitialize()``, which consumes recovery budget.
    """
    pipeline: InitializationPipeline
    canvas: Optional[CanvasSubsystem] = None
    bridge: Any = None
    coordinator: Any = None
    timeout_extension_factor: float = 2.0

    def has_recovery_budget(self) -> bool:
        return self.pipeline.has_recovery_budget()

    async def execute(self, action: RecoveryAction, error: BaseException) -> bool:
        handlers: Dict[RecoveryAction, Callable[[], Awaitable[bool]]] = {
            RecoveryAction.CLEANUP_AND_REINITIALIZE: self.cleanup_and_reinitialize,
            RecoveryAction.REINITIALIZE: self.pipeline.reinitialize,
            RecoveryAction.RECREATE_RESOURCE: self.recreate_resource,
            RecoveryAction.EXTEND_TIMEOUTS: self.extend_timeouts,
            RecoveryAction.FALLBACK_MODE: self.fallback_mode,
            RecoveryAction.RELEASE_RESOURCES: self.release_resources,
            RecoveryAction.DECLARE_UNRECOVERABLE: self.declare_unrecoverable,
            RecoveryAction.GENERIC_RETRY: self.generic_retry,
        }
        handler = handlers.get(action)
        if handler is None:
            logger.warning("No handler for recovery action %s", action)
            return False
        logger.info("Running recovery action %s for: %s", action.value, error)
        return await handler()

    async def cleanup_and_reinitialize(self) -> bool:
        await self._cleanup_canvas()
        self._reset_failed_units()
        return await self.pipeline.reinitialize()

    async def recreate_resource(self) -> bool:
        await self._cleanup_canvas()
        return await self.pipeline.reinitialize()

    async def extend_timeouts(self) -> bool:
        self.pipeline.extend_timeouts(self.timeout_extension_factor)
        return await self.pipeline.reinitialize()

    async def fallback_mode(self) -> bool:
        if self.bridge is None:
            logger.warning("No bridge to switch into fallback mode")
            return False
        self.bridge.enable_fallback()
        return await self.pipeline.reinitialize()

    async def release_resources(self) -> bool:
        await self._cleanup_canvas()
        self._reset_failed_units()
        return await self.pipeline.reinitialize()

    async def declare_unrecoverable(self) -> bool:
        logger.error("Failure declared unrecoverable, host reload required")
        return False

    async def generic_retry(self) -> bool:
        await self._cleanup_canvas()
        return await self.pipeline.reinitialize()

    async def _cleanup_canvas(self) -> None:
        if self.canvas is None:
            return
        try:
            await self.canvas.cleanup()
        except Exception as e:
            logger.warning("Canvas cleanup failed: %s", e)

    def _reset_failed_units(self) -> None:
        if self.coordinator is not None:
            self.coordinator.reset_failed()
