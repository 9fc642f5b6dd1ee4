"""Tests for InitializationPipeline and PipelineRecoveryActions."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from canvasboot.domains.pipeline.events import (
    PipelineFailed,
    PipelineReady,
    PipelineStarted,
    PipelineTerminal,
    StepFailed,
)
from canvasboot.domains.pipeline.services import (
    InitializationPipeline,
    PipelineRecoveryActions,
)
from canvasboot.domains.pipeline.value_objects import PipelineState, PipelineStep
from canvasboot.domains.recovery.aggregates import RecoveryEngine
from canvasboot.domains.recovery.services import RecoveryManager
from canvasboot.domains.recovery.value_objects import RecoveryAction
from canvasboot.domains.shared.kernel import (
    CriticalStepError,
    ErrorKind,
    EventCollector,
    StepTimeoutError,
)


class Recorder:
    """Collects the names of the steps that ran."""

    def __init__(self):
        self.ran = []

    def step(self, name, error=None, critical=True, timeout_s=None, delay=0.0):
        async def execute():
            self.ran.append(name)
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error

        return PipelineStep(name, f"Running {name.lower()}", execute, critical, timeout_s)


class FlakyStep:
    """Raises the queued errors one call at a time, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)


def _pipeline(steps, **kwargs):
    return InitializationPipeline(steps=steps, **kwargs)


# =============================================================================
# Happy path
# =============================================================================


class TestInitialize:
    @pytest.mark.asyncio
    async def test_runs_steps_in_order(self):
        rec = Recorder()
        events = EventCollector()
        pipeline = _pipeline(
            [rec.step("A"), rec.step("B"), rec.step("C")], event_publisher=events,
        )

        assert await pipeline.initialize() is True

        assert rec.ran == ["A", "B", "C"]
        assert pipeline.state == PipelineState.READY
        assert pipeline.is_ready
        assert isinstance(events.events[0], PipelineStarted)
        assert isinstance(events.events[-1], PipelineReady)
        assert pipeline.current_run.succeeded is True

    @pytest.mark.asyncio
    async def test_sync_steps_are_supported(self):
        called = []
        pipeline = _pipeline([PipelineStep("SYNC", "sync", lambda: called.append(1))])
        assert await pipeline.initialize() is True
        assert called == [1]

    @pytest.mark.asyncio
    async def test_progress_hooks(self):
        rec = Recorder()
        hooks = MagicMock()
        pipeline = _pipeline([rec.step("A"), rec.step("B")], hooks=hooks)

        await pipeline.initialize()

        texts = [c.args[0] for c in hooks.show_progress.call_args_list]
        assert texts == ["Running a (50%)", "Running b (100%)"]
        hooks.hide_progress.assert_called_once()

    @pytest.mark.asyncio
    async def test_completion_signal_is_run_scoped(self):
        rec = Recorder()
        coordinator = MagicMock()
        pipeline = _pipeline([rec.step("A")], coordinator=coordinator)

        await pipeline.initialize()

        coordinator.begin_run.assert_called_once()
        coordinator.notify_all_loaded.assert_called_once()

    @pytest.mark.asyncio
    async def test_idempotent_when_ready(self):
        rec = Recorder()
        pipeline = _pipeline([rec.step("A")])

        await pipeline.initialize()
        assert await pipeline.initialize() is True

        assert rec.ran == ["A"]

    @pytest.mark.asyncio
    async def test_concurrent_initialize_rejected(self):
        gate = asyncio.Event()

        async def wait():
            await gate.wait()

        pipeline = _pipeline([PipelineStep("WAIT", "waiting", wait)])
        first = asyncio.create_task(pipeline.initialize())
        await asyncio.sleep(0.01)

        assert pipeline.state == PipelineState.INITIALIZING
        assert await pipeline.initialize() is False

        gate.set()
        assert await first is True

    @pytest.mark.asyncio
    async def test_finalizers_run_after_last_step(self):
        rec = Recorder()
        pipeline = _pipeline([rec.step("A")])
        pipeline.add_finalizer(lambda: rec.ran.append("finalizer"))

        await pipeline.initialize()

        assert rec.ran == ["A", "finalizer"]

    @pytest.mark.asyncio
    async def test_failing_finalizer_fails_the_run(self):
        rec = Recorder()
        coordinator = MagicMock()
        pipeline = _pipeline([rec.step("A")], coordinator=coordinator)

        def broken():
            raise RuntimeError("announce failed")

        pipeline.add_finalizer(broken)

        assert await pipeline.initialize() is False
        assert pipeline.state == PipelineState.FAILED
        coordinator.notify_all_loaded.assert_not_called()

    def test_duplicate_step_names_rejected(self):
        rec = Recorder()
        with pytest.raises(ValueError):
            _pipeline([rec.step("A"), rec.step("A")])

    @pytest.mark.asyncio
    async def test_telemetry_timers_per_step(self):
        rec = Recorder()
        sink = MagicMock()
        pipeline = _pipeline([rec.step("A")], telemetry=sink)

        await pipeline.initialize()

        assert sink.start_timer.call_args.args[0] == "init-step-A"
        assert sink.track_system_event.call_args.args[0] == "initialization-success"


# =============================================================================
# Failures
# =============================================================================


class TestStepFailures:
    @pytest.mark.asyncio
    async def test_non_critical_failure_continues(self):
        rec = Recorder()
        events = EventCollector()
        recovery = MagicMock(is_recovering=False)
        recovery.handle_error = AsyncMock()
        pipeline = _pipeline(
            [
                rec.step("A"),
                rec.step("OPTIONAL", error=RuntimeError("optional broke"), critical=False),
                rec.step("C"),
            ],
            recovery=recovery,
            event_publisher=events,
        )

        assert await pipeline.initialize() is True

        assert rec.ran == ["A", "OPTIONAL", "C"]
        recovery.handle_error.assert_not_awaited()
        failed = [e for e in events.events if isinstance(e, StepFailed)]
        assert len(failed) == 1
        assert failed[0].critical is False
        assert pipeline.current_run.failed_steps == ["OPTIONAL"]

    @pytest.mark.asyncio
    async def test_critical_failure_without_recovery(self):
        rec = Recorder()
        hooks = MagicMock()
        events = EventCollector()
        pipeline = _pipeline(
            [rec.step("A", error=RuntimeError("boom")), rec.step("B")],
            hooks=hooks,
            event_publisher=events,
        )

        assert await pipeline.initialize() is False

        assert rec.ran == ["A"]
        assert pipeline.state == PipelineState.FAILED
        error = hooks.show_terminal_failure.call_args.args[0]
        assert isinstance(error, CriticalStepError)
        assert str(error) == "Critical step failed: A - boom"
        failed = next(e for e in events.events if isinstance(e, PipelineFailed))
        assert failed.failed_step == "A"

    @pytest.mark.asyncio
    async def test_critical_failure_goes_to_recovery(self):
        rec = Recorder()
        hooks = MagicMock()
        recovery = MagicMock(is_recovering=False)
        recovery.handle_error = AsyncMock(return_value=False)
        pipeline = _pipeline(
            [rec.step("A", error=RuntimeError("boom"))], recovery=recovery, hooks=hooks,
        )

        assert await pipeline.initialize() is False

        error, context = recovery.handle_error.await_args.args
        assert isinstance(error, CriticalStepError)
        assert isinstance(error.__cause__, RuntimeError)
        assert context["step"] == "A"
        assert context["component"] == "InitializationPipeline"
        # the recovery manager owns the failure view
        hooks.show_terminal_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_raising_error_handler_is_absorbed(self):
        rec = Recorder()
        recovery = MagicMock(is_recovering=False)
        recovery.handle_error = AsyncMock(side_effect=RuntimeError("handler bug"))
        pipeline = _pipeline([rec.step("A", error=RuntimeError("boom"))], recovery=recovery)

        assert await pipeline.initialize() is False
        assert pipeline.state == PipelineState.FAILED

    @pytest.mark.asyncio
    async def test_step_timeout_abandons_step(self):
        rec = Recorder()
        pipeline = _pipeline([rec.step("SLOW", timeout_s=0.03, delay=0.2)])

        assert await pipeline.initialize() is False

        run = pipeline.current_run
        assert "timed out" in run.error
        assert pipeline.status()["abandoned_steps"] == 1
        await asyncio.sleep(0.25)
        assert pipeline.status()["abandoned_steps"] == 0

    @pytest.mark.asyncio
    async def test_step_timeout_error_keeps_timeout_kind(self):
        recovery = MagicMock(is_recovering=False)
        recovery.handle_error = AsyncMock(return_value=False)
        rec = Recorder()
        pipeline = _pipeline([rec.step("SLOW", timeout_s=0.02, delay=0.1)], recovery=recovery)

        await pipeline.initialize()

        error = recovery.handle_error.await_args.args[0]
        assert isinstance(error.__cause__, StepTimeoutError)
        assert error.kind == ErrorKind.OPERATION_TIMEOUT

    @pytest.mark.asyncio
    async def test_extended_timeouts_apply_to_next_run(self):
        rec = Recorder()
        pipeline = _pipeline([rec.step("SLOW", timeout_s=0.05, delay=0.1)])

        assert await pipeline.initialize() is False
        assert pipeline.extend_timeouts(4.0) == 4.0
        assert await pipeline.retry() is True

    def test_extend_timeouts_rejects_non_positive_factor(self):
        with pytest.raises(ValueError):
            _pipeline([]).extend_timeouts(0)


# =============================================================================
# Budget, terminal state and retry
# =============================================================================


class TestRecoveryBudget:
    @pytest.mark.asyncio
    async def test_reinitialize_consumes_budget(self):
        step = FlakyStep(RuntimeError("one"), RuntimeError("two"))
        pipeline = _pipeline([PipelineStep("FLAKY", "flaky", step)], max_recovery_attempts=3)

        assert await pipeline.initialize() is False
        assert await pipeline.reinitialize() is False
        assert await pipeline.reinitialize() is True

        assert pipeline.recovery_attempts == 2
        assert pipeline.current_run.trigger == "recovery"

    @pytest.mark.asyncio
    async def test_exhausted_budget_is_terminal(self):
        events = EventCollector()
        step = FlakyStep(*[RuntimeError(str(i)) for i in range(10)])
        pipeline = _pipeline(
            [PipelineStep("FLAKY", "flaky", step)],
            max_recovery_attempts=1,
            event_publisher=events,
        )

        await pipeline.initialize()
        assert await pipeline.reinitialize() is False
        assert await pipeline.reinitialize() is False

        assert pipeline.state == PipelineState.TERMINAL
        assert step.calls == 2
        assert any(isinstance(e, PipelineTerminal) for e in events.events)
        assert await pipeline.initialize() is False
        assert step.calls == 2

    @pytest.mark.asyncio
    async def test_zero_budget_never_reruns(self):
        step = FlakyStep(RuntimeError("boom"))
        pipeline = _pipeline([PipelineStep("FLAKY", "flaky", step)], max_recovery_attempts=0)

        await pipeline.initialize()
        assert await pipeline.reinitialize() is False

        assert pipeline.state == PipelineState.TERMINAL
        assert step.calls == 1

    @pytest.mark.asyncio
    async def test_reinitialize_when_ready(self):
        pipeline = _pipeline([PipelineStep("OK", "ok", lambda: None)])
        await pipeline.initialize()
        assert await pipeline.reinitialize() is True
        assert pipeline.recovery_attempts == 0

    @pytest.mark.asyncio
    async def test_retry_clears_terminal_state_and_budgets(self):
        step = FlakyStep(RuntimeError("one"), RuntimeError("two"))
        recovery = MagicMock(is_recovering=False)
        recovery.handle_error = AsyncMock(return_value=False)
        pipeline = _pipeline(
            [PipelineStep("FLAKY", "flaky", step)],
            recovery=recovery,
            max_recovery_attempts=1,
        )
        await pipeline.initialize()
        await pipeline.reinitialize()
        assert pipeline.state == PipelineState.TERMINAL

        assert await pipeline.retry() is True

        recovery.reset.assert_called_once()
        assert pipeline.recovery_attempts == 0
        assert pipeline.state == PipelineState.READY
        assert pipeline.current_run.trigger == "retry"

    @pytest.mark.asyncio
    async def test_retry_when_ready_is_noop(self):
        step = FlakyStep()
        pipeline = _pipeline([PipelineStep("OK", "ok", step)])
        await pipeline.initialize()
        assert await pipeline.retry() is True
        assert step.calls == 1

    @pytest.mark.asyncio
    async def test_status(self):
        pipeline = _pipeline([PipelineStep("OK", "ok", lambda: None)], max_recovery_attempts=2)
        status = pipeline.status()
        assert status["state"] == "idle"
        assert status["run"] is None
        await pipeline.initialize()
        status = pipeline.status()
        assert status["state"] == "ready"
        assert status["steps"] == ["OK"]
        assert status["max_recovery_attempts"] == 2
        assert status["timeout_multiplier"] == 1.0
        assert status["run"]["succeeded"] is True


# =============================================================================
# Pipeline + RecoveryManager
# =============================================================================


def _wired(steps, max_recovery_attempts=3, backoff_cap_ms=0, **actions_kwargs):
    hooks = MagicMock()
    manager = RecoveryManager(
        engine=RecoveryEngine.with_defaults(backoff_cap_ms=backoff_cap_ms), hooks=hooks,
    )
    pipeline = _pipeline(
        steps, recovery=manager, hooks=hooks, max_recovery_attempts=max_recovery_attempts,
    )
    manager.attach(PipelineRecoveryActions(pipeline=pipeline, **actions_kwargs))
    return pipeline, manager, hooks


class TestRecoveryIntegration:
    @pytest.mark.asyncio
    async def test_recovers_from_duplicate_declaration(self):
        step = FlakyStep(RuntimeError("Identifier 'ToolManager' has already been declared"))
        canvas = MagicMock()
        canvas.cleanup = AsyncMock()
        coordinator = MagicMock()
        pipeline, manager, _ = _wired(
            [PipelineStep("CORE_UNITS", "core", step)], canvas=canvas, coordinator=coordinator,
        )

        assert await pipeline.initialize() is True

        assert pipeline.state == PipelineState.READY
        assert pipeline.recovery_attempts == 1
        assert step.calls == 2
        canvas.cleanup.assert_awaited_once()
        coordinator.reset_failed.assert_called_once()
        assert manager.retry_count(ErrorKind.DUPLICATE_RESOURCE_DECLARATION) == 0

    @pytest.mark.asyncio
    async def test_pipeline_budget_stricter_than_strategy(self):
        step = FlakyStep(*[StepTimeoutError("slow host") for _ in range(10)])
        pipeline, manager, hooks = _wired(
            [PipelineStep("BRIDGE", "bridge", step)], max_recovery_attempts=1,
        )

        assert await pipeline.initialize() is False

        assert pipeline.state == PipelineState.TERMINAL
        assert pipeline.recovery_attempts == 1
        assert pipeline.timeout_multiplier == 2.0
        assert step.calls == 2
        assert manager.is_terminal(ErrorKind.OPERATION_TIMEOUT)
        hooks.show_terminal_failure.assert_called()

    @pytest.mark.asyncio
    async def test_unrecoverable_kind_surfaces_manual_recovery(self):
        step = FlakyStep(RuntimeError("Required component ToolManager not found"))
        pipeline, manager, hooks = _wired([PipelineStep("CORE_UNITS", "core", step)])

        assert await pipeline.initialize() is False

        assert pipeline.state == PipelineState.FAILED
        assert pipeline.recovery_attempts == 0
        assert step.calls == 1
        context = hooks.show_terminal_failure.call_args.args[1]
        assert context["requires_reload"] is True

    @pytest.mark.asyncio
    async def test_user_retry_after_exhaustion(self):
        step = FlakyStep(*[StepTimeoutError("slow") for _ in range(2)])
        pipeline, manager, _ = _wired(
            [PipelineStep("BRIDGE", "bridge", step)], max_recovery_attempts=1,
        )
        await pipeline.initialize()
        assert pipeline.state == PipelineState.TERMINAL

        assert await pipeline.retry() is True
        assert manager.status()["terminal_kinds"] == []

    @pytest.mark.asyncio
    async def test_retry_during_recovery_backoff_is_rejected(self):
        step = FlakyStep(*[RuntimeError("weird failure") for _ in range(10)])
        pipeline, manager, hooks = _wired(
            [PipelineStep("CORE_UNITS", "core", step)],
            max_recovery_attempts=1,
            backoff_cap_ms=200,
        )

        boot = asyncio.ensure_future(pipeline.initialize())
        await asyncio.sleep(0.05)
        assert manager.is_recovering
        assert pipeline.status()["recovering"] is True

        assert await pipeline.retry() is False
        assert await pipeline.initialize() is False
        assert pipeline.recovery_attempts == 0

        assert await boot is False
        assert pipeline.state == PipelineState.TERMINAL
        assert step.calls == 2
        assert pipeline.recovery_attempts == 1
        hooks.show_terminal_failure.assert_called()
        assert not pipeline.recovery_in_progress


# =============================================================================
# PipelineRecoveryActions
# =============================================================================


def _actions(**kwargs):
    pipeline = MagicMock()
    pipeline.reinitialize = AsyncMock(return_value=True)
    pipeline.has_recovery_budget.return_value = True
    canvas = MagicMock()
    canvas.cleanup = AsyncMock()
    bridge = MagicMock()
    coordinator = MagicMock()
    defaults = dict(pipeline=pipeline, canvas=canvas, bridge=bridge, coordinator=coordinator)
    defaults.update(kwargs)
    return PipelineRecoveryActions(**defaults)


class TestPipelineRecoveryActions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action,cleans_canvas,resets_units",
        [
            (RecoveryAction.CLEANUP_AND_REINITIALIZE, True, True),
            (RecoveryAction.REINITIALIZE, False, False),
            (RecoveryAction.RECREATE_RESOURCE, True, False),
            (RecoveryAction.EXTEND_TIMEOUTS, False, False),
            (RecoveryAction.FALLBACK_MODE, False, False),
            (RecoveryAction.RELEASE_RESOURCES, True, True),
            (RecoveryAction.GENERIC_RETRY, True, False),
        ],
    )
    async def test_actions_end_in_one_rerun(self, action, cleans_canvas, resets_units):
        actions = _actions()

        assert await actions.execute(action, RuntimeError("boom")) is True

        actions.pipeline.reinitialize.assert_awaited_once()
        assert actions.canvas.cleanup.await_count == (1 if cleans_canvas else 0)
        assert actions.coordinator.reset_failed.call_count == (1 if resets_units else 0)

    @pytest.mark.asyncio
    async def test_extend_timeouts_scales_pipeline(self):
        actions = _actions(timeout_extension_factor=3.0)
        await actions.execute(RecoveryAction.EXTEND_TIMEOUTS, RuntimeError("slow"))
        actions.pipeline.extend_timeouts.assert_called_once_with(3.0)

    @pytest.mark.asyncio
    async def test_fallback_mode_enables_bridge_fallback(self):
        actions = _actions()
        await actions.execute(RecoveryAction.FALLBACK_MODE, RuntimeError("no bridge"))
        actions.bridge.enable_fallback.assert_called_once()

    @pytest.mark.asyncio
    async def test_fallback_mode_without_bridge(self):
        actions = _actions(bridge=None)
        assert await actions.execute(RecoveryAction.FALLBACK_MODE, RuntimeError("x")) is False
        actions.pipeline.reinitialize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_declare_unrecoverable_does_not_rerun(self):
        actions = _actions()
        assert await actions.execute(RecoveryAction.DECLARE_UNRECOVERABLE, RuntimeError("x")) is False
        actions.pipeline.reinitialize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_canvas_cleanup_failure_still_reruns(self):
        actions = _actions()
        actions.canvas.cleanup.side_effect = RuntimeError("context lost")
        assert await actions.execute(RecoveryAction.GENERIC_RETRY, RuntimeError("x")) is True
        actions.pipeline.reinitialize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_canvas(self):
        actions = _actions(canvas=None, coordinator=None)
        assert await actions.execute(RecoveryAction.RELEASE_RESOURCES, RuntimeError("x")) is True

    def test_budget_delegates_to_pipeline(self):
        actions = _actions()
        actions.pipeline.has_recovery_budget.return_value = False
        assert actions.has_recovery_budget() is False
