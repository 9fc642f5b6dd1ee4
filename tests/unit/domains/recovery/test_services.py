"""Tests for recovery domain services."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from canvasboot.domains.recovery.aggregates import RecoveryEngine
from canvasboot.domains.recovery.events import (
    ErrorClassified,
    ManualRecoveryRequired,
    RecoveryAttempted,
    RecoveryExhausted,
    RecoverySucceeded,
)
from canvasboot.domains.recovery.services import (
    ErrorClassifier,
    RecoveryManager,
    RecoveryTarget,
)
from canvasboot.domains.recovery.value_objects import (
    RecoveryAction,
    RecoveryOutcome,
    RecoveryStrategy,
)
from canvasboot.domains.shared.kernel import (
    ErrorKind,
    EventCollector,
    ValidationFailedError,
)


# ── Helpers ──────────────────────────────────────────────────────────


class FakeTarget:
    """Recovery target that returns scripted results and spends budget."""

    def __init__(self, results=None, budget=10):
        self.results = list(results or [])
        self.budget = budget
        self.calls = []

    def has_recovery_budget(self):
        return self.budget > 0

    async def execute(self, action, error):
        self.calls.append(action)
        self.budget -= 1
        return self.results.pop(0) if self.results else False


def _manager(target=None, **kwargs):
    kwargs.setdefault("engine", RecoveryEngine.with_defaults(backoff_cap_ms=0))
    return RecoveryManager(target=target, **kwargs)


NOT_FOUND = RuntimeError("Unit tool-integration not found")


# ── ErrorClassifier ──────────────────────────────────────────────────


class TestErrorClassifier:
    def test_classify_delegates(self):
        classifier = ErrorClassifier(engine=RecoveryEngine.with_defaults())
        assert classifier.classify("Unit x not found") == ErrorKind.RESOURCE_NOT_FOUND

    def test_classify_unknown(self):
        classifier = ErrorClassifier(engine=RecoveryEngine.with_defaults())
        assert classifier.classify("random error xyz") == ErrorKind.UNCLASSIFIED


class TestRecoveryTargetProtocol:
    def test_fake_target_satisfies_protocol(self):
        assert isinstance(FakeTarget(), RecoveryTarget)


# ── RecoveryManager.handle_error ─────────────────────────────────────


class TestHandleErrorSuccess:
    @pytest.mark.asyncio
    async def test_recovers_on_first_attempt(self):
        target = FakeTarget(results=[True])
        hooks = MagicMock()
        manager = _manager(target, hooks=hooks)

        assert await manager.handle_error(NOT_FOUND, {"step": "CORE_UNITS"}) is True
        assert target.calls == [RecoveryAction.REINITIALIZE]
        assert manager.retry_count(ErrorKind.RESOURCE_NOT_FOUND) == 0
        hooks.show_progress.assert_called_once()
        assert "(attempt 1/3)" in hooks.show_progress.call_args[0][0]
        hooks.hide_progress.assert_called_once()
        hooks.show_terminal_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_after_failure_resets_counter(self):
        target = FakeTarget(results=[False, True])
        manager = _manager(target)

        assert await manager.handle_error(NOT_FOUND) is True
        assert len(target.calls) == 2
        assert manager.retry_count(ErrorKind.RESOURCE_NOT_FOUND) == 0
        plan = manager.history(1)[0]
        assert plan.outcome == RecoveryOutcome.RECOVERED
        assert [a.success for a in plan.attempts] == [False, True]

    @pytest.mark.asyncio
    async def test_duplicate_declaration_dispatches_cleanup_and_reinitialize(self):
        target = FakeTarget(results=[True])
        manager = _manager(target)

        error = SyntaxError("Identifier 'ToolStateManager' has already been declared")
        assert await manager.handle_error(error) is True
        assert target.calls == [RecoveryAction.CLEANUP_AND_REINITIALIZE]


class TestHandleErrorCeilings:
    @pytest.mark.asyncio
    async def test_per_kind_ceiling_then_terminal(self):
        target = FakeTarget(budget=100)
        hooks = MagicMock()
        manager = _manager(target, hooks=hooks)

        assert await manager.handle_error(NOT_FOUND) is False
        assert len(target.calls) == 3
        assert manager.is_terminal(ErrorKind.RESOURCE_NOT_FOUND)
        hooks.show_terminal_failure.assert_called_once()
        context = hooks.show_terminal_failure.call_args[0][1]
        assert context["requires_reload"] is True
        assert context["attempts"] == 3

    @pytest.mark.asyncio
    async def test_terminal_kind_is_noop(self):
        target = FakeTarget(budget=100)
        manager = _manager(target)
        await manager.handle_error(NOT_FOUND)
        calls_before = len(target.calls)

        assert await manager.handle_error(NOT_FOUND) is False
        assert len(target.calls) == calls_before

    @pytest.mark.asyncio
    async def test_other_kinds_still_recover_after_one_is_terminal(self):
        target = FakeTarget(results=[False, False, False, True], budget=100)
        manager = _manager(target)
        await manager.handle_error(NOT_FOUND)

        assert await manager.handle_error(RuntimeError("Request timed out")) is True
        assert target.calls[-1] == RecoveryAction.EXTEND_TIMEOUTS

    @pytest.mark.asyncio
    async def test_pipeline_budget_is_stricter(self):
        target = FakeTarget(budget=1)
        manager = _manager(target)

        assert await manager.handle_error(NOT_FOUND) is False
        assert len(target.calls) == 1
        assert manager.is_terminal(ErrorKind.RESOURCE_NOT_FOUND)

    @pytest.mark.asyncio
    async def test_no_budget_means_no_attempt(self):
        target = FakeTarget(budget=0)
        manager = _manager(target)

        assert await manager.handle_error(NOT_FOUND) is False
        assert target.calls == []
        assert manager.is_terminal(ErrorKind.RESOURCE_NOT_FOUND)

    @pytest.mark.asyncio
    async def test_budget_check_failure_counts_as_exhausted(self):
        target = FakeTarget()
        target.has_recovery_budget = MagicMock(side_effect=RuntimeError("broken"))
        manager = _manager(target)

        assert await manager.handle_error(NOT_FOUND) is False
        assert target.calls == []

    @pytest.mark.asyncio
    async def test_reset_clears_terminal_state(self):
        target = FakeTarget(budget=100)
        manager = _manager(target)
        await manager.handle_error(NOT_FOUND)

        manager.reset()
        assert not manager.is_terminal(ErrorKind.RESOURCE_NOT_FOUND)
        target.results = [True]
        assert await manager.handle_error(NOT_FOUND) is True


class TestHandleErrorManual:
    @pytest.mark.asyncio
    async def test_non_auto_kind_surfaces_manual_recovery(self):
        target = FakeTarget()
        hooks = MagicMock()
        manager = _manager(target, hooks=hooks)

        assert await manager.handle_error(ValidationFailedError(["canvas"])) is False
        assert target.calls == []
        hooks.show_terminal_failure.assert_called_once()
        assert hooks.show_terminal_failure.call_args[0][1]["requires_reload"] is True
        assert manager.history(1)[0].outcome == RecoveryOutcome.MANUAL
        assert not manager.is_terminal(ErrorKind.REQUIRED_DEPENDENCY_MISSING)

    @pytest.mark.asyncio
    async def test_non_auto_kind_becomes_terminal_on_second_report(self):
        manager = _manager(FakeTarget())
        await manager.handle_error(ValidationFailedError(["canvas"]))

        assert await manager.handle_error(ValidationFailedError(["canvas"])) is False
        assert manager.is_terminal(ErrorKind.REQUIRED_DEPENDENCY_MISSING)
        assert manager.history(1)[0].outcome == RecoveryOutcome.TERMINAL

    @pytest.mark.asyncio
    async def test_no_strategy(self):
        hooks = MagicMock()
        manager = RecoveryManager(engine=RecoveryEngine(), target=FakeTarget(), hooks=hooks)

        assert await manager.handle_error(NOT_FOUND) is False
        hooks.show_terminal_failure.assert_called_once()
        assert manager.history(1)[0].outcome == RecoveryOutcome.NO_STRATEGY
        assert not manager.is_recovering


class TestHandleErrorReentrancy:
    @pytest.mark.asyncio
    async def test_nested_call_is_noop(self):
        manager = _manager()
        nested_results = []

        class ReentrantTarget(FakeTarget):
            async def execute(self, action, error):
                self.calls.append(action)
                nested_results.append(await manager.handle_error(RuntimeError("Request timed out")))
                return True

        target = ReentrantTarget()
        manager.attach(target)

        assert await manager.handle_error(NOT_FOUND) is True
        assert nested_results == [False]
        assert len(target.calls) == 1
        assert not manager.is_recovering

    @pytest.mark.asyncio
    async def test_recovering_flag_set_during_action(self):
        manager = _manager()
        seen = []

        class ObservingTarget(FakeTarget):
            async def execute(self, action, error):
                seen.append(manager.is_recovering)
                return True

        manager.attach(ObservingTarget())
        await manager.handle_error(NOT_FOUND)
        assert seen == [True]
        assert manager.is_recovering is False


class TestHandleErrorFailures:
    @pytest.mark.asyncio
    async def test_action_exception_counts_as_failed_attempt(self):
        target = FakeTarget()
        target.execute = AsyncMock(side_effect=RuntimeError("cleanup exploded"))
        manager = _manager(target)

        assert await manager.handle_error(RuntimeError("weird")) is False
        plan = manager.history(1)[0]
        assert plan.attempts[0].success is False
        assert plan.attempts[0].error == "cleanup exploded"

    @pytest.mark.asyncio
    async def test_no_target_attached(self):
        manager = _manager()
        assert await manager.handle_error(RuntimeError("weird")) is False
        assert manager.is_terminal(ErrorKind.UNCLASSIFIED)

    @pytest.mark.asyncio
    async def test_hook_failures_do_not_block_recovery(self):
        hooks = MagicMock()
        hooks.show_progress.side_effect = RuntimeError("ui gone")
        hooks.hide_progress.side_effect = RuntimeError("ui gone")
        manager = _manager(FakeTarget(results=[True]), hooks=hooks)

        assert await manager.handle_error(NOT_FOUND) is True

    @pytest.mark.asyncio
    async def test_telemetry_failures_do_not_block_recovery(self):
        telemetry = MagicMock()
        telemetry.log.side_effect = RuntimeError("sink down")
        telemetry.track_recovery_attempt.side_effect = RuntimeError("sink down")
        manager = _manager(FakeTarget(results=[True]), telemetry=telemetry)

        assert await manager.handle_error(NOT_FOUND) is True


class TestBackoff:
    @pytest.mark.asyncio
    async def test_delays_double_per_attempt(self):
        engine = RecoveryEngine()
        engine.register_strategy(RecoveryStrategy(
            kind=ErrorKind.UNCLASSIFIED, action=RecoveryAction.GENERIC_RETRY,
            max_retries=3, backoff_base_ms=100, backoff_cap_ms=250,
        ))
        manager = RecoveryManager(engine=engine, target=FakeTarget(budget=10))

        with patch("canvasboot.domains.recovery.services.asyncio.sleep", new=AsyncMock()) as sleep:
            await manager.handle_error(RuntimeError("weird"))

        assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.2, 0.25]
        plan = manager.history(1)[0]
        assert [a.delay_ms for a in plan.attempts] == [100, 200, 250]


class TestObservability:
    @pytest.mark.asyncio
    async def test_events_for_success(self):
        events = EventCollector()
        manager = _manager(FakeTarget(results=[False, True]), event_publisher=events)
        await manager.handle_error(NOT_FOUND)

        types = [type(e) for e in events.events]
        assert types == [ErrorClassified, RecoveryAttempted, RecoveryAttempted, RecoverySucceeded]

    @pytest.mark.asyncio
    async def test_events_for_exhaustion(self):
        events = EventCollector()
        manager = _manager(FakeTarget(budget=1), event_publisher=events)
        await manager.handle_error(NOT_FOUND)

        assert isinstance(events.events[-1], RecoveryExhausted)
        assert events.events[-1].attempts == 1

    @pytest.mark.asyncio
    async def test_events_for_manual(self):
        events = EventCollector()
        manager = _manager(FakeTarget(), event_publisher=events)
        await manager.handle_error(ValidationFailedError(["bridge"]))

        assert isinstance(events.events[-1], ManualRecoveryRequired)

    @pytest.mark.asyncio
    async def test_telemetry_records_attempts(self):
        telemetry = MagicMock()
        manager = _manager(FakeTarget(results=[True]), telemetry=telemetry)
        await manager.handle_error(NOT_FOUND)

        telemetry.track_recovery_attempt.assert_called_once()
        args = telemetry.track_recovery_attempt.call_args[0]
        assert args[:3] == ("ResourceNotFound", "reinitialize", True)
        assert args[3]["attempt"] == 1

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        manager = _manager(FakeTarget(results=[True] * 5), max_history=3)
        for _ in range(5):
            await manager.handle_error(NOT_FOUND)
        assert len(manager.history(10)) == 3

    @pytest.mark.asyncio
    async def test_status(self):
        manager = _manager(FakeTarget(budget=100))
        await manager.handle_error(NOT_FOUND)

        status = manager.status()
        assert status["recovering"] is False
        assert status["terminal_kinds"] == ["ResourceNotFound"]
        assert status["strategies"] == 8
        assert status["recent_plans"][0]["outcome"] == "terminal"
