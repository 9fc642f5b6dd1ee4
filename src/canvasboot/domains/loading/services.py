"""Loading Domain Services.

Domain services coordinate the LoadPartition aggregate with the outside
world: readiness predicates, the unit side-effect source and telemetry.

Control flow is Coordinator -> Loader -> Registry. All work runs on one
event loop; per-name loads are serialized through the in-flight task map,
unrelated names load in any order.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import (
    Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, runtime_checkable,
)

from ..shared.kernel import (
    BackoffPolicy,
    CriticalUnitError,
    DependencyTimeoutError,
    EventPublisherProtocol,
    StepTimeoutError,
    UnitLoadError,
)
from ..shared.telemetry import GuardedTelemetry
from .aggregates import AllLoadedCallback, LoadPartition, UnitCallback
from .events import DependenciesTimedOut, UnitAttemptFailed, UnitLoaded, UnitLoadFailed
from .value_objects import DependencyCheck, DependencyPredicate, UnitLoadRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class UnitSource(Protocol):
    """Protocol for the unit side-effect loader (anti-corruption layer).

    ``load`` performs one fresh attempt and raises a descriptive error on
    failure. ``discard`` drops whatever a failed attempt left behind so the
    next attempt does not replay stale state.
    """

    async def load(self, name: str) -> None: ...

    def discard(self, name: str) -> None: ...


# ---------------------------------------------------------------------------
# DependencyRegistry
# ---------------------------------------------------------------------------


@dataclass
class DependencyRegistry:
    """Named boolean readiness predicates.

    Collaborators register their capability at startup instead of being
    probed. Predicates are re-evaluated on every poll.
    """
    poll_interval_ms: int = 100
    _predicates: Dict[str, DependencyPredicate] = field(default_factory=dict, repr=False)
    _warned_unknown: Set[str] = field(default_factory=set, repr=False)

    def register(self, name: str, check: DependencyCheck) -> None:
        """Store a predicate. Re-registration overwrites (last writer wins)."""
        if name in self._predicates:
            logger.warning("Dependency %s already registered, overwriting predicate", name)
        self._predicates[name] = DependencyPredicate(name=name, check=check)
        self._warned_unknown.discard(name)

    def unregister(self, name: str) -> bool:
        return self._predicates.pop(name, None) is not None

    def names(self) -> List[str]:
        return sorted(self._predicates)

    def is_ready(self, name: str) -> bool:
        """Evaluate one predicate. Unknown names and raising checks are not ready."""
        predicate = self._predicates.get(name)
        if predicate is None:
            if name not in self._warned_unknown:
                self._warned_unknown.add(name)
                logger.warning("Unknown dependency %s", name)
            return False
        try:
            return bool(predicate.check())
        except Exception as e:
            logger.warning("Dependency check for %s raised: %s", name, e)
            return False

    def pending(self, names: Iterable[str]) -> List[str]:
        """Names from ``names`` that are not ready right now."""
        return [name for name in names if not self.is_ready(name)]

    async def wait_for_all(self, names: Sequence[str], timeout_ms: float) -> bool:
        """Poll until every named predicate is ready or the timeout elapses.

        Never blocks past ``timeout_ms`` and performs no retries. An empty
        list is ready immediately.
        """
        names = list(names)
        if not names:
            return True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        poll_s = self.poll_interval_ms / 1000.0
        while True:
            pending = self.pending(names)
            if not pending:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    "Timed out after %sms waiting for dependencies: %s", timeout_ms, pending
                )
                return False
            await asyncio.sleep(min(poll_s, remaining))


# ---------------------------------------------------------------------------
# UnitLoader
# ---------------------------------------------------------------------------


@dataclass
class UnitLoader:
    """Loads one named unit: waits on dependencies, retries with backoff.

    At most one load sequence runs per unit name. A second caller for a
    name already loading awaits the same in-flight task.

    Attempts that exceed ``timeout_ms`` are abandoned, not cancelled: the
    side effect keeps running in the background and is tracked in
    ``abandoned_count`` until it finishes.
    """
    registry: DependencyRegistry
    source: UnitSource
    partition: LoadPartition = field(default_factory=LoadPartition)
    event_publisher: Optional[EventPublisherProtocol] = None
    _inflight: Dict[str, "asyncio.Task[None]"] = field(default_factory=dict, repr=False)
    _abandoned: Set["asyncio.Future[Any]"] = field(default_factory=set, repr=False)

    async def load(self, request: UnitLoadRequest) -> None:
        """Load ``request.name``, or join the load already in flight.

        Raises:
            DependencyTimeoutError: Dependencies never became ready. No
                side effect was created.
            UnitLoadError: Every attempt failed.
        """
        name = request.name
        if self.partition.is_loaded(name):
            return

        task = self._inflight.get(name)
        if task is None:
            self.partition.mark_loading(name)
            task = asyncio.get_running_loop().create_task(self._run(request))
            self._inflight[name] = task
        else:
            logger.debug("Joining in-flight load of %s", name)
        await asyncio.shield(task)

    def is_inflight(self, name: str) -> bool:
        return name in self._inflight

    @property
    def abandoned_count(self) -> int:
        return len(self._abandoned)

    async def _run(self, request: UnitLoadRequest) -> None:
        name = request.name
        loop = asyncio.get_running_loop()
        started = loop.time()
        attempts = 0
        try:
            ready = await self.registry.wait_for_all(request.dependencies, request.timeout_ms)
            if not ready:
                pending = self.registry.pending(request.dependencies)
                self._publish(DependenciesTimedOut(
                    unit_name=name, pending=list(pending), timeout_ms=request.timeout_ms,
                ))
                raise DependencyTimeoutError(pending)

            backoff = BackoffPolicy(base_ms=request.base_delay_ms)
            last_error: Optional[Exception] = None
            for attempt in range(1, request.total_attempts + 1):
                attempts = attempt
                try:
                    await self._attempt(request, attempt)
                    last_error = None
                    break
                except Exception as e:
                    last_error = e
                    self._discard(name)
                    self._publish(UnitAttemptFailed(
                        unit_name=name,
                        attempt=attempt,
                        error_message=str(e),
                        abandoned=isinstance(e, StepTimeoutError),
                    ))
                    logger.warning(
                        "Loading %s failed (attempt %d/%d): %s",
                        name, attempt, request.total_attempts, e,
                    )
                    if attempt < request.total_attempts:
                        delay = backoff.delay_seconds(attempt)
                        logger.info("Retrying %s in %.0fms", name, delay * 1000)
                        await asyncio.sleep(delay)

            if last_error is not None:
                raise UnitLoadError(name, attempts, last_error) from last_error

        except Exception as e:
            logger.error("Unit %s failed to load: %s", name, e)
            self.partition.mark_failed(name, e)
            self._publish(UnitLoadFailed(
                unit_name=name, attempts=attempts, error_message=str(e),
            ))
            raise
        else:
            logger.info("Unit %s loaded (attempt %d)", name, attempts)
            self.partition.mark_loaded(name)
            self._publish(UnitLoaded(
                unit_name=name,
                attempts=attempts,
                duration_ms=(loop.time() - started) * 1000,
            ))
        finally:
            self._inflight.pop(name, None)

    async def _attempt(self, request: UnitLoadRequest, attempt: int) -> None:
        side_effect = asyncio.ensure_future(self.source.load(request.name))
        try:
            await asyncio.wait_for(asyncio.shield(side_effect), request.timeout_seconds)
        except asyncio.TimeoutError:
            self._abandon(request.name, side_effect)
            raise StepTimeoutError(
                f"Loading {request.name} timed out after {request.timeout_ms}ms "
                f"(attempt {attempt})"
            ) from None

    def _abandon(self, name: str, side_effect: "asyncio.Future[Any]") -> None:
        logger.warning("Abandoning still-running load attempt for %s", name)
        self._abandoned.add(side_effect)
        side_effect.add_done_callback(functools.partial(self._on_abandoned_done, name))

    def _on_abandoned_done(self, name: str, side_effect: "asyncio.Future[Any]") -> None:
        self._abandoned.discard(side_effect)
        if side_effect.cancelled():
            return
        error = side_effect.exception()
        if error is not None:
            logger.debug("Abandoned load attempt for %s failed late: %s", name, error)
        else:
            logger.info("Abandoned load attempt for %s completed late", name)

    def _discard(self, name: str) -> None:
        try:
            self.source.discard(name)
        except Exception as e:
            logger.warning("Discarding partial state of %s failed: %s", name, e)

    def _publish(self, event: Any) -> None:
        if self.event_publisher:
            try:
                self.event_publisher.publish(event)
            except Exception as e:
                logger.debug("Event publishing failed: %s", e)


# ---------------------------------------------------------------------------
# LoadCoordinator
# ---------------------------------------------------------------------------


@dataclass
class LoadCoordinator:
    """Top-level load API over the UnitLoader.

    Records a telemetry timer and a resource-load entry per call, fans
    independent loads out concurrently, and exposes per-unit and
    run-scoped completion callbacks.
    """
    loader: UnitLoader
    telemetry: Any = None

    COMPONENT = "LoadCoordinator"

    def __post_init__(self) -> None:
        self.telemetry = GuardedTelemetry(self.telemetry)

    @property
    def partition(self) -> LoadPartition:
        return self.loader.partition

    async def load_unit(self, request: UnitLoadRequest) -> None:
        """Load one unit. Failures are recorded and re-raised."""
        name = request.name
        if self.partition.is_loaded(name):
            return

        timer_id = self.telemetry.start_timer(f"load-{name}", {"kind": request.kind.value})
        try:
            await self.loader.load(request)
        except Exception as e:
            duration = self.telemetry.end_timer(timer_id, {"success": False})["duration"]
            self.telemetry.track_resource_load(
                request.kind.value, name, duration, False, {"error": str(e)},
            )
            self.telemetry.log(
                "ERROR", self.COMPONENT, f"Failed to load {name}",
                {"critical": request.critical, "duration": duration}, e,
            )
            raise

        duration = self.telemetry.end_timer(timer_id, {"success": True})["duration"]
        self.telemetry.track_resource_load(request.kind.value, name, duration, True)
        self.telemetry.log("INFO", self.COMPONENT, f"Loaded {name}", {"duration": duration})

    async def load_many(self, requests: Iterable[UnitLoadRequest]) -> List[str]:
        """Load independent units concurrently and wait for all to settle.

        Returns:
            Names that loaded, in request order.

        Raises:
            CriticalUnitError: The first critical unit (in request order)
                that failed. Non-critical failures are only logged.
        """
        requests = list(requests)
        if not requests:
            return []

        results = await asyncio.gather(
            *(self.load_unit(request) for request in requests),
            return_exceptions=True,
        )

        loaded: List[str] = []
        critical_failure: Optional[CriticalUnitError] = None
        for request, result in zip(requests, results):
            if not isinstance(result, BaseException):
                loaded.append(request.name)
                continue
            if not isinstance(result, Exception):
                raise result
            if request.critical:
                if critical_failure is None:
                    critical_failure = CriticalUnitError(request.name, result)
                    critical_failure.__cause__ = result
            else:
                logger.warning("Optional unit %s failed to load: %s", request.name, result)
                self.telemetry.log(
                    "WARN", self.COMPONENT, f"Optional unit {request.name} failed",
                    {"error": str(result)},
                )

        if critical_failure is not None:
            raise critical_failure
        return loaded

    def on_unit_loaded(self, name: str, callback: UnitCallback) -> None:
        """Call ``callback(error, name)`` once ``name`` settles (now if it has)."""
        self.partition.add_callback(name, callback)

    def on_all_loaded(self, callback: AllLoadedCallback) -> None:
        self.partition.add_all_loaded_callback(callback)

    def notify_all_loaded(self) -> None:
        """Explicit completion signal, raised by the pipeline once per run."""
        self.partition.notify_all_loaded()
        self.telemetry.track_system_event("all-units-loaded", {"loaded": self.partition.loaded})

    def begin_run(self) -> None:
        self.partition.begin_run()

    def is_loaded(self, name: str) -> bool:
        return self.partition.is_loaded(name)

    def all_loaded(self, names: Iterable[str]) -> bool:
        return all(self.partition.is_loaded(name) for name in names)

    def reset_failed(self) -> List[str]:
        names = self.partition.reset_failed()
        if names:
            logger.info("Reset failed units: %s", names)
        return names

    def stats(self) -> Dict[str, Any]:
        stats = self.partition.to_dict()
        stats["registered_dependencies"] = self.loader.registry.names()
        stats["abandoned_attempts"] = self.loader.abandoned_count
        return stats
