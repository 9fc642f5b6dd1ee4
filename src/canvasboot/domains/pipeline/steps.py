"""Default boot sequence.

Ordering: the bridge is acquired before resource URIs can be resolved;
stylesheets load before scripts that assume a styled document; core
units load before optional enhancements so a broken optional unit never
blocks the primary experience; the canvas is built after the units it
depends on; event wiring follows the canvas; validation runs last and
only inspects.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..loading.value_objects import UnitLoadRequest
from ..shared.kernel import (
    BootError, BridgeUnavailableError, CanvasInitError, ErrorKind, ValidationFailedError,
)
from .value_objects import PipelineStep

logger = logging.getLogger(__name__)

ReportProvider = Callable[[], Dict[str, Any]]


@dataclass
class BootSequence:
    """Builds the eight default PipelineSteps over the injected collaborators.

    ``pipeline`` is attached after the pipeline is built; it supplies the
    timeout multiplier and handles inbound ``retry`` requests.
    """
    bridge: Any
    resolver: Any
    coordinator: Any
    canvas: Any
    registry: Any
    stylesheets: Sequence[UnitLoadRequest] = ()
    core_units: Sequence[UnitLoadRequest] = ()
    optional_units: Sequence[UnitLoadRequest] = ()
    bridge_timeout_ms: int = 5000
    canvas_timeout_s: float = 10.0
    report_provider: Optional[ReportProvider] = None
    pipeline: Any = None

    _unsubscribe: Optional[Callable[[], None]] = field(default=None, repr=False)
    _background: Set["asyncio.Task[Any]"] = field(default_factory=set, repr=False)

    def steps(self) -> List[PipelineStep]:
        return [
            PipelineStep("BRIDGE", "Connecting to host", self.acquire_bridge),
            PipelineStep("RESOURCE_RESOLVER", "Resolving resources", self.init_resolver),
            PipelineStep("STYLESHEETS", "Loading stylesheets", self.load_stylesheets),
            PipelineStep("CORE_UNITS", "Loading core components", self.load_core_units),
            PipelineStep(
                "OPTIONAL_UNITS", "Loading optional components",
                self.load_optional_units, critical=False,
            ),
            PipelineStep(
                "CANVAS_SETUP", "Preparing canvas", self.setup_canvas,
                timeout_s=self.canvas_timeout_s,
            ),
            PipelineStep("EVENT_WIRING", "Connecting events", self.wire_events),
            PipelineStep("FINAL_VALIDATION", "Validating setup", self.validate),
        ]

    @property
    def timeout_multiplier(self) -> float:
        if self.pipeline is None:
            return 1.0
        return self.pipeline.timeout_multiplier

    def _scaled(self, requests: Sequence[UnitLoadRequest]) -> List[UnitLoadRequest]:
        multiplier = self.timeout_multiplier
        if multiplier == 1.0:
            return list(requests)
        return [
            dataclasses.replace(r, timeout_ms=max(1, int(r.timeout_ms * multiplier)))
            for r in requests
        ]

    # ---- steps ----

    async def acquire_bridge(self) -> None:
        self.bridge.acquire()
        timeout_ms = self.bridge_timeout_ms * self.timeout_multiplier
        if not await self.registry.wait_for_all(["bridge"], timeout_ms):
            raise BridgeUnavailableError(
                f"Host bridge not available within {timeout_ms:.0f}ms"
            )

    async def init_resolver(self) -> None:
        self.resolver.initialize(self.bridge.handle)
        if not self.registry.is_ready("resource-resolver"):
            raise BootError(
                "Required resource resolver not available after initialization",
                kind=ErrorKind.REQUIRED_DEPENDENCY_MISSING,
            )

    async def load_stylesheets(self) -> None:
        await self.coordinator.load_many(self._scaled(self.stylesheets))

    async def load_core_units(self) -> None:
        await self.coordinator.load_many(self._scaled(self.core_units))

    async def load_optional_units(self) -> None:
        loaded = await self.coordinator.load_many(self._scaled(self.optional_units))
        skipped = [r.name for r in self.optional_units if r.name not in loaded]
        if skipped:
            logger.info("Continuing without optional units: %s", skipped)

    async def setup_canvas(self) -> None:
        if not await self.canvas.init():
            raise CanvasInitError("Canvas subsystem failed to initialize")

    def subscribe(self) -> None:
        """Listen for host messages. Safe to call more than once."""
        if self._unsubscribe is None:
            self._unsubscribe = self.bridge.on_message(self.handle_host_message)

    async def wire_events(self) -> None:
        self.subscribe()

    async def validate(self) -> None:
        checks = self.validation_checks()
        failed = [name for name, ok in checks.items() if not ok]
        if failed:
            raise ValidationFailedError(failed)
        logger.info("Final validation passed: %s", sorted(checks))

    def validation_checks(self) -> Dict[str, bool]:
        return {
            "bridge": bool(self.bridge.is_available),
            "stylesheets": self.coordinator.all_loaded(r.name for r in self.stylesheets),
            "canvas": bool(self.canvas.ready),
            "core-units": self.coordinator.all_loaded(r.name for r in self.core_units),
        }

    # ---- finalizer and inbound messages ----

    def announce_ready(self) -> None:
        self.bridge.post_message({"type": "ready"})

    def handle_host_message(self, message: Dict[str, Any]) -> None:
        message_type = message.get("type") if isinstance(message, dict) else None
        if message_type == "retry":
            if self.pipeline is None:
                logger.warning("Retry requested before the pipeline was attached")
                return
            task = asyncio.ensure_future(self.pipeline.retry())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        elif message_type == "requestReport":
            report = self.report_provider() if self.report_provider else self.coordinator.stats()
            self.bridge.post_message({"type": "diagnosticReport", "report": report})
        else:
            logger.debug("Ignoring host message %r", message_type)

    def unwire_events(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
