"""Dependency Injection Container for the boot orchestrator.

This container wires the bounded contexts to their adapters:
- Loading Context: dependency registry, unit loader, load coordinator
- Pipeline Context: initialization pipeline and the default boot sequence
- Recovery Context: recovery engine and manager

Collaborators are built lazily on first access. Host-specific pieces
(bridge acquisition, unit source, canvas initializer, progress hooks)
can be injected; everything else follows the configuration.

Usage:
    from canvasboot.container import ServiceContainer

    container = ServiceContainer(config=load_boot_config())
    ready = await container.pipeline.initialize()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from .config import BootConfig
from .manifest import BootManifest

if TYPE_CHECKING:
    from .adapters import (
        BridgeManager, DiagnosticLogger, HeadlessCanvas, HostProgressHooks, ResourceResolver,
    )
    from .domains.loading import DependencyRegistry, LoadCoordinator, UnitLoader, UnitSource
    from .domains.pipeline import BootSequence, InitializationPipeline, PipelineRecoveryActions
    from .domains.recovery import RecoveryEngine, RecoveryManager
    from .domains.shared import EventCollector

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Composition root: one instance of every collaborator.

    Attributes:
        config: Runtime settings.
        manifest: Units to load; defaults to the manifest named by the
            config, or the stock asset set.
        bridge_acquire: Host callable returning the bridge handle. Defaults
            to an in-memory handle for headless runs.
        unit_source: Side-effect loader for script units. Defaults to
            importing modules from ``config.unit_package``. Stylesheets are
            always read from the resource root.
        canvas_initializer: Optional hook run by the canvas on init().
        hooks: Progress/failure UI. Defaults to HostProgressHooks over the
            bridge.
    """

    config: BootConfig = field(default_factory=BootConfig)
    manifest: Optional[BootManifest] = None
    bridge_acquire: Optional[Callable[[], Any]] = None
    unit_source: Optional["UnitSource"] = None
    canvas_initializer: Optional[Callable[[], Any]] = None
    hooks: Any = None

    _telemetry: Optional["DiagnosticLogger"] = field(default=None, repr=False)
    _events: Optional["EventCollector"] = field(default=None, repr=False)
    _registry: Optional["DependencyRegistry"] = field(default=None, repr=False)
    _sources: Optional["UnitSource"] = field(default=None, repr=False)
    _loader: Optional["UnitLoader"] = field(default=None, repr=False)
    _coordinator: Optional["LoadCoordinator"] = field(default=None, repr=False)
    _bridge: Optional["BridgeManager"] = field(default=None, repr=False)
    _resolver: Optional["ResourceResolver"] = field(default=None, repr=False)
    _canvas: Optional["HeadlessCanvas"] = field(default=None, repr=False)
    _progress: Any = field(default=None, repr=False)
    _engine: Optional["RecoveryEngine"] = field(default=None, repr=False)
    _recovery: Optional["RecoveryManager"] = field(default=None, repr=False)
    _boot: Optional["BootSequence"] = field(default=None, repr=False)
    _pipeline: Optional["InitializationPipeline"] = field(default=None, repr=False)
    _actions: Optional["PipelineRecoveryActions"] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.manifest is None:
            if self.config.manifest_path is not None:
                self.manifest = BootManifest.from_yaml(
                    self.config.manifest_path,
                    max_retries=self.config.unit_max_retries,
                    base_delay_ms=self.config.unit_retry_delay_ms,
                )
            else:
                self.manifest = BootManifest.default(
                    max_retries=self.config.unit_max_retries,
                    base_delay_ms=self.config.unit_retry_delay_ms,
                )
        self._register_predicates()

    # ---- shared ----

    @property
    def telemetry(self) -> "DiagnosticLogger":
        """Get the in-process telemetry sink."""
        if self._telemetry is None:
            from .adapters import DiagnosticLogger
            self._telemetry = DiagnosticLogger(
                auto_report_error_threshold=self.config.auto_report_error_threshold,
            )
        return self._telemetry

    @property
    def events(self) -> "EventCollector":
        """Get the domain event collector."""
        if self._events is None:
            from .domains.shared import EventCollector
            self._events = EventCollector()
        return self._events

    # ---- loading ----

    @property
    def registry(self) -> "DependencyRegistry":
        if self._registry is None:
            from .domains.loading import DependencyRegistry
            self._registry = DependencyRegistry(poll_interval_ms=self.config.poll_interval_ms)
        return self._registry

    @property
    def sources(self) -> "UnitSource":
        """Get the unit source: stylesheets from disk, everything else injected or imported."""
        if self._sources is None:
            from .adapters import CompositeUnitSource, FileUnitSource, ModuleUnitSource
            if self.unit_source is None and not self.config.unit_package:
                logger.warning(
                    "CANVASBOOT_UNIT_PACKAGE is not set, units will be imported as "
                    "top-level modules",
                )
            default = self.unit_source or ModuleUnitSource(package=self.config.unit_package)
            composite = CompositeUnitSource(default=default)
            stylesheets = FileUnitSource(self.resolver)
            for request in self.manifest.stylesheets:
                composite.route(request.name, stylesheets)
            self._sources = composite
        return self._sources

    @property
    def loader(self) -> "UnitLoader":
        if self._loader is None:
            from .domains.loading import UnitLoader
            self._loader = UnitLoader(
                registry=self.registry,
                source=self.sources,
                event_publisher=self.events,
            )
        return self._loader

    @property
    def coordinator(self) -> "LoadCoordinator":
        if self._coordinator is None:
            from .domains.loading import LoadCoordinator
            self._coordinator = LoadCoordinator(loader=self.loader, telemetry=self.telemetry)
        return self._coordinator

    # ---- host collaborators ----

    @property
    def bridge(self) -> "BridgeManager":
        if self._bridge is None:
            from .adapters import BridgeManager, InMemoryBridgeHandle
            self._bridge = BridgeManager(
                acquire=self.bridge_acquire or InMemoryBridgeHandle,
                telemetry=self.telemetry,
            )
        return self._bridge

    @property
    def resolver(self) -> "ResourceResolver":
        if self._resolver is None:
            from .adapters import ResourceResolver
            self._resolver = ResourceResolver(
                root=self.config.resource_root,
                base_uri=self.config.resource_base_uri,
            )
        return self._resolver

    @property
    def canvas(self) -> "HeadlessCanvas":
        if self._canvas is None:
            from .adapters import HeadlessCanvas
            self._canvas = HeadlessCanvas(initializer=self.canvas_initializer)
        return self._canvas

    @property
    def progress(self) -> Any:
        """Get the progress hooks shown to the user."""
        if self._progress is None:
            if self.hooks is not None:
                self._progress = self.hooks
            else:
                from .adapters import HostProgressHooks
                self._progress = HostProgressHooks(bridge=self.bridge)
        return self._progress

    # ---- recovery ----

    @property
    def engine(self) -> "RecoveryEngine":
        if self._engine is None:
            from .domains.recovery import RecoveryEngine
            self._engine = RecoveryEngine.with_defaults(
                backoff_cap_ms=self.config.recovery_backoff_cap_ms,
            )
        return self._engine

    @property
    def recovery(self) -> "RecoveryManager":
        if self._recovery is None:
            from .domains.recovery import RecoveryManager
            self._recovery = RecoveryManager(
                engine=self.engine,
                hooks=self.progress,
                telemetry=self.telemetry,
                event_publisher=self.events,
            )
        return self._recovery

    # ---- pipeline ----

    @property
    def boot(self) -> "BootSequence":
        if self._boot is None:
            from .domains.pipeline import BootSequence
            self._boot = BootSequence(
                bridge=self.bridge,
                resolver=self.resolver,
                coordinator=self.coordinator,
                canvas=self.canvas,
                registry=self.registry,
                stylesheets=self.manifest.stylesheets,
                core_units=self.manifest.core_units,
                optional_units=self.manifest.optional_units,
                bridge_timeout_ms=self.config.bridge_timeout_ms,
                report_provider=self.diagnostic_report,
            )
        return self._boot

    @property
    def pipeline(self) -> "InitializationPipeline":
        """Get the initialization pipeline, wired to recovery and the boot sequence."""
        if self._pipeline is None:
            from .domains.pipeline import InitializationPipeline, PipelineRecoveryActions
            boot = self.boot
            pipeline = InitializationPipeline(
                steps=boot.steps(),
                coordinator=self.coordinator,
                recovery=self.recovery,
                hooks=self.progress,
                telemetry=self.telemetry,
                event_publisher=self.events,
                max_recovery_attempts=self.config.max_recovery_attempts,
            )
            pipeline.add_finalizer(boot.announce_ready)
            boot.pipeline = pipeline
            # host retry must reach the pipeline even when boot fails before EVENT_WIRING
            boot.subscribe()
            self._actions = PipelineRecoveryActions(
                pipeline=pipeline,
                canvas=self.canvas,
                bridge=self.bridge,
                coordinator=self.coordinator,
            )
            self.recovery.attach(self._actions)
            self._pipeline = pipeline
        return self._pipeline

    @property
    def recovery_actions(self) -> "PipelineRecoveryActions":
        self.pipeline  # built together with the pipeline
        return self._actions

    def _register_predicates(self) -> None:
        stylesheet_names = [r.name for r in self.manifest.stylesheets]
        self.registry.register("bridge", lambda: self.bridge.is_available)
        self.registry.register("resource-resolver", lambda: self.resolver.is_ready)
        self.registry.register(
            "stylesheets", lambda: self.coordinator.all_loaded(stylesheet_names),
        )
        self.registry.register("canvas", lambda: self.canvas.ready)
        self.registry.register("pipeline", lambda: self.pipeline.is_ready)

    # ---- diagnostics ----

    def status(self) -> Dict[str, Any]:
        """Snapshot of every collaborator's state."""
        return {
            "pipeline": self.pipeline.status(),
            "units": self.coordinator.stats(),
            "recovery": self.recovery.status(),
            "bridge": self.bridge.status(),
            "canvas": self.canvas.status(),
        }

    def diagnostic_report(self) -> Dict[str, Any]:
        report = self.telemetry.generate_report()
        report["status"] = self.status()
        return report
