"""Infrastructure adapters for the boot orchestrator's external collaborators."""
from .bridge import BridgeManager, FallbackBridge, InMemoryBridgeHandle
from .canvas import HeadlessCanvas
from .hooks import HostProgressHooks
from .resources import ResourceResolver
from .sources import CallableUnitSource, CompositeUnitSource, FileUnitSource, ModuleUnitSource
from .telemetry import DiagnosticLogger

__all__ = [
    "BridgeManager",
    "FallbackBridge",
    "InMemoryBridgeHandle",
    "HeadlessCanvas",
    "HostProgressHooks",
    "ResourceResolver",
    "CallableUnitSource",
    "CompositeUnitSource",
    "FileUnitSource",
    "ModuleUnitSource",
    "DiagnosticLogger",
]
