"""Unit sources: the side effect behind each named unit.

Every ``load`` is a fresh attempt that raises a descriptive error on
failure; ``discard`` removes whatever a failed attempt left behind.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
import sys
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional

from ..domains.loading.services import UnitSource
from .resources import ResourceResolver

logger = logging.getLogger(__name__)

__all__ = [
    "CallableUnitSource",
    "CompositeUnitSource",
    "FileUnitSource",
    "ModuleUnitSource",
    "UnitSource",
]


class CallableUnitSource:
    """Units backed by plain callables (sync or async)."""

    def __init__(self, loaders: Optional[Dict[str, Callable[[], Any]]] = None):
        self.loaders: Dict[str, Callable[[], Any]] = dict(loaders or {})
        self.calls: Dict[str, int] = {}
        self.discarded: List[str] = []

    def register(self, name: str, loader: Callable[[], Any]) -> None:
        self.loaders[name] = loader

    async def load(self, name: str) -> None:
        loader = self.loaders.get(name)
        if loader is None:
            raise LookupError(f"Unit {name} not found")
        self.calls[name] = self.calls.get(name, 0) + 1
        result = loader()
        if inspect.isawaitable(result):
            await result

    def discard(self, name: str) -> None:
        self.discarded.append(name)


class ModuleUnitSource:
    """Units that are importable Python modules.

    A unit name maps to ``<package>.<name with dashes as underscores>``
    unless ``module_map`` says otherwise. Imports run in a worker thread so
    a slow import never blocks the event loop.
    """

    def __init__(self, package: Optional[str] = None, module_map: Optional[Dict[str, str]] = None):
        self.package = package
        self.module_map: Dict[str, str] = dict(module_map or {})
        self.modules: Dict[str, ModuleType] = {}

    def module_name(self, name: str) -> str:
        if name in self.module_map:
            return self.module_map[name]
        leaf = name.replace("-", "_")
        return f"{self.package}.{leaf}" if self.package else leaf

    async def load(self, name: str) -> None:
        module_name = self.module_name(name)
        try:
            module = await asyncio.to_thread(importlib.import_module, module_name)
        except ModuleNotFoundError as e:
            raise ModuleNotFoundError(f"Unit module {module_name} not found: {e}") from e
        self.modules[name] = module
        logger.debug("Imported %s for unit %s", module_name, name)

    def discard(self, name: str) -> None:
        """Purge the unit's module and submodules so a retry imports afresh."""
        self.modules.pop(name, None)
        module_name = self.module_name(name)
        stale = [m for m in sys.modules if m == module_name or m.startswith(module_name + ".")]
        for m in stale:
            del sys.modules[m]
        if stale:
            logger.debug("Purged stale modules %s", stale)
        importlib.invalidate_caches()


class FileUnitSource:
    """Stylesheet units read from disk through a ResourceResolver."""

    def __init__(
        self,
        resolver: ResourceResolver,
        paths: Optional[Dict[str, str]] = None,
        suffix: str = ".css",
    ):
        self.resolver = resolver
        self.paths: Dict[str, str] = dict(paths or {})
        self.suffix = suffix
        self.contents: Dict[str, str] = {}
        self.uris: Dict[str, str] = {}

    def relative_path(self, name: str) -> str:
        if name in self.paths:
            return self.paths[name]
        return name if name.endswith(self.suffix) else f"{name}{self.suffix}"

    async def load(self, name: str) -> None:
        relative = self.relative_path(name)
        path = self.resolver.resolve_path(relative)
        if not path.is_file():
            raise FileNotFoundError(f"Stylesheet {relative} not found under {self.resolver.root}")
        self.contents[name] = await asyncio.to_thread(path.read_text, encoding="utf-8")
        self.uris[name] = self.resolver.build_uri(relative)

    def discard(self, name: str) -> None:
        self.contents.pop(name, None)
        self.uris.pop(name, None)


class CompositeUnitSource:
    """Routes each unit name to the source that owns it."""

    def __init__(self, default: Optional[UnitSource] = None):
        self.default = default
        self.routes: Dict[str, UnitSource] = {}

    def route(self, name: str, source: UnitSource) -> None:
        self.routes[name] = source

    def source_for(self, name: str) -> UnitSource:
        source = self.routes.get(name, self.default)
        if source is None:
            raise LookupError(f"No unit source for {name}: not found")
        return source

    async def load(self, name: str) -> None:
        await self.source_for(name).load(name)

    def discard(self, name: str) -> None:
        source = self.routes.get(name, self.default)
        if source is not None:
            source.discard(name)
