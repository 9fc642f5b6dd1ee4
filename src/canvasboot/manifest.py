"""Boot manifest: the stylesheets and behavior units to load at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from .domains.loading import UnitKind, UnitLoadRequest

logger = logging.getLogger(__name__)

CORE_DEPENDENCIES = ("stylesheets", "bridge")

DEFAULT_STYLESHEETS = ("styles",)

DEFAULT_CORE_UNITS = (
    "persistent-drawing-manager",
    "tool-state-manager",
    "enhanced-tool-manager",
    "tool-integration",
)

DEFAULT_OPTIONAL_UNITS: Dict[str, Sequence[str]] = {
    "pressure-sensitivity": ("stylesheets",),
    "safe-code-generator": ("bridge",),
    "safe-template-system": ("bridge",),
    "code-generation-error-handler": ("bridge",),
}


@dataclass(frozen=True)
class _SectionDefaults:
    kind: UnitKind
    critical: bool
    dependencies: Sequence[str]
    timeout_ms: int


STYLESHEET_DEFAULTS = _SectionDefaults(UnitKind.STYLESHEET, True, ("bridge",), 10000)
CORE_DEFAULTS = _SectionDefaults(UnitKind.SCRIPT, True, CORE_DEPENDENCIES, 5000)
OPTIONAL_DEFAULTS = _SectionDefaults(UnitKind.SCRIPT, False, ("bridge",), 3000)


@dataclass
class BootManifest:
    """Ordered unit lists for the STYLESHEETS, CORE_UNITS and OPTIONAL_UNITS steps."""

    stylesheets: List[UnitLoadRequest] = field(default_factory=list)
    core_units: List[UnitLoadRequest] = field(default_factory=list)
    optional_units: List[UnitLoadRequest] = field(default_factory=list)

    @classmethod
    def default(cls, max_retries: int = 3, base_delay_ms: int = 1000) -> "BootManifest":
        """The stock asset set of the canvas application."""
        entries: Dict[str, Any] = {
            "stylesheets": list(DEFAULT_STYLESHEETS),
            "core_units": list(DEFAULT_CORE_UNITS),
            "optional_units": [
                {"name": name, "dependencies": list(deps)}
                for name, deps in DEFAULT_OPTIONAL_UNITS.items()
            ],
        }
        return cls.from_dict(entries, max_retries=max_retries, base_delay_ms=base_delay_ms)

    @property
    def all_requests(self) -> List[UnitLoadRequest]:
        return [*self.stylesheets, *self.core_units, *self.optional_units]

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        max_retries: int = 3,
        base_delay_ms: int = 1000,
    ) -> "BootManifest":
        """Build a manifest from parsed YAML.

        Sections that are absent fall back to the stock asset set; an empty
        list clears a section. ``max_retries`` and ``base_delay_ms`` apply to
        entries that do not set their own.

        Raises:
            ValueError: If an entry is neither a name nor a mapping with a name.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("Boot manifest must be a mapping")
        stock: Optional[BootManifest] = None
        sections = {}
        for key, defaults in (
            ("stylesheets", STYLESHEET_DEFAULTS),
            ("core_units", CORE_DEFAULTS),
            ("optional_units", OPTIONAL_DEFAULTS),
        ):
            if key in data:
                sections[key] = _parse_section(
                    data[key], defaults, max_retries=max_retries, base_delay_ms=base_delay_ms,
                )
            else:
                if stock is None:
                    stock = cls.default(max_retries=max_retries, base_delay_ms=base_delay_ms)
                sections[key] = list(getattr(stock, key))
        return cls(**sections)

    @classmethod
    def from_yaml(
        cls,
        yaml_path: Union[str, Path],
        max_retries: int = 3,
        base_delay_ms: int = 1000,
    ) -> "BootManifest":
        """Load a manifest from a YAML file."""
        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        manifest = cls.from_dict(data, max_retries=max_retries, base_delay_ms=base_delay_ms)
        logger.info(
            "Loaded boot manifest %s: %d stylesheets, %d core units, %d optional units",
            yaml_path, len(manifest.stylesheets), len(manifest.core_units),
            len(manifest.optional_units),
        )
        return manifest

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stylesheets": [r.to_dict() for r in self.stylesheets],
            "core_units": [r.to_dict() for r in self.core_units],
            "optional_units": [r.to_dict() for r in self.optional_units],
        }


def _parse_section(
    entries: Any,
    defaults: _SectionDefaults,
    *,
    max_retries: int,
    base_delay_ms: int,
) -> List[UnitLoadRequest]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError(f"Manifest section must be a list, got {type(entries).__name__}")
    requests = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ValueError(f"Manifest entry must be a name or a mapping with 'name': {entry!r}")
        requests.append(UnitLoadRequest(
            str(entry["name"]),
            dependencies=tuple(entry.get("dependencies", defaults.dependencies)),
            max_retries=int(entry.get("max_retries", max_retries)),
            timeout_ms=int(entry.get("timeout_ms", defaults.timeout_ms)),
            critical=bool(entry.get("critical", defaults.critical)),
            base_delay_ms=int(entry.get("base_delay_ms", base_delay_ms)),
            kind=defaults.kind,
        ))
    return requests
