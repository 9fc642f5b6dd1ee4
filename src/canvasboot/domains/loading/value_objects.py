"""Loading Domain Value Objects.

Immutable types that carry no identity. Equality is structural.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

DependencyCheck = Callable[[], bool]


class UnitKind(str, enum.Enum):
    """What a unit contributes once loaded. Informational only."""
    SCRIPT = "script"
    STYLESHEET = "stylesheet"


class LoadStatus(str, enum.Enum):
    """Exactly one status holds per unit name at any time.

    LOADED is terminal. FAILED is not: a fresh request retries the unit.
    """
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"

    @property
    def is_settled(self) -> bool:
        return self is not LoadStatus.LOADING


@dataclass(frozen=True)
class DependencyPredicate:
    """A named readiness check owned by the DependencyRegistry.

    Attributes:
        name: Capability name (e.g. "bridge").
        check: Zero-argument callable returning True once ready.
    """
    name: str
    check: DependencyCheck = field(compare=False)


@dataclass(frozen=True)
class LoadState:
    """Current load state of a single unit."""
    status: LoadStatus
    error: Optional[BaseException] = field(default=None, compare=False)

    @classmethod
    def loading(cls) -> LoadState:
        return cls(LoadStatus.LOADING)

    @classmethod
    def loaded(cls) -> LoadState:
        return cls(LoadStatus.LOADED)

    @classmethod
    def failed(cls, error: BaseException) -> LoadState:
        return cls(LoadStatus.FAILED, error)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"status": self.status.value}
        if self.error is not None:
            d["error"] = str(self.error)
        return d


@dataclass(frozen=True)
class UnitLoadRequest:
    """Request to load one named unit.

    Attributes:
        name: Unit identifier, unique per in-flight load.
        dependencies: Capability names that must be ready first.
        max_retries: Additional attempts after the first (>= 0).
        timeout_ms: Bound for the dependency wait and for each attempt (> 0).
        critical: Whether a failure rejects a load_many() batch.
        base_delay_ms: Backoff base; attempt n waits base * 2^(n-1).
        kind: Script or stylesheet.
    """
    name: str
    dependencies: Tuple[str, ...] = ()
    max_retries: int = 3
    timeout_ms: int = 10000
    critical: bool = True
    base_delay_ms: int = 1000
    kind: UnitKind = UnitKind.SCRIPT

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Unit name must not be empty")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        # Accept lists from callers; keep the stored value hashable.
        if not isinstance(self.dependencies, tuple):
            object.__setattr__(self, "dependencies", tuple(self.dependencies))

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dependencies": list(self.dependencies),
            "max_retries": self.max_retries,
            "timeout_ms": self.timeout_ms,
            "critical": self.critical,
            "base_delay_ms": self.base_delay_ms,
            "kind": self.kind.value,
        }
