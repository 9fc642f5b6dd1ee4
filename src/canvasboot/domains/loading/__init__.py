"""Loading Bounded Context.

Dependency readiness predicates, per-unit loading with retries and
backoff, and the coordinator that owns the {loaded, loading, failed}
partition.
"""
from .value_objects import (
    DependencyPredicate, LoadState, LoadStatus, UnitKind, UnitLoadRequest,
)
from .aggregates import LoadPartition
from .services import DependencyRegistry, LoadCoordinator, UnitLoader, UnitSource
from .events import (
    DependenciesTimedOut, UnitAttemptFailed, UnitLoaded, UnitLoadFailed,
)

__all__ = [
    "DependencyPredicate", "LoadState", "LoadStatus", "UnitKind", "UnitLoadRequest",
    "LoadPartition",
    "DependencyRegistry", "LoadCoordinator", "UnitLoader", "UnitSource",
    "DependenciesTimedOut", "UnitAttemptFailed", "UnitLoaded", "UnitLoadFailed",
]
