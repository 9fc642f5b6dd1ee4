"""Loading Domain Aggregate Root.

The LoadPartition owns the {loaded, loading, failed} partition of unit
names together with the per-unit and run-scoped completion callbacks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .value_objects import LoadState, LoadStatus

logger = logging.getLogger(__name__)

UnitCallback = Callable[[Optional[BaseException], str], Any]
AllLoadedCallback = Callable[[], Any]


@dataclass
class LoadPartition:
    """Aggregate root: per-unit load state and completion callbacks.

    Invariants:
        - Exactly one LoadState holds per known unit name.
        - LOADED is terminal: a loaded unit never re-enters LOADING.
        - Per-name callbacks fire once, when the unit settles, then are
          cleared.
        - The all-loaded signal is run-scoped: it is only raised by an
          explicit notify_all_loaded() and cleared by begin_run().

    Concurrency:
        Mutated only from the event loop thread; no locking.
    """
    _states: Dict[str, LoadState] = field(default_factory=dict)
    _callbacks: Dict[str, List[UnitCallback]] = field(default_factory=dict)
    _all_loaded_callbacks: List[AllLoadedCallback] = field(default_factory=list)
    _all_loaded_signalled: bool = False

    # ---- state ----

    def state_of(self, name: str) -> Optional[LoadState]:
        return self._states.get(name)

    def status_of(self, name: str) -> Optional[LoadStatus]:
        state = self._states.get(name)
        return state.status if state else None

    def is_loaded(self, name: str) -> bool:
        return self.status_of(name) == LoadStatus.LOADED

    def is_loading(self, name: str) -> bool:
        return self.status_of(name) == LoadStatus.LOADING

    def mark_loading(self, name: str) -> None:
        """Move a unit into LOADING.

        Raises:
            ValueError: If the unit is already LOADED.
        """
        if self.is_loaded(name):
            raise ValueError(f"Unit {name} is already loaded")
        self._states[name] = LoadState.loading()

    def mark_loaded(self, name: str) -> None:
        self._states[name] = LoadState.loaded()
        self._fire(name, None)

    def mark_failed(self, name: str, error: BaseException) -> None:
        if self.is_loaded(name):
            raise ValueError(f"Unit {name} is already loaded")
        self._states[name] = LoadState.failed(error)
        self._fire(name, error)

    def names_with(self, status: LoadStatus) -> List[str]:
        return sorted(n for n, s in self._states.items() if s.status == status)

    @property
    def loaded(self) -> List[str]:
        return self.names_with(LoadStatus.LOADED)

    @property
    def loading(self) -> List[str]:
        return self.names_with(LoadStatus.LOADING)

    @property
    def failed(self) -> List[str]:
        return self.names_with(LoadStatus.FAILED)

    def reset_failed(self) -> List[str]:
        """Forget every FAILED unit so a fresh request starts from scratch."""
        names = self.failed
        for name in names:
            del self._states[name]
        return names

    # ---- per-unit callbacks ----

    def add_callback(self, name: str, callback: UnitCallback) -> bool:
        """Fire immediately if the unit is settled, else queue it.

        Returns:
            True if the callback was queued, False if it already fired.
        """
        state = self._states.get(name)
        if state is not None and state.status.is_settled:
            self._invoke(callback, state.error, name)
            return False
        self._callbacks.setdefault(name, []).append(callback)
        return True

    @property
    def pending_callback_count(self) -> int:
        return sum(len(cbs) for cbs in self._callbacks.values())

    def _fire(self, name: str, error: Optional[BaseException]) -> None:
        for callback in self._callbacks.pop(name, []):
            self._invoke(callback, error, name)

    @staticmethod
    def _invoke(callback: UnitCallback, error: Optional[BaseException], name: str) -> None:
        try:
            callback(error, name)
        except Exception as e:
            logger.error("Unit callback for %s failed: %s", name, e)

    # ---- run-scoped all-loaded signal ----

    @property
    def all_loaded_signalled(self) -> bool:
        return self._all_loaded_signalled

    def begin_run(self) -> None:
        self._all_loaded_signalled = False

    def add_all_loaded_callback(self, callback: AllLoadedCallback) -> None:
        """Register for every future signal; fires now if already signalled."""
        self._all_loaded_callbacks.append(callback)
        if self._all_loaded_signalled:
            self._invoke_all_loaded(callback)

    def notify_all_loaded(self) -> None:
        self._all_loaded_signalled = True
        for callback in list(self._all_loaded_callbacks):
            self._invoke_all_loaded(callback)

    @staticmethod
    def _invoke_all_loaded(callback: AllLoadedCallback) -> None:
        try:
            callback()
        except Exception as e:
            logger.error("All-loaded callback failed: %s", e)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": self.loaded,
            "loading": self.loading,
            "failed": self.failed,
            "pending_callbacks": self.pending_callback_count,
            "all_loaded": self._all_loaded_signalled,
        }
