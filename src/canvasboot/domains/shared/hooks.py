"""Progress and failure UI port.

Hooks are side-effecting only. Callers treat them as best effort: a hook
that raises is logged and never interrupts initialization or recovery.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressHooks(Protocol):
    """Protocol for progress text and the terminal-failure view."""

    def show_progress(self, text: str) -> None: ...

    def show_terminal_failure(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> None: ...

    def hide_progress(self) -> None: ...


class NullProgressHooks:
    def show_progress(self, text: str) -> None:
        return None

    def show_terminal_failure(self, error, context=None) -> None:
        return None

    def hide_progress(self) -> None:
        return None


class GuardedHooks:
    """Absorbs hook failures; ``None`` degrades to NullProgressHooks."""

    def __init__(self, hooks: Optional[Any] = None):
        if isinstance(hooks, GuardedHooks):
            hooks = hooks.hooks
        self.hooks: Any = hooks if hooks is not None else NullProgressHooks()

    def _call(self, method: str, *args: Any) -> None:
        try:
            getattr(self.hooks, method)(*args)
        except Exception as e:
            logger.warning("Progress hook %s failed: %s", method, e)

    def show_progress(self, text: str) -> None:
        self._call("show_progress", text)

    def show_terminal_failure(self, error, context=None) -> None:
        self._call("show_terminal_failure", error, dict(context or {}))

    def hide_progress(self) -> None:
        self._call("hide_progress")
