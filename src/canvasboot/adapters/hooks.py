"""Progress hooks that report to the host through the bridge."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..domains.shared.hooks import NullProgressHooks, ProgressHooks

logger = logging.getLogger(__name__)

__all__ = ["HostProgressHooks", "NullProgressHooks", "ProgressHooks"]


class HostProgressHooks:
    """Records progress state and best-effort posts it to the host.

    Attributes:
        progress_text: Last progress text, None while hidden.
        failure: Last terminal failure shown, if any.
        history: Every (hook, text) pair shown, oldest first, bounded.
    """

    def __init__(self, bridge: Any = None, max_history: int = 100):
        self.bridge = bridge
        self.max_history = max_history
        self.progress_text: Optional[str] = None
        self.failure: Optional[Dict[str, Any]] = None
        self.history: List[Dict[str, Any]] = []

    @property
    def visible(self) -> bool:
        return self.progress_text is not None

    def show_progress(self, text: str) -> None:
        self.progress_text = text
        self._record("progress", text)
        self._post({"type": "progress", "text": text})

    def show_terminal_failure(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        self.progress_text = None
        self.failure = {
            "error": str(error),
            "error_type": type(error).__name__,
            "context": dict(context or {}),
        }
        self._record("terminal-failure", str(error))
        logger.error("Terminal failure shown to user: %s", error)
        self._post({"type": "terminal-failure", **self.failure})

    def hide_progress(self) -> None:
        self.progress_text = None
        self._record("progress-hidden", "")
        self._post({"type": "progress-hidden"})

    def _record(self, hook: str, text: str) -> None:
        self.history.append({"hook": hook, "text": text})
        if len(self.history) > self.max_history:
            self.history.pop(0)

    def _post(self, message: Dict[str, Any]) -> None:
        if self.bridge is None or not self.bridge.is_available:
            return
        self.bridge.post_message(message)

    def status(self) -> Dict[str, Any]:
        return {
            "visible": self.visible,
            "progress_text": self.progress_text,
            "failure": self.failure,
        }
