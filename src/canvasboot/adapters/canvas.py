"""Canvas subsystem adapter.

Rendering is out of scope: the orchestrator only needs init(), cleanup()
and a readiness flag. ``HeadlessCanvas`` provides exactly that, with an
optional initializer hook for embedding a real surface.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, Optional

from ..domains.pipeline.services import CanvasSubsystem

logger = logging.getLogger(__name__)

__all__ = ["CanvasSubsystem", "HeadlessCanvas"]


class HeadlessCanvas:
    """Canvas without a rendering surface.

    Args:
        initializer: Optional callable run by init(); may be async. It
            returns a falsy value or raises to signal failure.
        width: Logical surface width.
        height: Logical surface height.
    """

    def __init__(
        self,
        initializer: Optional[Callable[[], Any]] = None,
        width: int = 1280,
        height: int = 720,
    ):
        self.initializer = initializer
        self.width = width
        self.height = height
        self._ready = False
        self.init_count = 0
        self.cleanup_count = 0

    @property
    def ready(self) -> bool:
        return self._ready

    async def init(self) -> bool:
        if self._ready:
            return True
        self.init_count += 1
        if self.initializer is not None:
            result = self.initializer()
            if inspect.isawaitable(result):
                result = await result
            if result is False:
                logger.warning("Canvas initializer reported failure")
                return False
        self._ready = True
        logger.info("Canvas ready (%dx%d)", self.width, self.height)
        return True

    async def cleanup(self) -> None:
        self._ready = False
        self.cleanup_count += 1
        logger.debug("Canvas cleaned up")

    def status(self) -> Dict[str, Any]:
        return {
            "ready": self._ready,
            "width": self.width,
            "height": self.height,
            "init_count": self.init_count,
            "cleanup_count": self.cleanup_count,
        }
