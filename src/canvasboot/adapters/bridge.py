"""Host bridge adapter.

The bridge is acquired once; later calls return the cached handle. Inbound
host messages are fanned out to ``on_message`` subscribers through
``dispatch``. When the host API cannot be acquired, recovery may switch
the manager into fallback mode, where a ``FallbackBridge`` queues outbound
messages instead of delivering them.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, runtime_checkable

from ..domains.shared.kernel import BridgeUnavailableError
from ..domains.shared.telemetry import GuardedTelemetry

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Any]


@runtime_checkable
class BridgeHandle(Protocol):
    """What ``acquire()`` hands back: something that can post to the host."""

    def post_message(self, message: Dict[str, Any]) -> Any: ...


class InMemoryBridgeHandle:
    """Host handle that keeps outbound messages in a bounded outbox.

    Used when the orchestrator runs without a real host, e.g. behind the
    diagnostics server.
    """

    def __init__(self, max_messages: int = 200):
        self.outbox: Deque[Dict[str, Any]] = deque(maxlen=max_messages)

    def post_message(self, message: Dict[str, Any]) -> None:
        logger.debug("Host <- %s", message)
        self.outbox.append(dict(message))


class FallbackBridge:
    """Reduced-capability handle installed when the host is unavailable."""

    is_fallback = True

    def __init__(self, max_queued: int = 500):
        self.queued: Deque[Dict[str, Any]] = deque(maxlen=max_queued)

    def post_message(self, message: Dict[str, Any]) -> None:
        self.queued.append(dict(message))

    def drain(self) -> List[Dict[str, Any]]:
        messages = list(self.queued)
        self.queued.clear()
        return messages


class BridgeManager:
    """Acquires the host bridge once and owns inbound/outbound messaging."""

    COMPONENT = "BridgeManager"

    def __init__(
        self,
        acquire: Optional[Callable[[], Any]] = None,
        telemetry: Any = None,
    ):
        self._acquire = acquire
        self.telemetry = GuardedTelemetry(telemetry)
        self._handle: Optional[Any] = None
        self._handlers: List[MessageHandler] = []
        self.acquisition_attempts = 0
        self.error_state: Optional[str] = None
        self.fallback_mode = False

    @property
    def handle(self) -> Optional[Any]:
        return self._handle

    @property
    def is_available(self) -> bool:
        return self._handle is not None

    def acquire(self) -> Any:
        """Acquire the host bridge, or return the cached handle.

        Raises:
            BridgeUnavailableError: No acquire function was configured or it
                raised.
        """
        if self._handle is not None:
            return self._handle
        if self._acquire is None:
            self.error_state = "no acquire function configured"
            raise BridgeUnavailableError("Host bridge API not available")

        self.acquisition_attempts += 1
        started = time.perf_counter()
        try:
            handle = self._acquire()
        except Exception as e:
            self.error_state = str(e)
            self.telemetry.track_resource_load("bridge", "acquire", 0, False, {"error": str(e)})
            self.telemetry.log(
                "ERROR", self.COMPONENT, "Failed to acquire host bridge",
                {"attempt": self.acquisition_attempts}, e,
            )
            raise BridgeUnavailableError(f"Host bridge acquisition failed: {e}") from e
        if handle is None:
            self.error_state = "acquire returned no handle"
            raise BridgeUnavailableError("Host bridge not available: acquire returned no handle")

        self._handle = handle
        self.error_state = None
        duration = (time.perf_counter() - started) * 1000
        self.telemetry.track_resource_load("bridge", "acquire", duration, True)
        self.telemetry.track_system_event(
            "bridge-acquired", {"attempts": self.acquisition_attempts},
        )
        logger.info("Host bridge acquired after %d attempt(s)", self.acquisition_attempts)
        return handle

    def enable_fallback(self) -> FallbackBridge:
        """Replace the (missing) host handle with a FallbackBridge."""
        if isinstance(self._handle, FallbackBridge):
            return self._handle
        fallback = FallbackBridge()
        self._handle = fallback
        self.fallback_mode = True
        self.error_state = None
        logger.warning("Host bridge unavailable, running in fallback mode")
        self.telemetry.track_system_event("bridge-fallback-enabled")
        return fallback

    def post_message(self, message: Dict[str, Any]) -> bool:
        """Best-effort send to the host. Returns False if nothing was sent."""
        if self._handle is None:
            logger.debug("Dropping message %s, bridge not acquired", message.get("type"))
            return False
        post = getattr(self._handle, "post_message", None) or getattr(self._handle, "postMessage", None)
        if post is None:
            logger.warning("Bridge handle %r cannot post messages", type(self._handle).__name__)
            return False
        try:
            post(message)
        except Exception as e:
            logger.warning("Posting %s to host failed: %s", message.get("type"), e)
            return False
        return True

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Subscribe to inbound host messages. Returns an unsubscribe function."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def dispatch(self, message: Dict[str, Any]) -> int:
        """Deliver an inbound host message to every subscriber.

        Returns:
            Number of handlers that ran without raising.
        """
        delivered = 0
        for handler in list(self._handlers):
            try:
                handler(message)
                delivered += 1
            except Exception as e:
                logger.error("Host message handler failed for %s: %s", message.get("type"), e)
        return delivered

    def status(self) -> Dict[str, Any]:
        return {
            "available": self.is_available,
            "fallback_mode": self.fallback_mode,
            "acquisition_attempts": self.acquisition_attempts,
            "error_state": self.error_state,
            "subscribers": len(self._handlers),
        }
