"""Recovery Domain Aggregate Root.

The RecoveryEngine is the aggregate root for the Recovery bounded
context. It owns the error pattern table and the strategy catalog.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from ..shared.kernel import ErrorKind
from .value_objects import ErrorPattern, RecoveryAction, RecoveryStrategy

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_CAP_MS = 5000


@dataclass
class RecoveryEngine:
    """Aggregate root: owns the error pattern table and strategy catalog.

    Invariants:
        - At most one strategy per ErrorKind.
        - Patterns are evaluated in priority order (highest first), ties in
          registration order. The first match wins.
        - A structured ``kind`` attribute on an error always takes
          precedence over message patterns.

    Concurrency:
        Read-heavy, write-rare. Writes occur at construction or when
        custom patterns are registered. No locking is needed.
    """
    _error_patterns: List[ErrorPattern] = field(default_factory=list)
    _strategies: Dict[ErrorKind, RecoveryStrategy] = field(default_factory=dict)

    @classmethod
    def with_defaults(cls, backoff_cap_ms: Optional[float] = DEFAULT_BACKOFF_CAP_MS) -> RecoveryEngine:
        """Create engine pre-populated with the default rules and strategies."""
        engine = cls()
        engine._register_default_patterns()
        engine._register_default_strategies(backoff_cap_ms)
        return engine

    def classify(self, error: Union[BaseException, str]) -> ErrorKind:
        """Classify an error into an ErrorKind.

        Errors carrying a ``kind`` attribute (see BootError) are trusted as
        is. Everything else is matched against the message patterns.
        """
        if not isinstance(error, str):
            tagged = self._structured_kind(error)
            if tagged is not None:
                return tagged
            error = str(error)
        return self.classify_message(error)

    def classify_message(self, error_message: str) -> ErrorKind:
        """Classify by message text only. Returns UNCLASSIFIED on no match."""
        for pattern in sorted(self._error_patterns, key=lambda p: -p.priority):
            if pattern.matches(error_message):
                return pattern.kind
        return ErrorKind.UNCLASSIFIED

    @staticmethod
    def _structured_kind(error: BaseException) -> Optional[ErrorKind]:
        kind = getattr(error, "kind", None)
        if kind is None:
            return None
        if isinstance(kind, ErrorKind):
            return kind
        try:
            return ErrorKind(kind)
        except ValueError:
            logger.debug("Ignoring unknown error kind tag %r", kind)
            return None

    def strategy_for(self, kind: ErrorKind) -> Optional[RecoveryStrategy]:
        return self._strategies.get(kind)

    def register_pattern(self, pattern: ErrorPattern) -> None:
        """Register a custom error pattern."""
        self._error_patterns.append(pattern)

    def register_strategy(self, strategy: RecoveryStrategy) -> None:
        """Register a strategy, replacing any existing one for its kind."""
        self._strategies[strategy.kind] = strategy

    @property
    def pattern_count(self) -> int:
        """Number of registered error patterns."""
        return len(self._error_patterns)

    @property
    def strategy_count(self) -> int:
        """Number of registered recovery strategies."""
        return len(self._strategies)

    @property
    def strategies(self) -> List[RecoveryStrategy]:
        return list(self._strategies.values())

    # ============================================================
    # Default pattern and strategy registration
    # ============================================================

    def _register_default_patterns(self) -> None:
        """Register the default message rules.

        Order matters: "required X not found" must be seen before the
        generic "not found" rule, and bridge acquisition failures before
        the generic "not available" wording.
        """
        patterns = [
            (
                ErrorKind.DUPLICATE_RESOURCE_DECLARATION,
                r"already been declared|duplicate declaration|already declared",
                80,
            ),
            (
                ErrorKind.BRIDGE_UNAVAILABLE,
                r"bridge.*(?:not available|unavailable)|already been acquired"
                r"|acquire\w*\s*(?:is not a function|failed)",
                70,
            ),
            (
                ErrorKind.REQUIRED_DEPENDENCY_MISSING,
                r"required .*(?:not found|not available|missing)|missing required",
                60,
            ),
            (
                ErrorKind.RESOURCE_CONTEXT_INVALID,
                r"rendering context|context (?:lost|invalid)|failed to get 2d|canvas context",
                50,
            ),
            (
                ErrorKind.RESOURCE_NOT_FOUND,
                r"not found|no such|\b404\b|failed to load resource",
                40,
            ),
            (
                ErrorKind.OPERATION_TIMEOUT,
                r"timed out|timeout",
                30,
            ),
            (
                ErrorKind.RESOURCE_EXHAUSTION,
                r"out of memory|memory limit|quota exceeded|resource exhausted|too many",
                20,
            ),
        ]
        for kind, pattern_str, priority in patterns:
            self._error_patterns.append(
                ErrorPattern.from_string(kind, pattern_str, priority)
            )

    def _register_default_strategies(self, cap_ms: Optional[float]) -> None:
        table = [
            (ErrorKind.DUPLICATE_RESOURCE_DECLARATION, RecoveryAction.CLEANUP_AND_REINITIALIZE,
             True, 3, 1000, "Resolving duplicate declarations..."),
            (ErrorKind.RESOURCE_NOT_FOUND, RecoveryAction.REINITIALIZE,
             True, 3, 1000, "Reloading missing resources..."),
            (ErrorKind.RESOURCE_CONTEXT_INVALID, RecoveryAction.RECREATE_RESOURCE,
             True, 3, 1000, "Recreating canvas..."),
            (ErrorKind.REQUIRED_DEPENDENCY_MISSING, RecoveryAction.DECLARE_UNRECOVERABLE,
             False, 1, 0, "A required component is missing. Please reload."),
            (ErrorKind.OPERATION_TIMEOUT, RecoveryAction.EXTEND_TIMEOUTS,
             True, 2, 1000, "Retrying with extended timeouts..."),
            (ErrorKind.BRIDGE_UNAVAILABLE, RecoveryAction.FALLBACK_MODE,
             True, 1, 500, "Host connection unavailable, entering fallback mode..."),
            (ErrorKind.RESOURCE_EXHAUSTION, RecoveryAction.RELEASE_RESOURCES,
             True, 1, 2000, "Releasing resources..."),
            (ErrorKind.UNCLASSIFIED, RecoveryAction.GENERIC_RETRY,
             True, 1, 500, "Attempting recovery..."),
        ]
        for kind, action, auto, max_retries, base_ms, message in table:
            self._strategies[kind] = RecoveryStrategy(
                kind=kind,
                action=action,
                auto_recoverable=auto,
                max_retries=max_retries,
                backoff_base_ms=base_ms,
                backoff_cap_ms=cap_ms,
                message=message,
            )
