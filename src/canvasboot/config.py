"""Configuration for the boot orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Mapping, Optional, TypeVar

from dotenv import load_dotenv

_ENV_PREFIX = "CANVASBOOT_"
_ENV_LOADED = False

T = TypeVar("T")


@dataclass(frozen=True)
class BootConfig:
    """Holds runtime settings for the orchestrator.

    Timeouts and delays are in milliseconds unless the name says otherwise.
    """

    poll_interval_ms: int = 100
    dependency_timeout_ms: int = 30000
    unit_max_retries: int = 3
    unit_retry_delay_ms: int = 1000
    bridge_timeout_ms: int = 5000
    max_recovery_attempts: int = 3
    recovery_backoff_cap_ms: int = 5000
    report_interval_s: float = 0.0
    auto_report_error_threshold: int = 5
    resource_root: Optional[Path] = None
    resource_base_uri: Optional[str] = None
    manifest_path: Optional[Path] = None
    unit_package: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in (
            "poll_interval_ms", "dependency_timeout_ms", "bridge_timeout_ms",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        for name in (
            "unit_max_retries", "unit_retry_delay_ms", "max_recovery_attempts",
            "recovery_backoff_cap_ms", "report_interval_s", "auto_report_error_threshold",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @property
    def periodic_reports_enabled(self) -> bool:
        return self.report_interval_s > 0

    def with_overrides(
        self,
        *,
        manifest_path: Optional[Path] = None,
        log_level: Optional[str] = None,
        resource_root: Optional[Path] = None,
        max_recovery_attempts: Optional[int] = None,
        report_interval_s: Optional[float] = None,
    ) -> "BootConfig":
        """Return a copy with the provided overrides applied."""

        cfg = self
        if manifest_path is not None:
            cfg = replace(cfg, manifest_path=Path(manifest_path))
        if log_level:
            cfg = replace(cfg, log_level=log_level.upper())
        if resource_root is not None:
            cfg = replace(cfg, resource_root=Path(resource_root))
        if max_recovery_attempts is not None:
            cfg = replace(cfg, max_recovery_attempts=max_recovery_attempts)
        if report_interval_s is not None:
            cfg = replace(cfg, report_interval_s=report_interval_s)
        return cfg


def load_boot_config(environ: Optional[Mapping[str, str]] = None) -> BootConfig:
    """Load configuration from ``CANVASBOOT_*`` environment variables.

    A ``.env`` file in the working directory is loaded first when reading
    the process environment.

    Raises:
        ValueError: If a variable holds a value of the wrong type.
    """

    if environ is None:
        _ensure_env_loaded()
        environ = os.environ

    defaults = BootConfig()

    def get(name: str, parse: Callable[[str], T], default: T) -> T:
        key = _ENV_PREFIX + name
        raw = environ.get(key)
        if raw is None or not raw.strip():
            return default
        try:
            return parse(raw.strip())
        except ValueError as e:
            raise ValueError(f"Invalid value for {key}: {raw!r}") from e

    def optional_path(raw: str) -> Optional[Path]:
        return Path(raw).expanduser()

    return BootConfig(
        poll_interval_ms=get("POLL_INTERVAL_MS", int, defaults.poll_interval_ms),
        dependency_timeout_ms=get("DEPENDENCY_TIMEOUT_MS", int, defaults.dependency_timeout_ms),
        unit_max_retries=get("UNIT_MAX_RETRIES", int, defaults.unit_max_retries),
        unit_retry_delay_ms=get("UNIT_RETRY_DELAY_MS", int, defaults.unit_retry_delay_ms),
        bridge_timeout_ms=get("BRIDGE_TIMEOUT_MS", int, defaults.bridge_timeout_ms),
        max_recovery_attempts=get("MAX_RECOVERY_ATTEMPTS", int, defaults.max_recovery_attempts),
        recovery_backoff_cap_ms=get("RECOVERY_BACKOFF_CAP_MS", int, defaults.recovery_backoff_cap_ms),
        report_interval_s=get("REPORT_INTERVAL_S", float, defaults.report_interval_s),
        auto_report_error_threshold=get(
            "AUTO_REPORT_ERROR_THRESHOLD", int, defaults.auto_report_error_threshold,
        ),
        resource_root=get("RESOURCE_ROOT", optional_path, defaults.resource_root),
        resource_base_uri=get("RESOURCE_BASE_URI", str, defaults.resource_base_uri),
        manifest_path=get("MANIFEST", optional_path, defaults.manifest_path),
        unit_package=get("UNIT_PACKAGE", str, defaults.unit_package),
        log_level=get("LOG_LEVEL", str.upper, defaults.log_level),
    )


def _ensure_env_loaded() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return
    _ENV_LOADED = True
    dotenv_path = Path.cwd() / ".env"
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path)
    else:
        load_dotenv()
