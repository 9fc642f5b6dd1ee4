"""Canvas Boot - boot-time orchestrator for host-embedded canvas applications."""

from canvasboot.config import BootConfig, load_boot_config  # noqa: F401
from canvasboot.container import ServiceContainer  # noqa: F401
from canvasboot.manifest import BootManifest  # noqa: F401

__all__ = ["BootConfig", "BootManifest", "ServiceContainer", "load_boot_config"]

__version__ = "0.1.0"
