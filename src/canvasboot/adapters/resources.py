"""Resource resolver: relative resource paths to host resource URIs and files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote

logger = logging.getLogger(__name__)

DEFAULT_BASE_URI = "canvas-resource:/webview"


class ResourceResolver:
    """Maps paths relative to the resource root onto URIs and files.

    Until ``initialize()`` has been called with a bridge handle, URIs are
    built with the fallback base URI.
    """

    def __init__(
        self,
        root: Union[str, Path, None] = None,
        base_uri: Optional[str] = None,
        fallback_base_uri: str = DEFAULT_BASE_URI,
    ):
        self.root = Path(root).resolve() if root is not None else Path.cwd()
        self.base_uri = base_uri
        self.fallback_base_uri = fallback_base_uri
        self.initialized = False
        self._bridge_handle: Optional[Any] = None

    @property
    def is_ready(self) -> bool:
        return self.initialized

    def initialize(self, bridge_handle: Any = None) -> None:
        self._bridge_handle = bridge_handle
        self.initialized = True
        logger.info("Resource resolver initialized at %s", self.root)

    @staticmethod
    def encode_path_segments(path: str) -> str:
        return "/".join(quote(segment, safe="") for segment in path.split("/"))

    def build_uri(self, relative_path: str) -> str:
        clean = relative_path.lstrip("/")
        base = self.base_uri if (self.initialized and self.base_uri) else self.fallback_base_uri
        if not self.initialized:
            logger.debug("Resolver not initialized, using fallback URI for %s", clean)
        return f"{base.rstrip('/')}/{self.encode_path_segments(clean)}"

    def resolve_path(self, relative_path: str) -> Path:
        """Absolute file path for ``relative_path``.

        Raises:
            ValueError: If the path escapes the resource root.
        """
        candidate = (self.root / relative_path.lstrip("/")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Resource path escapes resource root: {relative_path}")
        return candidate

    @staticmethod
    def validate_uri(uri: str) -> bool:
        if not uri or any(ch.isspace() for ch in uri):
            return False
        scheme, sep, rest = uri.partition(":")
        return bool(sep and scheme and rest)
