"""Shared constants for the video project compiler."""
from __future__ import annotations

from types import MappingProxyType

# Global the compiled IIFE assigns its exports to.
RUNTIME_BUNDLE_GLOBAL = "__REMOTION_BUNDLE__"
# Global registry the host fills with its already-initialized runtime packages.
RUNTIME_PACKAGE_GLOBAL = "__REMOTION_RUNTIME_PACKAGES__"

DEFAULT_ENTRY_FILE = "/src/Video.tsx"

DEFAULT_META = MappingProxyType(
    {
        "title": "Untitled",
        "compositionId": "Main",
        "width": 1920,
        "height": 1080,
        "fps": 30,
        "durationInFrames": 150,
    }
)

MAX_SESSION_PROJECTS = 250

ERROR_FALLBACK_BUNDLE = (
    f"var {RUNTIME_BUNDLE_GLOBAL} = "
    "{ default: function RemotionFallback() { return null; } };"
)


__all__ = [
    "DEFAULT_ENTRY_FILE",
    "DEFAULT_META",
    "ERROR_FALLBACK_BUNDLE",
    "MAX_SESSION_PROJECTS",
    "RUNTIME_BUNDLE_GLOBAL",
    "RUNTIME_PACKAGE_GLOBAL",
]
