"""Installed-module discovery and manifest reading."""

from .manifest import ModuleManifest, locate_manifest, parse_psd1, read_manifest, scan_manifest
from .inventory import best_match, find

__all__ = [
    "ModuleManifest",
    "locate_manifest",
    "parse_psd1",
    "read_manifest",
    "scan_manifest",
    "best_match",
    "find",
]
