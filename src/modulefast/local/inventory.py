"""Local inventory: find installed modules that already satisfy a requirement.

Layouts searched under every root::

    <root>/<Name>/<Version>/<Name>.psd1   versioned
    <root>/<Name>/<Name>.psd1             legacy flat

Folder names are only hints; the manifest version is authoritative.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from semantic_version import Version

from ..common.logging_utils import extra_context, is_debug_enabled
from ..constants import Constants
from ..errors import InvalidVersionError
from ..versioning.models import Requirement, ResolvedModule
from ..versioning.ranges import select_highest
from ..versioning.version import folder_version, parse_version, same_precedence
from .manifest import ModuleManifest, locate_manifest, read_manifest

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _module_dirs(root: Path, name: str) -> List[Path]:
    if not root.is_dir():
        return []
    wanted = name.lower()
    return sorted(p for p in root.iterdir() if p.is_dir() and p.name.lower() == wanted)


def _is_version_name(name: str) -> bool:
    try:
        parse_version(name)
    except InvalidVersionError:
        return False
    return True


def _version_dirs(module_dir: Path, requirement: Requirement) -> List[Path]:
    required = requirement.version_range.required
    if required is not None:
        pinned = module_dir / folder_version(required)
        return [pinned] if pinned.is_dir() else []

    dirs = [p for p in sorted(module_dir.iterdir()) if p.is_dir() and _is_version_name(p.name)]
    if locate_manifest(module_dir, module_dir.name).is_file():
        dirs.append(module_dir)
    return dirs


def _read_candidates(module_dir: Path, requirement: Requirement) -> List[Tuple[Path, ModuleManifest]]:
    candidates: List[Tuple[Path, ModuleManifest]] = []
    for version_dir in _version_dirs(module_dir, requirement):
        if (version_dir / Constants.INCOMPLETE_MARKER).exists():
            logger.warning(
                "Skipping interrupted install at %s",
                version_dir,
                extra=extra_context(event="skip", component="inventory", outcome="incomplete", target=str(version_dir)),
            )
            continue
        manifest = read_manifest(locate_manifest(version_dir, module_dir.name))
        if requirement.guid and manifest.guid != requirement.guid:
            if is_debug_enabled(logger):
                logger.debug(
                    "GUID mismatch for local module",
                    extra=extra_context(
                        event="decision", component="inventory", outcome="guid_mismatch",
                        target=str(version_dir), expected=requirement.guid, found=manifest.guid,
                    ),
                )
            continue
        candidates.append((version_dir, manifest))
    return candidates


def best_match(
    requirement: Requirement,
    search_paths: Iterable[PathLike],
    strict: bool = False,
) -> Optional[ResolvedModule]:
    """Return the highest installed version satisfying ``requirement``.

    Raises ModuleCorruptionError when a version directory has a missing or
    unparseable manifest.
    """
    candidates: List[Tuple[Path, ModuleManifest]] = []
    for root in search_paths:
        for module_dir in _module_dirs(Path(root), requirement.name):
            candidates.extend(_read_candidates(module_dir, requirement))

    best: Optional[Version] = select_highest(
        requirement.version_range,
        (manifest.version for _, manifest in candidates),
        include_prerelease=requirement.allows_prerelease,
        strict=strict,
    )
    if best is None:
        return None
    version_dir, manifest = next((d, m) for d, m in candidates if m.version == best)
    module = ResolvedModule(
        name=manifest.name,
        version=manifest.version,
        location=str(version_dir),
        guid=manifest.guid,
        is_local=True,
    )
    module.attach_path(version_dir)
    return module


def find(
    requirement: Requirement,
    search_paths: Iterable[PathLike],
    update: bool = False,
    strict: bool = False,
) -> Optional[ResolvedModule]:
    """Find an installed module that satisfies ``requirement``.

    In update mode only a match equal to the range's maximum is accepted;
    anything lower must be checked against the registry first.
    """
    match = best_match(requirement, search_paths, strict=strict)
    if match is None or not update:
        return match
    version_range = requirement.version_range
    if version_range.has_upper and version_range.max_inclusive and same_precedence(match.version, version_range.max):
        return match
    if is_debug_enabled(logger):
        logger.debug(
            "Local match kept as update fallback",
            extra=extra_context(event="decision", component="inventory", outcome="fallback", target=str(match)),
        )
    return None
