"""Registration documents: catalog entries, page selection and version picking.

A registration index lists pages. Small packages inline every leaf in the
index; large ones only give each page's ``@id`` and ``lower``/``upper``
version bounds, and the page must be fetched to see its leaves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from semantic_version import Version

from ..common.logging_utils import extra_context, is_debug_enabled
from ..errors import InvalidRangeError, InvalidVersionError, InvariantViolationError, RegistryTransportError
from ..versioning.models import Requirement
from ..versioning.ranges import VersionRange, overlaps, parse_range, select_highest
from ..versioning.version import HIGHEST, LOWEST, format_version, parse_version

logger = logging.getLogger(__name__)


@dataclass
class CatalogEntry:
    """Metadata of one module version as published by the registry."""

    name: str
    version: Version
    content_url: str
    dependencies: List[Requirement] = field(default_factory=list)
    listed: bool = True


def _leaf_version(leaf: Dict[str, Any]) -> Optional[Version]:
    entry = leaf.get("catalogEntry")
    if not isinstance(entry, dict):
        return None
    try:
        return parse_version(str(entry.get("version", "")))
    except InvalidVersionError:
        if is_debug_enabled(logger):
            logger.debug(
                "Skipping catalog entry with unparseable version",
                extra=extra_context(event="parse", component="catalog", outcome="invalid_version",
                                    target=str(entry.get("id")), version=str(entry.get("version"))),
            )
        return None


def parse_dependencies(catalog_entry: Dict[str, Any]) -> List[Requirement]:
    """Flatten every dependency group into requirements, first occurrence wins."""
    found: Dict[str, Requirement] = {}
    for group in catalog_entry.get("dependencyGroups") or []:
        for dep in group.get("dependencies") or []:
            name = dep.get("id")
            if not name or name.lower() in found:
                continue
            try:
                version_range = parse_range(dep.get("range"))
            except InvalidRangeError as exc:
                raise RegistryTransportError(
                    f"Dependency {name} of {catalog_entry.get('id')} has an invalid range: {exc.message}"
                ) from exc
            found[name.lower()] = Requirement(name=name, version_range=version_range)
    return list(found.values())


def parse_leaf(leaf: Dict[str, Any], fallback_name: str) -> CatalogEntry:
    entry = leaf["catalogEntry"]
    content_url = leaf.get("packageContent") or entry.get("packageContent")
    if not content_url:
        raise RegistryTransportError(f"Catalog entry {entry.get('id')} {entry.get('version')} has no packageContent")
    return CatalogEntry(
        name=entry.get("id") or fallback_name,
        version=parse_version(str(entry["version"])),
        content_url=content_url,
        dependencies=parse_dependencies(entry),
        listed=entry.get("listed", True) is not False,
    )


def inlined_leaves(index: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Leaves carried directly in the registration index."""
    leaves: List[Dict[str, Any]] = []
    for page in index.get("items") or []:
        leaves.extend(page.get("items") or [])
    return leaves


def page_range(page: Dict[str, Any]) -> VersionRange:
    """The inclusive version interval a page declares."""
    try:
        low = parse_version(page["lower"]) if page.get("lower") else LOWEST
        high = parse_version(page["upper"]) if page.get("upper") else HIGHEST
        return VersionRange(min=low, max=high)
    except (InvalidVersionError, InvalidRangeError):
        return VersionRange()


def candidate_pages(index: Dict[str, Any], version_range: VersionRange) -> List[Dict[str, Any]]:
    """Pages without inlined leaves whose interval overlaps the range, highest first."""
    pages = [
        page for page in index.get("items") or []
        if not page.get("items") and page.get("@id") and overlaps(page_range(page), version_range)
    ]
    return sorted(pages, key=lambda p: page_range(p).max.precedence_key, reverse=True)


def select_entry(
    leaves: Iterable[Dict[str, Any]],
    requirement: Requirement,
    strict: bool = False,
) -> Optional[CatalogEntry]:
    """Pick the highest leaf satisfying the requirement.

    Unlisted versions are only eligible when the requirement pins them
    exactly. Two leaves for the same version are an invariant violation.
    """
    pinned = requirement.version_range.required is not None
    versioned = []
    for leaf in leaves:
        version = _leaf_version(leaf)
        if version is None:
            continue
        if not pinned and leaf["catalogEntry"].get("listed", True) is False:
            continue
        versioned.append((version, leaf))

    best = select_highest(
        requirement.version_range,
        (v for v, _ in versioned),
        include_prerelease=requirement.allows_prerelease,
        strict=strict,
    )
    if best is None:
        return None
    matches = [leaf for v, leaf in versioned if v == best]
    if len(matches) > 1:
        raise InvariantViolationError(
            f"{len(matches)} catalog entries match version {format_version(best)}",
            requirement=requirement,
        )
    return parse_leaf(matches[0], requirement.name)
