"""Version model: versions, ranges, requirements and plans."""

from .version import (
    HIGHEST,
    LOWEST,
    decode_legacy,
    encode_legacy,
    folder_version,
    format_version,
    is_prerelease,
    parse_version,
)
from .ranges import VersionRange, intersect, overlaps, parse_range, satisfies, select_highest
from .models import InstallationPlan, Requirement, ResolvedModule
from .parser import parse_requirement, parse_requirements

__all__ = [
    "HIGHEST",
    "LOWEST",
    "decode_legacy",
    "encode_legacy",
    "folder_version",
    "format_version",
    "is_prerelease",
    "parse_version",
    "VersionRange",
    "intersect",
    "overlaps",
    "parse_range",
    "satisfies",
    "select_highest",
    "InstallationPlan",
    "Requirement",
    "ResolvedModule",
    "parse_requirement",
    "parse_requirements",
]
