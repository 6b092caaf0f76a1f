"""Version parsing and the legacy <-> SemVer2 mapping.

Versions are plain ``semantic_version.Version`` objects. Legacy 2-4 segment
versions are folded into SemVer2 losslessly:

    1.2      -> 1.2.0+SYSVERSION.MISSINGBUILD
    1.2.3    -> 1.2.3
    1.2.3.4  -> 1.2.4-SYSREV0000000004+SYSVERSION.HASREVISION

The revision form bumps the patch and carries the zero-padded revision as a
prerelease label, so 1.2.3 < 1.2.3.4 < 1.2.4 holds under SemVer2 ordering.
"""
from __future__ import annotations

import re
from typing import Optional, Tuple, Union

from semantic_version import Version

from ..constants import Constants
from ..errors import InvalidVersionError

_LEGACY_RE = re.compile(r'^(\d+)\.(\d+)(?:\.(\d+))?(?:\.(\d+))?$')
_INT32_MAX = 2147483647

LOWEST = Version(major=0, minor=0, patch=0, prerelease=("0",))
HIGHEST = Version(major=_INT32_MAX, minor=_INT32_MAX, patch=_INT32_MAX)

LegacyParts = Tuple[int, ...]


def encode_legacy(parts: LegacyParts) -> Version:
    """Encode a 2-4 part legacy version tuple as a SemVer2 version."""
    if not 2 <= len(parts) <= 4 or any(p < 0 for p in parts):
        raise InvalidVersionError(f"Legacy version needs 2-4 non-negative parts, got {parts!r}")
    major, minor = parts[0], parts[1]
    if len(parts) == 2:
        return Version(
            major=major,
            minor=minor,
            patch=0,
            build=(Constants.LEGACY_TAG, Constants.LEGACY_MISSING_BUILD),
        )
    if len(parts) == 3:
        return Version(major=major, minor=minor, patch=parts[2])

    revision = parts[3]
    if revision > _INT32_MAX:
        raise InvalidVersionError(f"Revision {revision} is out of range")
    label = f"{Constants.LEGACY_REVISION_PREFIX}{revision:0{Constants.LEGACY_REVISION_WIDTH}d}"
    return Version(
        major=major,
        minor=minor,
        patch=parts[2] + 1,
        prerelease=(label,),
        build=(Constants.LEGACY_TAG, Constants.LEGACY_HAS_REVISION),
    )


def _is_legacy(version: Version) -> bool:
    return Constants.LEGACY_TAG in (version.build or ())


def is_legacy_revision(version: Version) -> bool:
    """True when the version encodes a four-part legacy version."""
    return _is_legacy(version) and Constants.LEGACY_HAS_REVISION in version.build


def is_prerelease(version: Version) -> bool:
    """True for genuine prereleases; encoded legacy revisions are releases."""
    return bool(version.prerelease) and not is_legacy_revision(version)


def decode_legacy(version: Version) -> LegacyParts:
    """Decode a version produced by :func:`encode_legacy` back to its parts.

    Plain three-part releases decode to themselves; prereleases that are not
    encoded revisions have no legacy form.
    """
    if not _is_legacy(version):
        if version.prerelease:
            raise InvalidVersionError(f"{version} has no legacy representation")
        return (version.major, version.minor, version.patch)
    if Constants.LEGACY_MISSING_BUILD in version.build:
        return (version.major, version.minor)
    if Constants.LEGACY_HAS_REVISION in version.build:
        label = version.prerelease[0] if version.prerelease else ""
        digits = label[len(Constants.LEGACY_REVISION_PREFIX):]
        if not label.startswith(Constants.LEGACY_REVISION_PREFIX) or not digits.isdigit():
            raise InvalidVersionError(f"Malformed legacy revision label in {version}")
        return (version.major, version.minor, version.patch - 1, int(digits))
    raise InvalidVersionError(f"Unknown legacy encoding in {version}")


def parse_version(text: Union[str, Version]) -> Version:
    """Parse a SemVer2 or legacy 2-4 part version string."""
    if isinstance(text, Version):
        return text
    if not isinstance(text, str) or not text.strip():
        raise InvalidVersionError(f"Invalid empty version: {text!r}")
    value = text.strip()

    match = _LEGACY_RE.match(value)
    if match:
        return encode_legacy(tuple(int(g) for g in match.groups() if g is not None))
    try:
        return Version(value)
    except ValueError as exc:
        raise InvalidVersionError(f"Invalid version: {value!r}") from exc


def with_prerelease(version: Version, label: Optional[str]) -> Version:
    """Attach a manifest prerelease label to a release version."""
    if not label:
        return version
    if version.prerelease:
        raise InvalidVersionError(f"{format_version(version)} cannot take prerelease label {label!r}")
    try:
        return Version(f"{version.major}.{version.minor}.{version.patch}-{label.strip()}")
    except ValueError as exc:
        raise InvalidVersionError(f"Invalid prerelease label: {label!r}") from exc


def format_version(version: Version) -> str:
    """Render a version the way users wrote it (legacy versions in dotted form)."""
    if _is_legacy(version):
        return ".".join(str(p) for p in decode_legacy(version))
    return str(version)


def folder_version(version: Version) -> str:
    """Directory name for an installed version.

    Three-part form, unless the legacy original had a non-zero revision.
    """
    if is_legacy_revision(version):
        parts = decode_legacy(version)
        if parts[3]:
            return ".".join(str(p) for p in parts)
        return ".".join(str(p) for p in parts[:3])
    return f"{version.major}.{version.minor}.{version.patch}"


def same_precedence(left: Version, right: Version) -> bool:
    """SemVer2 precedence equality (build metadata ignored)."""
    return not left < right and not right < left
