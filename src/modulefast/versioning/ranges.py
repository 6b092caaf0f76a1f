"""Version ranges: parsing, satisfaction, overlap and highest-match selection."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from semantic_version import Version

from ..errors import InvalidRangeError, InvalidVersionError
from .version import HIGHEST, LOWEST, format_version, is_prerelease, parse_version, same_precedence

_WILDCARD_MINOR_RE = re.compile(r'^(\d+)\.(\d+)\.\*$')
_WILDCARD_MAJOR_RE = re.compile(r'^(\d+)\.\*$')
_SHORTHAND_OPS = (">=", "<=", ">", "<", "=")
_UNCONSTRAINED = ("", "*", "latest")


def _cmp(left: Version, right: Version) -> int:
    if left < right:
        return -1
    if right < left:
        return 1
    return 0


@dataclass(frozen=True)
class VersionRange:
    """An interval of versions; the defaults span every representable version."""

    min: Version = LOWEST
    max: Version = HIGHEST
    min_inclusive: bool = True
    max_inclusive: bool = True

    def __post_init__(self):
        order = _cmp(self.min, self.max)
        if order > 0:
            raise InvalidRangeError(f"Range minimum {self.min} is above maximum {self.max}")
        if order == 0 and not (self.min_inclusive and self.max_inclusive):
            raise InvalidRangeError(f"Range ({self.min}, {self.max}) is empty")

    @classmethod
    def exact(cls, version: Version) -> "VersionRange":
        return cls(min=version, max=version)

    @property
    def required(self) -> Optional[Version]:
        """The single allowed version, when the range pins one."""
        if self.min_inclusive and self.max_inclusive and same_precedence(self.min, self.max):
            return self.min
        return None

    @property
    def has_lower(self) -> bool:
        return self.min != LOWEST

    @property
    def has_upper(self) -> bool:
        return self.max != HIGHEST

    @property
    def is_unbounded(self) -> bool:
        return not self.has_lower and not self.has_upper

    @property
    def mentions_prerelease(self) -> bool:
        """True when either explicit bound is itself a prerelease."""
        return (self.has_lower and is_prerelease(self.min)) or (self.has_upper and is_prerelease(self.max))

    def __str__(self) -> str:
        required = self.required
        if required is not None:
            return f"[{format_version(required)}]"
        if self.is_unbounded:
            return "*"
        lower = format_version(self.min) if self.has_lower else ""
        upper = format_version(self.max) if self.has_upper else ""
        left = "[" if self.min_inclusive and self.has_lower else "("
        right = "]" if self.max_inclusive and self.has_upper else ")"
        return f"{left}{lower}, {upper}{right}"


def _version(text: str, expression: str) -> Version:
    try:
        return parse_version(text)
    except InvalidVersionError as exc:
        raise InvalidRangeError(f"Invalid version {text!r} in range {expression!r}") from exc


def _parse_interval(expression: str) -> VersionRange:
    if expression[-1] not in "])":
        raise InvalidRangeError(f"Unterminated range: {expression!r}")
    inner = expression[1:-1].strip()
    if "," not in inner:
        if expression[0] == "[" and expression[-1] == "]" and inner:
            return VersionRange.exact(_version(inner, expression))
        raise InvalidRangeError(f"Invalid range: {expression!r}")

    bounds = [part.strip() for part in inner.split(",")]
    if len(bounds) != 2 or not any(bounds):
        raise InvalidRangeError(f"Invalid range: {expression!r}")
    left, right = bounds
    return VersionRange(
        min=_version(left, expression) if left else LOWEST,
        max=_version(right, expression) if right else HIGHEST,
        min_inclusive=expression[0] == "[" if left else True,
        max_inclusive=expression[-1] == "]" if right else True,
    )


def _parse_shorthand(op: str, version: Version) -> VersionRange:
    if op == "=":
        return VersionRange.exact(version)
    if op == ">":
        return VersionRange(min=version, min_inclusive=False)
    if op == ">=":
        return VersionRange(min=version)
    if op == "<":
        return VersionRange(max=version, max_inclusive=False)
    return VersionRange(max=version)


def parse_range(expression: Optional[str]) -> VersionRange:
    """Parse a range expression.

    Accepts NuGet interval notation (``[1.0]``, ``[1.0,2.0)``, ``(,2.0]``),
    comparison shorthand (``>=1.0``), wildcards (``1.2.*``, ``1.*``) and the
    unconstrained forms ``*`` / ``latest`` / empty. A bare version means
    "this version or newer", as in NuGet.
    """
    if expression is None:
        return VersionRange()
    text = expression.strip()
    if text.lower() in _UNCONSTRAINED:
        return VersionRange()

    if text[0] in "[(":
        return _parse_interval(text)

    for op in _SHORTHAND_OPS:
        if text.startswith(op):
            return _parse_shorthand(op, _version(text[len(op):].strip(), text))

    match = _WILDCARD_MINOR_RE.match(text)
    if match:
        major, minor = int(match.group(1)), int(match.group(2))
        return VersionRange(
            min=Version(major=major, minor=minor, patch=0),
            max=Version(major=major, minor=minor + 1, patch=0),
            max_inclusive=False,
        )
    match = _WILDCARD_MAJOR_RE.match(text)
    if match:
        major = int(match.group(1))
        return VersionRange(
            min=Version(major=major, minor=0, patch=0),
            max=Version(major=major + 1, minor=0, patch=0),
            max_inclusive=False,
        )

    return VersionRange(min=_version(text, text))


def _same_train(version_range: VersionRange) -> bool:
    low, high = version_range.min, version_range.max
    return version_range.has_lower and (low.major, low.minor, low.patch) == (high.major, high.minor, high.patch)


def satisfies(version_range: VersionRange, version: Version, strict: bool = False) -> bool:
    """Check whether ``version`` lies inside ``version_range``.

    Unless ``strict``, a prerelease of X.Y.Z is rejected by an exclusive
    release upper bound X.Y.Z: ``[1.0.0, 2.0.0)`` does not admit
    ``2.0.0-alpha1``. Ranges whose bounds share one prerelease train
    (``[2.0.0-alpha1, 2.0.0)``) keep plain SemVer2 comparison.
    """
    lower = _cmp(version, version_range.min)
    if lower < 0 or (lower == 0 and not version_range.min_inclusive):
        return False
    upper = _cmp(version, version_range.max)
    if upper > 0 or (upper == 0 and not version_range.max_inclusive):
        return False

    if strict or version_range.max_inclusive:
        return True
    upper_bound = version_range.max
    if (
        is_prerelease(version)
        and not is_prerelease(upper_bound)
        and (version.major, version.minor, version.patch) == (upper_bound.major, upper_bound.minor, upper_bound.patch)
        and not _same_train(version_range)
    ):
        return False
    return True


def _tighter_bound(
    a: Tuple[Version, bool], b: Tuple[Version, bool], prefer_greater: bool
) -> Tuple[Version, bool]:
    order = _cmp(a[0], b[0])
    if order == 0:
        return a[0], a[1] and b[1]
    if (order > 0) == prefer_greater:
        return a
    return b


def intersect(a: VersionRange, b: VersionRange) -> Optional[VersionRange]:
    """Return the intersection of two ranges, or None if it is empty."""
    low, low_inclusive = _tighter_bound((a.min, a.min_inclusive), (b.min, b.min_inclusive), True)
    high, high_inclusive = _tighter_bound((a.max, a.max_inclusive), (b.max, b.max_inclusive), False)
    order = _cmp(low, high)
    if order > 0 or (order == 0 and not (low_inclusive and high_inclusive)):
        return None
    return VersionRange(min=low, max=high, min_inclusive=low_inclusive, max_inclusive=high_inclusive)


def overlaps(a: VersionRange, b: VersionRange) -> bool:
    """True iff the two ranges share at least one version."""
    return intersect(a, b) is not None


def _selection_key(version: Version):
    return (version.precedence_key, not is_prerelease(version))


def select_highest(
    version_range: VersionRange,
    versions: Iterable[Version],
    include_prerelease: bool = False,
    strict: bool = False,
) -> Optional[Version]:
    """Pick the greatest version satisfying the range.

    Prereleases are considered only if ``include_prerelease`` is set or a
    bound of the range is itself a prerelease.
    """
    allow_pre = include_prerelease or version_range.mentions_prerelease
    matching = [
        v for v in versions
        if (allow_pre or not is_prerelease(v)) and satisfies(version_range, v, strict)
    ]
    if not matching:
        return None
    return max(matching, key=_selection_key)
