"""Requirement shorthand parsing.

Shorthand forms produced by manifest adapters::

    Name            any version
    Name=1.0        exactly 1.0       (also Name@1.0)
    Name>1.0        Name>=1.0  Name<2.0  Name<=2.0
    Name:[1.0,2.0)  raw range expression
    !Name / Name!   opt in to prerelease versions
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from ..errors import InvalidRangeError, InvalidRequirementError
from .models import Requirement
from .ranges import VersionRange, parse_range

_OPERATOR_RE = re.compile(r'^(?P<name>[^<>=@:]+?)\s*(?P<op>>=|<=|=|>|<)\s*(?P<version>.+)$')
_NAME_RE = re.compile(r'^[A-Za-z0-9_][\w.\-]*$')


def tokenize_rightmost_colon(s: str) -> Tuple[str, Optional[str]]:
    """Return (identifier, range or None) using the rightmost-colon rule."""
    s = s.strip()
    if ':' not in s:
        return s, None
    identifier, spec_part = s.rsplit(':', 1)
    spec = spec_part.strip()
    return identifier.strip(), spec if spec else None


def _strip_prerelease_marker(token: str) -> Tuple[str, bool]:
    if token.startswith('!'):
        return token[1:].strip(), True
    if token.endswith('!'):
        return token[:-1].strip(), True
    return token, False


def parse_requirement(token: str, guid: Optional[str] = None) -> Requirement:
    """Parse one shorthand token into a Requirement."""
    if not isinstance(token, str) or not token.strip():
        raise InvalidRequirementError(f"Invalid empty requirement: {token!r}")
    text, prerelease = _strip_prerelease_marker(token.strip())

    try:
        if ':' in text:
            name, raw = tokenize_rightmost_colon(text)
            version_range = parse_range(raw)
        elif '@' in text:
            name, _, version = text.partition('@')
            version_range = parse_range(version) if version.strip().lower() == 'latest' else parse_range(f"={version.strip()}")
        else:
            match = _OPERATOR_RE.match(text)
            if match:
                name = match.group('name')
                version_range = parse_range(f"{match.group('op')}{match.group('version')}")
            else:
                name, version_range = text, VersionRange()
    except InvalidRangeError as exc:
        raise InvalidRequirementError(f"Invalid requirement {token!r}: {exc.message}") from exc

    name = name.strip()
    if not _NAME_RE.match(name):
        raise InvalidRequirementError(f"Invalid module name in requirement {token!r}")

    return Requirement(name=name, version_range=version_range, guid=guid, prerelease=prerelease)


def parse_requirements(tokens: Iterable[str]) -> List[Requirement]:
    """Parse shorthand tokens, skipping blanks and comment lines."""
    requirements: List[Requirement] = []
    for token in tokens:
        if not token or not token.strip() or token.lstrip().startswith('#'):
            continue
        requirements.append(parse_requirement(token))
    return requirements
