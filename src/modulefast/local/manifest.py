"""Module manifest reading.

Manifests are PowerShell data files (``<Name>.psd1``) holding a single
hashtable literal. :func:`read_manifest` parses the whole literal and is used
where the manifest is authoritative (local inventory). :func:`scan_manifest`
only looks for the few assignments the installer needs right after
extraction.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from semantic_version import Version

from ..constants import Constants
from ..errors import InvalidVersionError, ModuleCorruptionError
from ..versioning.version import parse_version, with_prerelease


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>[ \t\r\f]+)
  | (?P<newline>\n)
  | (?P<block_comment><\#.*?\#>)
  | (?P<comment>\#[^\n]*)
  | (?P<here_single>@'\r?\n.*?\r?\n'@)
  | (?P<here_double>@"\r?\n.*?\r?\n"@)
  | (?P<hash_open>@\{)
  | (?P<array_open>@\()
  | (?P<punct>[{}()=,;])
  | (?P<single>'(?:[^']|'')*')
  | (?P<double>"(?:[^"`]|""|`.)*")
  | (?P<variable>\$[A-Za-z_]\w*)
  | (?P<number>[+-]?\d+(?:\.\d+)?)
  | (?P<word>[A-Za-z_][\w.\-]*)
    """,
    re.VERBOSE | re.DOTALL,
)
_VARIABLES = {"$true": True, "$false": False, "$null": None}
_SCAN_PATTERNS = {
    key: re.compile(rf"^\s*{key}\s*=\s*(?:'([^']*)'|\"([^\"]*)\")", re.IGNORECASE | re.MULTILINE)
    for key in ("ModuleVersion", "GUID", "Prerelease")
}


class ManifestSyntaxError(ValueError):
    """Raised when a manifest is not a valid data-file hashtable."""


def _unquote(kind: str, text: str) -> str:
    if kind == "single":
        return text[1:-1].replace("''", "'")
    if kind == "double":
        body = text[1:-1].replace('""', '"')
        return re.sub(r"`(.)", lambda m: {"n": "\n", "t": "\t", "r": "\r"}.get(m.group(1), m.group(1)), body)
    # here-strings: drop the opening and closing lines
    return text.split("\n", 1)[1].rsplit("\n", 1)[0].rstrip("\r")


class _Psd1Parser:
    """Recursive-descent parser for the data-language subset of PowerShell."""

    def __init__(self, text: str):
        self._tokens = self._tokenize(text)
        self._pos = 0

    @staticmethod
    def _tokenize(text: str) -> List[Tuple[str, str]]:
        tokens: List[Tuple[str, str]] = []
        pos = 0
        while pos < len(text):
            match = _TOKEN_RE.match(text, pos)
            if not match:
                line = text.count("\n", 0, pos) + 1
                raise ManifestSyntaxError(f"Unexpected character {text[pos]!r} on line {line}")
            kind = match.lastgroup
            if kind == "newline":
                tokens.append(("sep", "\n"))
            elif kind not in ("ws", "comment", "block_comment"):
                tokens.append((kind, match.group()))
            pos = match.end()
        return tokens

    def _peek(self) -> Tuple[str, str]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return ("eof", "")

    def _next(self) -> Tuple[str, str]:
        token = self._peek()
        self._pos += 1
        return token

    def _skip_separators(self) -> None:
        while self._peek()[0] == "sep" or self._peek() == ("punct", ";"):
            self._pos += 1

    def parse(self) -> Any:
        self._skip_separators()
        value = self._value()
        self._skip_separators()
        if self._peek()[0] != "eof":
            raise ManifestSyntaxError(f"Unexpected trailing token {self._peek()[1]!r}")
        return value

    def _value(self) -> Any:
        first = self._single_value()
        if self._peek() != ("punct", ","):
            return first
        items = [first]
        while self._peek() == ("punct", ","):
            self._pos += 1
            self._skip_separators()
            items.append(self._single_value())
        return items

    def _single_value(self) -> Any:
        kind, text = self._next()
        if kind == "hash_open":
            return self._hashtable()
        if kind == "array_open":
            return self._array()
        if kind in ("single", "double", "here_single", "here_double"):
            return _unquote(kind, text)
        if kind == "number":
            return float(text) if "." in text else int(text)
        if kind == "variable":
            if text.lower() not in _VARIABLES:
                raise ManifestSyntaxError(f"Variable {text} is not allowed in a data file")
            return _VARIABLES[text.lower()]
        if kind == "word":
            return text
        raise ManifestSyntaxError(f"Unexpected token {text!r}")

    def _hashtable(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        while True:
            self._skip_separators()
            kind, text = self._next()
            if (kind, text) == ("punct", "}"):
                return result
            if kind == "word":
                key = text
            elif kind in ("single", "double"):
                key = _unquote(kind, text)
            else:
                raise ManifestSyntaxError(f"Expected a key, found {text!r}")
            if self._next() != ("punct", "="):
                raise ManifestSyntaxError(f"Expected '=' after key {key!r}")
            self._skip_separators()
            result[key] = self._value()

    def _array(self) -> List[Any]:
        items: List[Any] = []
        while True:
            self._skip_separators()
            if self._peek() == ("punct", ")"):
                self._pos += 1
                return items
            if self._peek() == ("punct", ","):
                self._pos += 1
                continue
            items.append(self._single_value())


def parse_psd1(text: str) -> Any:
    """Parse the text of a PowerShell data file."""
    return _Psd1Parser(text).parse()


def lookup(mapping: Any, *keys: str) -> Any:
    """Case-insensitive nested hashtable lookup; None when any level is missing."""
    current = mapping
    for key in keys:
        if not isinstance(current, dict):
            return None
        wanted = key.lower()
        current = next((v for k, v in current.items() if k.lower() == wanted), None)
    return current


@dataclass
class ModuleManifest:
    """The parts of a manifest that identify an installed module version."""

    name: str
    path: Path
    version: Version
    guid: Optional[str] = None
    prerelease: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict, repr=False)


def locate_manifest(directory: Path, name: str) -> Path:
    """Find ``<name>.psd1`` in ``directory`` ignoring case; the expected path if absent."""
    expected = f"{name}{Constants.MANIFEST_EXTENSION}"
    if directory.is_dir():
        for child in directory.iterdir():
            if child.is_file() and child.name.lower() == expected.lower():
                return child
    return directory / expected


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise ModuleCorruptionError("Module manifest is missing", path=path) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ModuleCorruptionError(f"Module manifest is unreadable: {exc}", path=path) from exc


def _version_from(version_text: Any, prerelease: Any, path: Path) -> Version:
    if not isinstance(version_text, str) or not version_text.strip():
        raise ModuleCorruptionError("Module manifest has no ModuleVersion", path=path)
    try:
        return with_prerelease(parse_version(version_text), prerelease if isinstance(prerelease, str) else None)
    except InvalidVersionError as exc:
        raise ModuleCorruptionError(f"Module manifest has an invalid version: {exc.message}", path=path) from exc


def read_manifest(path: Path) -> ModuleManifest:
    """Fully parse a manifest; any defect is a ModuleCorruptionError."""
    path = Path(path)
    try:
        data = parse_psd1(_read_text(path))
    except ManifestSyntaxError as exc:
        raise ModuleCorruptionError(f"Module manifest cannot be parsed: {exc}", path=path) from exc
    if not isinstance(data, dict):
        raise ModuleCorruptionError("Module manifest is not a hashtable", path=path)

    prerelease = lookup(data, "PrivateData", "PSData", "Prerelease")
    guid = lookup(data, "GUID")
    return ModuleManifest(
        name=path.stem,
        path=path,
        version=_version_from(lookup(data, "ModuleVersion"), prerelease, path),
        guid=str(guid).lower() if guid else None,
        prerelease=prerelease or None,
        data=data,
    )


def scan_manifest(path: Path) -> ModuleManifest:
    """Read version, prerelease label and GUID with line patterns only."""
    path = Path(path)
    text = _read_text(path)
    found: Dict[str, Optional[str]] = {}
    for key, pattern in _SCAN_PATTERNS.items():
        match = pattern.search(text)
        found[key] = next((g for g in match.groups() if g is not None), None) if match else None
    guid = found["GUID"]
    return ModuleManifest(
        name=path.stem,
        path=path,
        version=_version_from(found["ModuleVersion"], found["Prerelease"], path),
        guid=guid.lower() if guid else None,
        prerelease=found["Prerelease"] or None,
    )
