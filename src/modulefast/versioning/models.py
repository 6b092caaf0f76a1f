"""Data models for requirements, resolved modules and the installation plan."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from semantic_version import Version

from ..errors import InvalidRequirementError, InvariantViolationError
from .ranges import VersionRange
from .version import folder_version, format_version


@dataclass(frozen=True)
class Requirement:
    """A module name plus the versions it accepts.

    Equality and hashing cover name, GUID and range; the prerelease opt-in
    only affects which versions are eligible during selection.
    """

    name: str
    version_range: VersionRange = field(default_factory=VersionRange)
    guid: Optional[str] = None
    prerelease: bool = field(default=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidRequirementError(f"Module name must be a non-empty string, got {self.name!r}")
        object.__setattr__(self, "name", self.name.strip())
        if self.guid is not None:
            object.__setattr__(self, "guid", str(self.guid).strip().lower() or None)

    @property
    def key(self) -> str:
        """Case-insensitive identity of the module name."""
        return self.name.lower()

    @property
    def allows_prerelease(self) -> bool:
        return self.prerelease or self.version_range.mentions_prerelease

    def __str__(self) -> str:
        r = self.version_range
        prefix = "!" if self.prerelease else ""
        required = r.required
        if r.is_unbounded:
            rendered = self.name
        elif required is not None:
            rendered = f"{self.name}@{format_version(required)}"
        elif not r.has_upper:
            op = ">=" if r.min_inclusive else ">"
            rendered = f"{self.name}{op}{format_version(r.min)}"
        elif not r.has_lower:
            op = "<=" if r.max_inclusive else "<"
            rendered = f"{self.name}{op}{format_version(r.max)}"
        else:
            rendered = f"{self.name}:{r}"
        if self.guid:
            rendered = f"{rendered} (GUID {self.guid})"
        return prefix + rendered


@dataclass
class ResolvedModule:
    """One module version selected for the plan.

    ``installed_path`` is the only field that changes after resolution; the
    installer sets it through :meth:`attach_path` once extraction succeeded.
    """

    name: str
    version: Version
    location: str
    guid: Optional[str] = None
    is_local: bool = False
    installed_path: Optional[Path] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def folder_name(self) -> str:
        return folder_version(self.version)

    def attach_path(self, path: Union[str, Path]) -> None:
        self.installed_path = Path(path)

    def __str__(self) -> str:
        return f"{self.name}@{format_version(self.version)}"


class InstallationPlan:
    """Deduplicated set of resolved modules keyed by case-insensitive name."""

    def __init__(self, modules: Optional[List[ResolvedModule]] = None):
        self._entries: Dict[str, ResolvedModule] = {}
        for module in modules or []:
            self.add(module)

    def add(self, module: ResolvedModule) -> None:
        if module.key in self._entries:
            raise InvariantViolationError(
                f"{module} is already planned as {self._entries[module.key]}"
            )
        self._entries[module.key] = module

    def get(self, name: str) -> Optional[ResolvedModule]:
        return self._entries.get(name.lower())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._entries

    def __iter__(self) -> Iterator[ResolvedModule]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def to_lock_mapping(self) -> Dict[str, str]:
        """Name -> version mapping consumed by lockfile writers."""
        return {m.name: format_version(m.version) for m in self._entries.values()}

    def __repr__(self) -> str:
        return f"InstallationPlan({', '.join(str(m) for m in self._entries.values())})"
