"""Error taxonomy for resolution and installation.

Every error renders the offending requirement (in shorthand form) and the
registry URL where one is involved, so messages are actionable on their own.
"""
from __future__ import annotations

from typing import Any, List, Optional


class ModuleFastError(Exception):
    """Base class for all modulefast errors."""

    def __init__(self, message: str, *, requirement: Any = None, source: Optional[str] = None):
        self.requirement = requirement
        self.source = source
        parts = [message]
        if requirement is not None:
            parts.append(f"requirement: {requirement}")
        if source:
            parts.append(f"source: {source}")
        super().__init__("; ".join(parts))
        self.message = message


class InvalidVersionError(ModuleFastError, ValueError):
    """Raised when a version string cannot be parsed."""


class InvalidRangeError(ModuleFastError, ValueError):
    """Raised when a version range expression cannot be parsed."""


class InvalidRequirementError(ModuleFastError, ValueError):
    """Raised when a requirement shorthand cannot be parsed."""


class PackageNotFoundError(ModuleFastError):
    """No registry version satisfies a requirement (or the registry returned 404)."""


class RegistryTransportError(ModuleFastError):
    """Network or HTTP failure other than 404."""

    def __init__(self, message: str, *, status: Optional[int] = None, **kwargs: Any):
        self.status = status
        super().__init__(message, **kwargs)


class ModuleCorruptionError(ModuleFastError):
    """Missing or unreadable manifest, or a GUID mismatch."""

    def __init__(self, message: str, *, path: Any = None, **kwargs: Any):
        self.path = path
        if path is not None:
            message = f"{message} ({path})"
        super().__init__(message, **kwargs)


class InvariantViolationError(ModuleFastError):
    """Internal state that should be impossible; always fatal."""


class DependencyConflictError(ModuleFastError):
    """A module name is already planned at a version the new requirement rejects."""


class InstallConflictError(ModuleFastError):
    """An installed module is newer than the planned one; it must be removed manually."""


class ConfigError(ModuleFastError, ValueError):
    """The configuration file or an override holds an unusable value."""


class OperationCancelledError(ModuleFastError):
    """The cancel token was set while an operation was outstanding."""


class ResolutionCancelledError(OperationCancelledError):
    """Resolution was cancelled; ``plan`` holds the entries resolved before the signal."""

    def __init__(self, message: str, *, plan: Any = None, **kwargs: Any):
        self.plan = plan
        super().__init__(message, **kwargs)


class InstallationError(ModuleFastError):
    """Aggregate of the per-module failures of one installation run."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        lines = [f"{len(self.errors)} module(s) failed to install:"]
        lines.extend(f"  - {err}" for err in self.errors)
        super().__init__("\n".join(lines))
