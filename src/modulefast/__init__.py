"""modulefast: resolve and install PowerShell-style modules from a NuGet v3 feed.

Typical use::

    from modulefast import ModuleFastConfig, run

    run(["Az.Accounts>=2.0", "!Pester"], ModuleFastConfig(destination="Modules"))
"""

from .api import install_modules, plan_modules, run
from .config import ModuleFastConfig
from .errors import (
    ConfigError,
    DependencyConflictError,
    InstallConflictError,
    InstallationError,
    InvalidRangeError,
    InvalidRequirementError,
    InvalidVersionError,
    InvariantViolationError,
    ModuleCorruptionError,
    ModuleFastError,
    OperationCancelledError,
    PackageNotFoundError,
    RegistryTransportError,
    ResolutionCancelledError,
)
from .installer import Installer
from .registry.client import RegistryClient
from .resolver import Resolver, ResolverState
from .versioning import (
    InstallationPlan,
    Requirement,
    ResolvedModule,
    VersionRange,
    parse_range,
    parse_requirement,
    parse_version,
    satisfies,
)

__version__ = "0.1.0"

__all__ = [
    "install_modules",
    "plan_modules",
    "run",
    "ModuleFastConfig",
    "ConfigError",
    "DependencyConflictError",
    "InstallConflictError",
    "InstallationError",
    "InvalidRangeError",
    "InvalidRequirementError",
    "InvalidVersionError",
    "InvariantViolationError",
    "ModuleCorruptionError",
    "ModuleFastError",
    "OperationCancelledError",
    "PackageNotFoundError",
    "RegistryTransportError",
    "ResolutionCancelledError",
    "Installer",
    "RegistryClient",
    "Resolver",
    "ResolverState",
    "InstallationPlan",
    "Requirement",
    "ResolvedModule",
    "VersionRange",
    "parse_range",
    "parse_requirement",
    "parse_version",
    "satisfies",
]
