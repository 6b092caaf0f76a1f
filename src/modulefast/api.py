"""Convenience entry points tying resolver and installer together."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Union

from .common.logging_utils import configure_logging
from .config import ModuleFastConfig
from .errors import ConfigError
from .installer import Installer
from .registry import http
from .registry.client import RegistryClient
from .resolver import Resolver
from .versioning.models import InstallationPlan, Requirement, ResolvedModule
from .versioning.parser import parse_requirement

logger = logging.getLogger(__name__)

RequirementLike = Union[str, Requirement]


def _requirements(items: Iterable[RequirementLike]) -> List[Requirement]:
    return [item if isinstance(item, Requirement) else parse_requirement(item) for item in items]


async def plan_modules(
    requirements: Iterable[RequirementLike],
    config: Optional[ModuleFastConfig] = None,
    cancel: Optional[asyncio.Event] = None,
) -> InstallationPlan:
    """Resolve requirements (shorthand strings or Requirement objects) into a plan."""
    config = config or ModuleFastConfig()
    resolver = Resolver(
        RegistryClient(config.source, timeout=config.timeout),
        search_paths=config.effective_search_paths,
        update=config.update,
        strict=config.strict,
        poll_interval=config.poll_interval,
    )
    return await resolver.resolve(_requirements(requirements), cancel)


async def install_modules(
    requirements: Iterable[RequirementLike],
    config: ModuleFastConfig,
    cancel: Optional[asyncio.Event] = None,
) -> List[ResolvedModule]:
    """Plan and install; returns the modules written to the destination."""
    if not config.destination:
        raise ConfigError("An install destination is required")
    plan = await plan_modules(requirements, config, cancel)
    if not len(plan):
        logger.info("All requirements are already satisfied")
        return []
    installer = Installer(
        config.destination,
        client=RegistryClient(config.source, timeout=config.timeout),
        update=config.update,
        max_downloads=config.max_downloads,
        max_workers=config.max_workers,
    )
    return await installer.install(plan, cancel)


def run(
    requirements: Iterable[RequirementLike],
    config: Optional[ModuleFastConfig] = None,
    install: bool = True,
) -> Union[InstallationPlan, List[ResolvedModule]]:
    """Synchronous wrapper; the shared transport is always torn down afterwards."""
    configure_logging()
    config = config or ModuleFastConfig.load()

    async def _main():
        try:
            if install:
                return await install_modules(requirements, config)
            return await plan_modules(requirements, config)
        finally:
            await http.reset()

    return asyncio.run(_main())
