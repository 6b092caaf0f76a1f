"""Installer: concurrent download and extraction of a resolved plan.

Each module lands in ``<destination>/<Name>/<Version>``. While a module is
being written its directory holds an ``.incomplete`` marker; a directory
still carrying the marker is wreckage from an interrupted run and is removed
before the next attempt.
"""
from __future__ import annotations

import asyncio
import io
import logging
import os
import shutil
import zipfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Union

from .common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from .constants import Constants
from .errors import (
    InstallConflictError,
    InstallationError,
    InvariantViolationError,
    ModuleCorruptionError,
    OperationCancelledError,
)
from .local.manifest import locate_manifest, scan_manifest
from .registry.client import RegistryClient
from .versioning.models import InstallationPlan, ResolvedModule
from .versioning.version import folder_version, format_version, same_precedence

logger = logging.getLogger(__name__)


def is_path_within_base(path: Path, base: Path) -> bool:
    """Check if path is within base directory."""
    try:
        path.resolve().relative_to(base.resolve())
        return True
    except ValueError:
        return False


def extract_archive(body: bytes, dest_dir: Path) -> None:
    """Extract an in-memory zip archive, refusing members that escape ``dest_dir``."""
    try:
        with zipfile.ZipFile(io.BytesIO(body)) as archive:
            for member in archive.infolist():
                if os.path.isabs(member.filename) or not is_path_within_base(dest_dir / member.filename, dest_dir):
                    raise ModuleCorruptionError(f"Archive member escapes the module directory: {member.filename}",
                                                path=dest_dir)
            archive.extractall(dest_dir)
    except zipfile.BadZipFile as exc:
        raise ModuleCorruptionError(f"Package is not a valid zip archive: {exc}", path=dest_dir) from exc


def strip_packaging_artifacts(module_dir: Path) -> None:
    """Remove the NuGet packaging files that are not part of the module."""
    for child in module_dir.iterdir():
        if child.name in Constants.PACKAGING_ARTIFACTS or child.suffix.lower() == ".nuspec":
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()


class Installer:
    """Download and extract the remote entries of an installation plan."""

    def __init__(
        self,
        destination: Union[str, Path],
        client: Optional[RegistryClient] = None,
        update: bool = False,
        max_downloads: int = Constants.MAX_CONCURRENT_DOWNLOADS,
        max_workers: Optional[int] = None,
    ):
        """Initialize the installer.

        Args:
            destination: Module root the plan is installed into.
            client: Registry client used for downloads.
            update: Tolerate an identical version that is already installed.
            max_downloads: Limit on simultaneous downloads.
            max_workers: Extraction threads; defaults to the CPU count.
        """
        self.destination = Path(destination)
        self._client = client or RegistryClient()
        self._update = update
        self._max_downloads = max(1, max_downloads)
        self._max_workers = max_workers or Constants.MAX_EXTRACT_WORKERS

    def target_dir(self, module: ResolvedModule) -> Path:
        return self.destination / module.name / module.folder_name

    def prepare_target(self, module: ResolvedModule) -> bool:
        """Clear the way for ``module``; False when it is already installed.

        Raises InvariantViolationError when the same version is installed
        outside update mode and InstallConflictError when a newer version
        occupies the directory.
        """
        target = self.target_dir(module)
        if (target / Constants.INCOMPLETE_MARKER).exists():
            logger.warning(
                "Removing interrupted install at %s",
                target,
                extra=extra_context(event="cleanup", component="installer", outcome="incomplete", target=str(target)),
            )
            shutil.rmtree(target)
        if not target.exists():
            return True

        existing = scan_manifest(locate_manifest(target, module.name))
        if same_precedence(existing.version, module.version):
            if not self._update:
                raise InvariantViolationError(f"{module} is already installed at {target}", requirement=str(module))
            logger.info("%s is already installed", module)
            module.attach_path(target)
            return False
        if existing.version > module.version:
            raise InstallConflictError(
                f"{target} holds newer version {format_version(existing.version)}; refusing to downgrade",
                requirement=str(module),
            )
        logger.info("Replacing %s with %s", format_version(existing.version), module)
        shutil.rmtree(target)
        return True

    def extract(self, module: ResolvedModule, body: bytes) -> Path:
        """Unpack a downloaded package into its target directory (worker thread)."""
        target = self.target_dir(module)
        target.mkdir(parents=True, exist_ok=True)
        marker = target / Constants.INCOMPLETE_MARKER
        marker.touch()

        extract_archive(body, target)
        manifest = scan_manifest(locate_manifest(target, module.name))

        actual = folder_version(manifest.version)
        if actual != target.name:
            renamed = target.parent / actual
            if renamed.exists():
                shutil.rmtree(target)
                raise InstallConflictError(
                    f"Package declares version {actual} but {renamed} already exists",
                    requirement=str(module),
                )
            target = target.rename(renamed)
            marker = target / Constants.INCOMPLETE_MARKER

        if module.guid and manifest.guid != module.guid:
            shutil.rmtree(target)
            raise ModuleCorruptionError(
                f"Installed GUID {manifest.guid} does not match required GUID {module.guid}",
                requirement=str(module),
                path=target,
            )

        strip_packaging_artifacts(target)
        marker.unlink()
        return target

    async def _install_one(
        self,
        module: ResolvedModule,
        semaphore: asyncio.Semaphore,
        pool: ThreadPoolExecutor,
        cancel: Optional[asyncio.Event],
    ) -> Optional[ResolvedModule]:
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(pool, self.prepare_target, module):
            return None

        async with semaphore:
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError("Installation cancelled", requirement=str(module))
            with Timer() as t:
                body = await self._client.download(module.location, cancel)
            if is_debug_enabled(logger):
                logger.debug(
                    "Package downloaded",
                    extra=extra_context(event="download", component="installer", outcome="success",
                                        target=safe_url(module.location), bytes=len(body),
                                        duration_ms=t.duration_ms()),
                )

        path = await loop.run_in_executor(pool, self.extract, module, body)
        module.attach_path(path)
        logger.info("Installed %s to %s", module, path,
                    extra=extra_context(event="install", component="installer", outcome="success", target=str(path)))
        return module

    async def install(
        self,
        plan: InstallationPlan,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[ResolvedModule]:
        """Install every remote entry of ``plan`` and return the modules written.

        A failing module does not stop its siblings; every failure is
        reported together in one InstallationError.
        """
        remote = [module for module in plan if not module.is_local]
        if not remote:
            return []

        self.destination.mkdir(parents=True, exist_ok=True)
        semaphore = asyncio.Semaphore(self._max_downloads)
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            results = await asyncio.gather(
                *(self._install_one(module, semaphore, pool, cancel) for module in remote),
                return_exceptions=True,
            )

        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("Installation cancelled")

        installed: List[ResolvedModule] = []
        errors: List[BaseException] = []
        for module, result in zip(remote, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to install %s: %s",
                    module,
                    result,
                    extra=extra_context(event="install", component="installer", outcome="error", target=str(module)),
                )
                errors.append(result)
            elif result is not None:
                installed.append(result)
        if errors:
            raise InstallationError(errors)
        return installed
