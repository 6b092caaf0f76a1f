"""Dependency resolver: turn root requirements into a deduplicated installation plan.

One coroutine owns the plan and the table of outstanding fetches. Background
tasks only fetch registration data and pick a catalog entry; the
orchestration loop applies exactly one completed task per iteration, so no
locking is needed. A module name is planned at most once: the first
acceptable version wins and later requirements on that name must accept it
(otherwise :class:`DependencyConflictError`). This is not a backtracking
solver.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union

from .common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from .constants import Constants
from .errors import (
    DependencyConflictError,
    OperationCancelledError,
    PackageNotFoundError,
    RegistryTransportError,
    ResolutionCancelledError,
)
from .local import inventory
from .registry.catalog import CatalogEntry, candidate_pages, inlined_leaves, select_entry
from .registry.client import RegistryClient
from .versioning.models import InstallationPlan, Requirement, ResolvedModule
from .versioning.ranges import intersect, satisfies
from .versioning.version import same_precedence

logger = logging.getLogger(__name__)


class ResolverState(Enum):
    """Lifecycle of one resolution run."""
    SEEDED = "seeded"
    RESOLVING = "resolving"
    DRAINING = "draining"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


def merge_requirements(requirements: Iterable[Requirement]) -> List[Requirement]:
    """Deduplicate requirements, intersecting the ranges of same-named ones.

    Raises PackageNotFoundError when two requirements on one name share no
    version, and DependencyConflictError when they pin different GUIDs.
    """
    merged: Dict[str, Requirement] = {}
    for req in requirements:
        existing = merged.get(req.key)
        if existing is None:
            merged[req.key] = req
            continue
        combined = intersect(existing.version_range, req.version_range)
        if combined is None:
            raise PackageNotFoundError(f"No version can satisfy both {existing} and {req}", requirement=req)
        if existing.guid and req.guid and existing.guid != req.guid:
            raise DependencyConflictError(f"{existing} and {req} pin different GUIDs", requirement=req)
        merged[req.key] = Requirement(
            name=existing.name,
            version_range=combined,
            guid=existing.guid or req.guid,
            prerelease=existing.prerelease or req.prerelease,
        )
    return list(merged.values())


class Resolver:
    """Resolve requirements against a registry and the local inventory."""

    def __init__(
        self,
        client: RegistryClient,
        search_paths: Sequence[Union[str, Path]] = (),
        update: bool = False,
        strict: bool = False,
        poll_interval: float = Constants.POLL_INTERVAL_SEC,
    ):
        """Initialize the resolver.

        Args:
            client: Registry client used for metadata requests.
            search_paths: Module roots checked for installed versions.
            update: Only accept local versions equal to a range's maximum.
            strict: Use pure SemVer2 range satisfaction.
            poll_interval: Seconds between checks of the cancel token.
        """
        self._client = client
        self._search_paths = [Path(p) for p in search_paths]
        self._update = update
        self._strict = strict
        self._poll_interval = poll_interval
        self._pending: Dict["asyncio.Task[CatalogEntry]", Requirement] = {}
        self._fallbacks: Dict[str, ResolvedModule] = {}
        self._requested: Set[str] = set()
        self.plan = InstallationPlan()
        self.state = ResolverState.SEEDED

    @property
    def outstanding(self) -> int:
        return len(self._pending)

    async def resolve(
        self,
        requirements: Iterable[Requirement],
        cancel: Optional[asyncio.Event] = None,
    ) -> InstallationPlan:
        """Build the installation plan.

        Modules already satisfied by the local inventory are left out of the
        plan. On cancellation a ResolutionCancelledError carrying the partial
        plan is raised; entries are never rolled back.
        """
        self.plan = InstallationPlan()
        self._fallbacks = {}
        self._requested = set()
        self.state = ResolverState.SEEDED
        work = merge_requirements(requirements)

        with Timer() as t:
            try:
                self.state = ResolverState.RESOLVING
                for req in work:
                    self._schedule(req, cancel)
                await self._run_loop(cancel)
            except (ResolutionCancelledError, OperationCancelledError) as exc:
                self.state = ResolverState.CANCELLED
                logger.warning("Resolution cancelled with %d module(s) planned", len(self.plan))
                if isinstance(exc, ResolutionCancelledError):
                    raise
                raise ResolutionCancelledError("Resolution cancelled", plan=self.plan) from exc
            except asyncio.CancelledError:
                self.state = ResolverState.CANCELLED
                logger.warning("Resolution task cancelled with %d module(s) planned", len(self.plan))
                raise
            except BaseException:
                self.state = ResolverState.FAILED
                raise
            finally:
                await self._abort_pending()
                if self.state is ResolverState.CANCELLED:
                    # Every waiter on these fetches belonged to this run.
                    await self._client.cancel_fetches(self._requested)

        self.state = ResolverState.DONE
        logger.info(
            "Resolved %d module(s) to install",
            len(self.plan),
            extra=extra_context(event="resolve", component="resolver", outcome="success",
                                count=len(self.plan), duration_ms=t.duration_ms()),
        )
        return self.plan

    async def _run_loop(self, cancel: Optional[asyncio.Event]) -> None:
        while self._pending:
            if cancel is not None and cancel.is_set():
                raise ResolutionCancelledError("Resolution cancelled", plan=self.plan)
            done, _ = await asyncio.wait(
                self._pending, timeout=self._poll_interval, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                continue
            task = next(iter(done))
            req = self._pending.pop(task)
            scheduled = self._apply(req, task.result(), cancel)
            if self._pending:
                self.state = ResolverState.RESOLVING if scheduled else ResolverState.DRAINING

    async def _abort_pending(self) -> None:
        tasks = list(self._pending)
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _schedule(self, req: Requirement, cancel: Optional[asyncio.Event]) -> bool:
        """Start a registry lookup unless an installed module already satisfies ``req``."""
        local = inventory.find(req, self._search_paths, update=self._update, strict=self._strict)
        if local is not None:
            if is_debug_enabled(logger):
                logger.debug(
                    "Requirement satisfied locally",
                    extra=extra_context(event="decision", component="resolver", outcome="local",
                                        target=str(req), found=str(local)),
                )
            return False
        if self._update:
            fallback = inventory.best_match(req, self._search_paths, strict=self._strict)
            if fallback is not None:
                self._fallbacks[req.key] = fallback

        task = asyncio.ensure_future(self._find_remote(req, cancel))
        self._pending[task] = req
        return True

    def _apply(self, req: Requirement, entry: CatalogEntry, cancel: Optional[asyncio.Event]) -> bool:
        """Fold one resolved catalog entry into the plan; True if new fetches started."""
        planned = self.plan.get(req.name)
        if planned is not None:
            if same_precedence(planned.version, entry.version):
                return False
            if satisfies(req.version_range, planned.version, self._strict):
                return False
            raise DependencyConflictError(
                f"{planned} is already planned but another version is required",
                requirement=req,
            )

        fallback = self._fallbacks.get(req.key)
        if fallback is not None and same_precedence(fallback.version, entry.version):
            logger.info("%s is already up to date", fallback)
            return False

        module = ResolvedModule(
            name=entry.name,
            version=entry.version,
            location=entry.content_url,
            guid=req.guid,
        )
        self.plan.add(module)
        logger.info("Planned %s", module, extra=extra_context(event="plan", component="resolver", target=str(req)))

        scheduled = False
        for dep in entry.dependencies:
            existing = self.plan.get(dep.name)
            if existing is not None:
                if satisfies(dep.version_range, existing.version, self._strict):
                    continue
                raise DependencyConflictError(
                    f"{module} requires {dep} but {existing} is already planned",
                    requirement=dep,
                )
            if self._schedule(dep, cancel):
                scheduled = True
        return scheduled

    async def _find_remote(self, req: Requirement, cancel: Optional[asyncio.Event]) -> CatalogEntry:
        """Fetch registration data for ``req`` and select a catalog entry (background task)."""
        url = self._client.source
        self._requested.add(url)
        try:
            url = await self._client.registration_url(req.name, cancel)
            self._requested.add(url)
            index = await self._client.get_json(url, cancel)
            if not isinstance(index, dict):
                raise RegistryTransportError("Registration index is not a JSON object", source=safe_url(url))
            entry = select_entry(inlined_leaves(index), req, self._strict)
            if entry is None:
                for page in candidate_pages(index, req.version_range):
                    self._requested.add(page["@id"])
                    data = await self._client.get_json(page["@id"], cancel)
                    if not isinstance(data, dict):
                        raise RegistryTransportError(
                            "Registration page is not a JSON object", source=safe_url(page["@id"])
                        )
                    entry = select_entry(data.get("items") or [], req, self._strict)
                    if entry is not None:
                        break
        except PackageNotFoundError as exc:
            if url == self._client.source:
                # The service index itself is missing.
                raise PackageNotFoundError(exc.message, requirement=req, source=exc.source) from exc
            raise PackageNotFoundError(
                f"Module {req.name} was not found in the registry", requirement=req, source=safe_url(url)
            ) from exc
        except RegistryTransportError as exc:
            raise RegistryTransportError(
                exc.message, status=exc.status, requirement=req, source=exc.source or safe_url(url)
            ) from exc

        if entry is None:
            raise PackageNotFoundError(
                f"No version of {req.name} satisfies {req.version_range}", requirement=req, source=safe_url(url)
            )
        return entry
