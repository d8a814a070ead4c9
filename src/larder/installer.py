"""Lockfile reconciliation and installation.

``Installer.install`` drives one run::

    manifest (group-filtered)
      -> Reconciler: which requirements may reuse a locked version
      -> Resolver (skipped when the lockfile is current)
      -> parallel materialization into the PackageStore
      -> lockfile rewritten, packages optionally vendored

The lockfile is only written after every package is materialized.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import semantic_version

from larder.common.logging_utils import extra_context, Timer
from larder.config import Config
from larder.constants import Constants, LocationKind
from larder.errors import OutdatedSourceConflict
from larder.lockfile.io import read_lockfile, write_lockfile
from larder.locations.specs import LocationSpec
from larder.lockfile.model import LockEntry, Lockfile
from larder.manifest import Manifest
from larder.resolver.downloader import Downloader
from larder.resolver.resolver import Resolver
from larder.store.package import CachedPackage
from larder.store.store import PackageStore
from larder.versioning.models import Requirement

logger = logging.getLogger(__name__)


class LockState(Enum):
    """How the lockfile on disk relates to the manifest."""

    UNLOCKED = "unlocked"
    LOCKED_CLEAN = "locked_clean"
    LOCKED_STALE = "locked_stale"


@dataclass
class ReconcilePlan:
    """What a run has to do.

    ``locked`` holds the entries reused verbatim (clean lockfile);
    ``requirements`` the set handed to the resolver otherwise, with reusable
    locks turned into exact pins. ``preferred`` carries the previously locked
    versions of every other name.
    """
    state: LockState
    locked: List[LockEntry] = field(default_factory=list)
    requirements: List[Requirement] = field(default_factory=list)
    preferred: Dict[str, semantic_version.Version] = field(default_factory=dict)


class Reconciler:
    """Compares a manifest against the previous lockfile."""

    def __init__(self, manifest: Manifest, lockfile: Optional[Lockfile],
                 search_locations: Optional[Sequence[LocationSpec]] = None) -> None:
        self.manifest = manifest
        self.lockfile = lockfile
        if search_locations is None:
            search_locations = manifest.default_locations
        self.search_locations = [spec.identity() for spec in search_locations]

    @property
    def state(self) -> LockState:
        if self.lockfile is None:
            return LockState.UNLOCKED
        if self.lockfile.manifest_digest == self.manifest.digest:
            return LockState.LOCKED_CLEAN
        return LockState.LOCKED_STALE

    def plan(self) -> ReconcilePlan:
        """Decide what to resolve.

        Raises:
            OutdatedSourceConflict: If a locked version no longer satisfies the
                manifest constraint for its name. No source is contacted.
        """
        state = self.state
        if self.lockfile is None:
            return ReconcilePlan(state, requirements=list(self.manifest.requirements))
        if state is LockState.LOCKED_CLEAN:
            logger.debug("Lockfile is current; reusing %d entries", len(self.lockfile))
            return ReconcilePlan(state, locked=list(self.lockfile.entries))

        locked = self.lockfile.as_dict()
        requirements = [self._reconcile(req, locked.get(req.name)) for req in self.manifest.requirements]
        top_level = set(self.manifest.names())
        preferred = {
            name: entry.locked_version
            for name, entry in locked.items()
            if name not in top_level and entry.origin.kind is not LocationKind.PATH
        }
        return ReconcilePlan(state, requirements=requirements, preferred=preferred)

    def _reconcile(self, req: Requirement, entry: Optional[LockEntry]) -> Requirement:
        if entry is None:
            return req
        if req.location is not None and req.location.kind is LocationKind.PATH:
            return req
        if entry.origin.kind is LocationKind.PATH:
            return req
        if req.location is not None and req.location.identity() != entry.origin.identity():
            logger.info("Location of %s changed from %s to %s; resolving again", req.name, entry.origin, req.location)
            return req
        if req.location is None and not self._searchable(entry.origin):
            logger.info("%s was locked to %s, which is not a default location; resolving again", req.name, entry.origin)
            return req
        if not req.constraint.satisfies(entry.locked_version):
            raise OutdatedSourceConflict(req.name, entry.locked_version, req.constraint)
        return req.pinned(entry.locked_version, entry.origin)

    def _searchable(self, origin: LocationSpec) -> bool:
        """True when a requirement without a location could be served by ``origin``."""
        if origin.kind not in (LocationKind.INDEX, LocationKind.API):
            return False
        return not self.search_locations or origin.identity() in self.search_locations


@dataclass
class InstallResult:
    """Outcome of a successful install."""
    state: LockState
    packages: List[CachedPackage]
    lockfile: Lockfile
    lockfile_path: Path
    vendor_path: Optional[Path] = None


class Installer:
    """Installs a manifest into the store and keeps its lockfile current."""

    def __init__(
        self,
        manifest: Manifest,
        lockfile_path: Union[str, Path],
        config: Optional[Config] = None,
        store: Optional[PackageStore] = None,
        downloader: Optional[Downloader] = None,
    ) -> None:
        self.manifest = manifest
        self.lockfile_path = Path(lockfile_path)
        self.config = config or Config.load()
        self.store = store or PackageStore(self.config.store_path)
        self.downloader = downloader or Downloader(self.store, manifest.default_locations, self.config)

    def install(
        self,
        except_groups: Optional[Sequence[str]] = None,
        only_groups: Optional[Sequence[str]] = None,
        vendor_path: Optional[Union[str, Path]] = None,
    ) -> InstallResult:
        """Resolve (when needed), materialize and lock the manifest.

        Args:
            except_groups: Skip requirements in any of these groups.
            only_groups: Install only requirements in these groups.
            vendor_path: Also copy every package to ``<vendor_path>/<name>``.

        Returns:
            InstallResult: Installed packages and the lockfile written.

        Raises:
            ConfigurationError: If both group filters are given.
            OutdatedSourceConflict: If the lockfile pins a version the manifest
                no longer accepts.
            NoSolution: If the requirements cannot be satisfied together.
            NotFound, TransportError, ValidationFailure: From fetching.
        """
        manifest = self.manifest.filter(except_groups, only_groups)
        previous = read_lockfile(self.lockfile_path)
        plan = Reconciler(manifest, previous, self.downloader.search_locations()).plan()
        logger.info("Lockfile state: %s", plan.state.value)

        with Timer() as t:
            if plan.state is LockState.LOCKED_CLEAN:
                packages = self._materialize(plan.locked)
            else:
                graph = Resolver(self.downloader).resolve(plan.requirements, plan.preferred)
                packages = self._materialize(
                    [LockEntry(pkg.name, pkg.version, pkg.origin) for pkg in graph]
                )
        logger.debug(
            "Materialized packages",
            extra=extra_context(event="install", component="installer", count=len(packages), duration_ms=t.duration_ms()),
        )

        lockfile = Lockfile.from_entries(
            manifest.digest,
            [LockEntry(pkg.name, pkg.version, pkg.origin) for pkg in packages],
        )
        write_lockfile(lockfile, self.lockfile_path)

        vendored = vendor(packages, Path(vendor_path)) if vendor_path else None
        return InstallResult(plan.state, packages, lockfile, self.lockfile_path, vendored)

    def _materialize(self, entries: Sequence[LockEntry]) -> List[CachedPackage]:
        """Fetch every entry in parallel, preserving input order."""
        if not entries:
            return []
        workers = min(self.config.workers, len(entries))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self.downloader.fetch_locked, e.name, e.locked_version, e.origin)
                for e in entries
            ]
            packages = []
            for entry, future in zip(entries, futures):
                pkg = future.result()
                logger.debug("Installed %s (%s) from %s", entry.name, pkg.version, pkg.origin)
                packages.append(pkg)
            return packages


def vendor(packages: Sequence[CachedPackage], destination: Path) -> Path:
    """Copy ``packages`` to ``destination/<name>``, replacing ``destination`` in one step.

    The copy is assembled in a scratch directory next to ``destination`` and
    renamed into place once complete.
    """
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    scratch = Path(tempfile.mkdtemp(prefix=f".{destination.name}-", dir=str(destination.parent)))
    try:
        ignore = shutil.ignore_patterns(*Constants.IGNORED_DIRS, Constants.ORIGIN_FILE)
        for pkg in packages:
            shutil.copytree(pkg.path, scratch / pkg.name, ignore=ignore)
            logger.debug("Vendored %s (%s)", pkg.name, pkg.version)
        if destination.exists():
            shutil.rmtree(destination)
        os.rename(scratch, destination)
    finally:
        if scratch.exists():
            shutil.rmtree(scratch, ignore_errors=True)
    logger.info("Vendored %d packages to %s", len(packages), destination)
    return destination


def install(
    manifest: Manifest,
    lockfile_path: Optional[Union[str, Path]] = None,
    config: Optional[Config] = None,
    **kwargs,
) -> InstallResult:
    """Convenience wrapper around ``Installer(...).install(...)``."""
    path = Path(lockfile_path) if lockfile_path else Path.cwd() / Constants.LOCKFILE_NAME
    return Installer(manifest, path, config=config).install(**kwargs)
