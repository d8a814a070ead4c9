"""Packages cloned from git repositories."""

from __future__ import annotations

import logging
import shutil
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, List, Optional

import semantic_version

from larder.common.logging_utils import extra_context, Timer
from larder.constants import LocationKind
from larder.errors import NotFound
from larder.locations.base import Location
from larder.locations.specs import GitSpec
from larder.locations.transports import GitTransport
from larder.store.package import CachedPackage, has_descriptor

if TYPE_CHECKING:
    from larder.store.store import PackageStore

logger = logging.getLogger(__name__)


class GitLocation(Location):
    """Resolves a ref to a commit and caches the checkout by revision.

    A locked spec (one carrying ``revision``) is fetched at that commit without
    consulting the remote for the ref.
    """

    spec: GitSpec

    def __init__(self, spec: GitSpec, transport: Optional[GitTransport] = None) -> None:
        super().__init__(spec)
        self.transport = transport or GitTransport()
        self._resolved: Dict[str, CachedPackage] = {}

    @property
    def kind(self) -> LocationKind:
        return LocationKind.GIT

    def resolve_revision(self) -> Optional[str]:
        """Commit the location spec points at, or None when only a clone can tell."""
        if self.spec.revision:
            return self.spec.revision
        return self.transport.ls_remote(self.spec.uri, self.spec.ref)

    def checkout(self, name: str, store: "PackageStore") -> CachedPackage:
        """Return the package at the resolved revision, cloning only on a store miss."""
        if name in self._resolved:
            return self._resolved[name]
        revision = self.resolve_revision()
        pkg = store.get(name, revision) if revision else None
        if pkg is None:
            pkg = self._clone(name, revision, store)
        else:
            logger.debug(
                "Git checkout served from store",
                extra=extra_context(event="store_hit", component="git_location", target=name, revision=revision),
            )
        origin = self.spec.locked(pkg.revision or revision)
        if pkg.origin != origin:
            # same commit reached through another ref or remote
            pkg = replace(pkg, origin=origin)
        self._resolved[name] = pkg
        return pkg

    def _clone(self, name: str, revision: Optional[str], store: "PackageStore") -> CachedPackage:
        with store.scratch(prefix=f"git-{name}-") as scratch:
            repo_dir = scratch / name
            with Timer() as t:
                revision = self.transport.clone(self.spec.uri, repo_dir, revision or self.spec.ref)
            logger.info("Cloned %s from %s at %s (%d ms)", name, self.spec.uri, revision, t.duration_ms())
            existing = store.get(name, revision)
            if existing is not None:
                return existing
            if not has_descriptor(repo_dir):
                raise NotFound(
                    f"'{name}' at {self.spec} (revision {revision}) has no metadata.json",
                    name=name,
                )
            shutil.rmtree(repo_dir / ".git", ignore_errors=True)
            return store.insert(name, revision, repo_dir, self.spec.locked(revision), revision=revision)

    def versions(self, name: str, store: "PackageStore") -> List[semantic_version.Version]:
        return [self.checkout(name, store).version]

    def fetch_version(self, name: str, version: semantic_version.Version,
                      store: "PackageStore") -> CachedPackage:
        return self._check_version(self.checkout(name, store), version)
