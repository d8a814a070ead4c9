"""Packages read in place from a local directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List

import semantic_version

from larder.constants import LocationKind
from larder.errors import NotFound, ValidationFailure
from larder.locations.base import Location
from larder.locations.specs import PathSpec
from larder.store.package import CachedPackage, has_descriptor

if TYPE_CHECKING:
    from larder.store.store import PackageStore

logger = logging.getLogger(__name__)


class PathLocation(Location):
    """Wraps a local package directory without copying it.

    The version is whatever the descriptor says at the time of the call.
    """

    spec: PathSpec

    @property
    def kind(self) -> LocationKind:
        return LocationKind.PATH

    def load(self, name: str) -> CachedPackage:
        """Validate and wrap the directory.

        Raises:
            NotFound: If the directory is missing or holds no descriptor.
            ValidationFailure: If the descriptor names another package.
        """
        path = Path(self.spec.path)
        if not path.is_dir() or not has_descriptor(path):
            raise NotFound(
                f"'{name}' was not found at {self.spec}",
                name=name,
                hint="Check that the directory exists and contains metadata.json.",
            )
        pkg = CachedPackage.from_path(path, self.spec)
        if pkg.name != name:
            raise ValidationFailure(
                f"The package at {self.spec} is named '{pkg.name}', expected '{name}'.",
                context={"name": name, "found": pkg.name},
            )
        return pkg

    def versions(self, name: str, store: "PackageStore") -> List[semantic_version.Version]:
        return [self.load(name).version]

    def fetch_version(self, name: str, version: semantic_version.Version,
                      store: "PackageStore") -> CachedPackage:
        return self._check_version(self.load(name), version)
