"""Abstract base class for package locations."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List

import semantic_version

from larder.constants import LocationKind
from larder.errors import NotFound, ValidationFailure
from larder.locations.specs import LocationSpec
from larder.store.package import CachedPackage
from larder.versioning.models import Constraint

if TYPE_CHECKING:
    from larder.store.store import PackageStore

logger = logging.getLogger(__name__)


class Location(ABC):
    """Where a package comes from, and how to get it into the store."""

    def __init__(self, spec: LocationSpec) -> None:
        self.spec = spec

    @property
    @abstractmethod
    def kind(self) -> LocationKind:
        """Kind tag of the location spec this location serves."""

    @abstractmethod
    def versions(self, name: str, store: "PackageStore") -> List[semantic_version.Version]:
        """Every version of ``name`` this location can provide, highest first.

        Raises:
            NotFound: If the location does not know ``name`` at all.
            TransportError: On network or process failures.
        """

    @abstractmethod
    def fetch_version(self, name: str, version: semantic_version.Version,
                      store: "PackageStore") -> CachedPackage:
        """Materialize exactly ``version`` of ``name`` into ``store``."""

    def fetch(self, name: str, constraint: Constraint, store: "PackageStore") -> CachedPackage:
        """Fetch the highest version of ``name`` satisfying ``constraint``.

        Args:
            name: Package name.
            constraint: Accepted versions.
            store: Package store the result is materialized into.

        Returns:
            CachedPackage: The materialized package.

        Raises:
            NotFound: If no version satisfies ``constraint`` here.
        """
        for version in self.versions(name, store):
            if constraint.satisfies(version):
                return self.fetch_version(name, version, store)
        raise NotFound(
            f"No version of '{name}' satisfying '{constraint}' at {self.spec}",
            name=name,
        )

    def _check_version(self, pkg: CachedPackage, version: semantic_version.Version) -> CachedPackage:
        if pkg.version != version:
            raise ValidationFailure(
                f"{pkg.name} from {self.spec} declares version {pkg.version}, expected {version}.",
                context={"name": pkg.name, "found": str(pkg.version), "expected": str(version)},
            )
        return pkg

    def __str__(self) -> str:
        return str(self.spec)
