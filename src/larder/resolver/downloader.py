"""Candidate discovery and fetching across the default-location chain."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import semantic_version

from larder.common.logging_utils import extra_context
from larder.config import Config
from larder.constants import LocationKind
from larder.errors import DuplicateLocation, NotFound, ValidationFailure
from larder.locations.base import Location
from larder.locations.factory import build_location
from larder.locations.path import PathLocation
from larder.locations.specs import LocationSpec
from larder.store.package import CachedPackage
from larder.store.store import PackageStore
from larder.versioning.models import Operator, Requirement

logger = logging.getLogger(__name__)

LocationFactory = Callable[[LocationSpec], Location]


class Downloader:
    """Answers ``candidates`` and ``fetch`` for the resolver.

    Requirements with an explicit location are served by that location only.
    Others are looked up in every default location, in registration order;
    only ``NotFound`` falls through to the next location.
    """

    def __init__(
        self,
        store: PackageStore,
        default_locations: Sequence[LocationSpec] = (),
        config: Optional[Config] = None,
        location_factory: Optional[LocationFactory] = None,
    ) -> None:
        self.store = store
        self.config = config or Config(store_path=store.root)
        self._factory: LocationFactory = location_factory or (lambda spec: build_location(spec, self.config))
        self._locations: Dict[LocationSpec, Location] = {}
        self._offers: Dict[Tuple[str, Optional[LocationSpec]], List[Tuple[semantic_version.Version, LocationSpec]]] = {}
        self._lock = threading.Lock()
        self.default_locations: List[LocationSpec] = []
        for spec in default_locations:
            self.add_location(spec)

    def add_location(self, spec: LocationSpec) -> None:
        """Register a default location.

        Raises:
            DuplicateLocation: If ``spec`` is already registered.
        """
        if spec in self.default_locations:
            raise DuplicateLocation(
                f"Default location {spec} is already defined.",
                context={"location": spec.to_dict()},
            )
        self.default_locations.append(spec)

    def search_locations(self) -> List[LocationSpec]:
        """Default locations, or the configured index and API when none are registered."""
        if self.default_locations:
            return list(self.default_locations)
        specs: List[LocationSpec] = [self.config.index_spec()]
        api = self.config.api_spec()
        if api is not None:
            specs.append(api)
        return specs

    def location(self, spec: LocationSpec) -> Location:
        with self._lock:
            if spec not in self._locations:
                self._locations[spec] = self._factory(spec)
            return self._locations[spec]

    def offers(self, requirement: Requirement) -> List[Tuple[semantic_version.Version, LocationSpec]]:
        """Every (version, location) available for ``requirement``'s name, highest first.

        A version offered by several locations is attributed to the first.

        Raises:
            NotFound: If no location knows the name, listing every attempt.
        """
        key = (requirement.name, requirement.location)
        if key in self._offers:
            return self._offers[key]
        if self._stored_pin(requirement):
            self._offers[key] = [(requirement.constraint.version, requirement.location)]
            return self._offers[key]
        specs = [requirement.location] if requirement.location is not None else self.search_locations()
        found: Dict[semantic_version.Version, LocationSpec] = {}
        attempts: List[str] = []
        for spec in specs:
            try:
                versions = self.location(spec).versions(requirement.name, self.store)
            except NotFound as exc:
                attempts.append(f"{spec}: {exc.message}")
                continue
            for version in versions:
                found.setdefault(version, spec)
        if not found:
            raise NotFound(
                f"Unable to find '{requirement.name}' in any location:",
                name=requirement.name,
                attempts=attempts,
            )
        offers = sorted(found.items(), key=lambda item: item[0], reverse=True)
        logger.debug(
            "Discovered candidate versions",
            extra=extra_context(event="candidates", component="downloader", target=requirement.name, count=len(offers)),
        )
        self._offers[key] = offers
        return offers

    def _stored_pin(self, requirement: Requirement) -> bool:
        """True for an exact pin to an archive location already held by the store."""
        spec = requirement.location
        if (
            spec is None
            or spec.kind not in (LocationKind.INDEX, LocationKind.API)
            or requirement.constraint.operator is not Operator.EQ
        ):
            return False
        identity = self.location(spec).store_identity(requirement.constraint.version)
        cached = self.store.get(requirement.name, identity)
        return cached is not None and cached.origin.identity() == spec.identity()

    def candidates(self, requirement: Requirement) -> List[semantic_version.Version]:
        """Versions satisfying ``requirement``'s constraint, highest first."""
        return [v for v, _ in self.offers(requirement) if requirement.constraint.satisfies(v)]

    def fetch(self, requirement: Requirement, version: semantic_version.Version) -> CachedPackage:
        """Materialize ``version`` from the location that offered it."""
        for offered, spec in self.offers(requirement):
            if offered == version:
                pkg = self.location(spec).fetch_version(requirement.name, version, self.store)
                return self._from_origin(pkg, spec)
        raise NotFound(
            f"Version {version} of '{requirement.name}' is not offered by any location.",
            name=requirement.name,
        )

    def fetch_locked(self, name: str, version: semantic_version.Version, origin: LocationSpec) -> CachedPackage:
        """Materialize a locked entry from its recorded origin.

        Path origins are read live and may report a different version.
        """
        location = self.location(origin)
        if isinstance(location, PathLocation):
            return location.load(name)
        return self._from_origin(location.fetch_version(name, version, self.store), origin)

    @staticmethod
    def _from_origin(pkg: CachedPackage, spec: LocationSpec) -> CachedPackage:
        """Return ``pkg`` after checking it came from ``spec``.

        Raises:
            ValidationFailure: If the store handed back a copy from another location.
        """
        if pkg.origin.identity() != spec.identity():
            raise ValidationFailure(
                f"{pkg.name} ({pkg.version}) was served from {pkg.origin}, expected {spec}.",
                hint="Clear the store and fetch again.",
                context={"name": pkg.name, "origin": str(pkg.origin), "expected": str(spec)},
            )
        return pkg
