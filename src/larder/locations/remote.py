"""Archive-serving locations: the community index and private APIs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Union

import semantic_version

from larder.common.logging_utils import extra_context, Timer
from larder.constants import Constants, LocationKind
from larder.errors import InvalidVersionConstraint, NotFound, ValidationFailure
from larder.locations.archive import extract_archive, package_root
from larder.locations.base import Location
from larder.locations.specs import ApiSpec, IndexSpec, spec_digest
from larder.locations.transports import ApiTransport, IndexTransport
from larder.store.package import CachedPackage, read_descriptor
from larder.versioning.parser import parse_version

if TYPE_CHECKING:
    from larder.store.store import PackageStore

logger = logging.getLogger(__name__)


class RemoteLocation(Location):
    """Lists versions over HTTP and downloads tar.gz archives.

    Previously downloaded versions are served from the store.
    """

    spec: Union[IndexSpec, ApiSpec]

    def __init__(self, spec: Union[IndexSpec, ApiSpec],
                 transport: Union[IndexTransport, ApiTransport]) -> None:
        super().__init__(spec)
        self.transport = transport
        self._versions: Dict[str, List[semantic_version.Version]] = {}

    def versions(self, name: str, store: Optional["PackageStore"] = None) -> List[semantic_version.Version]:
        if name in self._versions:
            return self._versions[name]
        try:
            raw = self.transport.fetch_index(name)
        except NotFound as exc:
            raise NotFound(f"'{name}' is not available at {self.spec}", name=name) from exc
        parsed = set()
        for value in raw:
            try:
                parsed.add(parse_version(value))
            except InvalidVersionConstraint:
                logger.warning("Ignoring unparseable version '%s' of %s at %s", value, name, self.spec)
        if not parsed:
            raise NotFound(f"'{name}' has no versions at {self.spec}", name=name)
        found = sorted(parsed, reverse=True)
        self._versions[name] = found
        return found

    def store_identity(self, version: semantic_version.Version) -> str:
        """Store key of ``version`` fetched from this location.

        The community index keeps the plain ``<version>`` key; every other
        archive origin is suffixed with a digest of its identity.
        """
        if self.spec.identity() == IndexSpec().identity():
            return str(version)
        return f"{version}-{spec_digest(self.spec)}"

    def fetch_version(self, name: str, version: semantic_version.Version,
                      store: "PackageStore") -> CachedPackage:
        identity = self.store_identity(version)
        cached = store.get(name, identity)
        if cached is not None and cached.origin.identity() != self.spec.identity():
            logger.warning(
                "Store entry %s-%s came from %s, not %s; fetching again",
                name, identity, cached.origin, self.spec,
            )
            identity = f"{version}-{spec_digest(self.spec)}"
            cached = store.get(name, identity)
        if cached is not None:
            logger.debug(
                "Archive served from store",
                extra=extra_context(event="store_hit", component="remote_location", target=name, version=str(version)),
            )
            return cached
        with store.scratch(prefix=f"{self.kind.value}-{name}-") as scratch:
            with Timer() as t:
                archive = self.transport.download(name, str(version), scratch)
                extracted = scratch / "extracted"
                extracted.mkdir()
                extract_archive(archive, extracted)
            logger.info("Downloaded %s (%s) from %s (%d ms)", name, version, self.spec, t.duration_ms())
            root = package_root(extracted, name)
            declared = read_descriptor(root).version
            if declared != version:
                raise ValidationFailure(
                    f"The archive of {name} {version} at {self.spec} declares version {declared}.",
                    context={"name": name, "found": str(declared), "expected": str(version)},
                )
            return store.insert(name, identity, root, self.spec)


class IndexLocation(RemoteLocation):
    """The community package index."""

    spec: IndexSpec

    def __init__(self, spec: Optional[IndexSpec] = None, transport: Optional[IndexTransport] = None,
                 timeout: float = Constants.REQUEST_TIMEOUT) -> None:
        spec = spec or IndexSpec()
        super().__init__(spec, transport or IndexTransport(spec, timeout=timeout))

    @property
    def kind(self) -> LocationKind:
        return LocationKind.INDEX


class ApiLocation(RemoteLocation):
    """A private package server, authenticated with the configured credentials."""

    spec: ApiSpec

    def __init__(self, spec: ApiSpec, transport: Optional[ApiTransport] = None,
                 timeout: float = Constants.REQUEST_TIMEOUT) -> None:
        super().__init__(spec, transport or ApiTransport(spec, timeout=timeout))

    @property
    def kind(self) -> LocationKind:
        return LocationKind.API
