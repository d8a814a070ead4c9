"""Dispatch from a LocationSpec to the Location class that fetches it."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Optional, Type

from larder.constants import LocationKind
from larder.locations.base import Location
from larder.locations.git import GitLocation
from larder.locations.path import PathLocation
from larder.locations.remote import ApiLocation, IndexLocation
from larder.locations.specs import ApiSpec, LocationSpec
from larder.locations.transports import GitTransport

if TYPE_CHECKING:
    from larder.config import Config

LOCATION_TYPES: Dict[LocationKind, Type[Location]] = {
    LocationKind.PATH: PathLocation,
    LocationKind.GIT: GitLocation,
    LocationKind.INDEX: IndexLocation,
    LocationKind.API: ApiLocation,
}


def build_location(spec: LocationSpec, config: Optional["Config"] = None) -> Location:
    """Instantiate the Location serving ``spec``.

    Timeouts come from ``config``. API specs read back from a lockfile carry
    no credentials; the configured ones are attached.
    """
    location_cls = LOCATION_TYPES[spec.kind]
    if config is None:
        return location_cls(spec)
    if location_cls is GitLocation:
        return GitLocation(spec, GitTransport(timeout=config.git_timeout))
    if location_cls is ApiLocation:
        if isinstance(spec, ApiSpec) and spec.credentials is None:
            spec = replace(spec, credentials=config.api_credentials())
        return ApiLocation(spec, timeout=config.http_timeout)
    if location_cls is IndexLocation:
        return IndexLocation(spec, timeout=config.http_timeout)
    return location_cls(spec)
