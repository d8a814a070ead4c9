"""Package locations: specs describing a source, and the classes fetching from it."""

from .specs import (
    ApiCredentials,
    ApiSpec,
    GitSpec,
    IndexSpec,
    LocationSpec,
    PathSpec,
    github_spec,
    spec_from_dict,
)

__all__ = [
    "ApiCredentials",
    "ApiSpec",
    "GitSpec",
    "IndexSpec",
    "LocationSpec",
    "PathSpec",
    "github_spec",
    "spec_from_dict",
]
