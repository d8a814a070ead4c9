"""Location specs: a closed tagged union describing where a package comes from.

Specs are plain frozen values. They are compared to detect duplicate or
conflicting declarations and serialized into the lockfile; the fetch behaviour
for each kind lives in the matching Location class.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, Optional, Union

from larder.constants import Constants, GitProtocol, LocationKind
from larder.errors import ConfigurationError, InvalidGitUri, LockfileError

_GIT_URI_RE = re.compile(
    r"^(?:(?:git|ssh|https?|file)://\S+|[\w.\-]+@[\w.\-]+:\S+|/\S+)$"
)


@dataclass(frozen=True)
class PathSpec:
    """A package read in place from a local directory."""
    path: str
    kind: ClassVar[LocationKind] = LocationKind.PATH

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", os.path.abspath(os.path.expanduser(self.path)))

    def identity(self) -> "PathSpec":
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "path": self.path}

    def __str__(self) -> str:
        return f"path: '{self.path}'"


@dataclass(frozen=True)
class GitSpec:
    """A package cloned from a git repository.

    ``ref`` is the branch, tag or commit requested by the manifest (default
    branch tip when absent). ``revision`` is only set on locked origins and holds
    the resolved commit.
    """
    uri: str
    ref: Optional[str] = None
    revision: Optional[str] = None
    kind: ClassVar[LocationKind] = LocationKind.GIT

    def __post_init__(self) -> None:
        if not self.uri or not _GIT_URI_RE.match(self.uri):
            raise InvalidGitUri(self.uri)

    def identity(self) -> "GitSpec":
        """The location as declared, without the resolved revision."""
        return replace(self, revision=None)

    def locked(self, revision: str) -> "GitSpec":
        return replace(self, revision=revision)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "uri": self.uri, "ref": self.ref, "revision": self.revision}

    def __str__(self) -> str:
        s = f"git: '{self.uri}'"
        if self.ref:
            s += f" with ref '{self.ref}'"
        return s


@dataclass(frozen=True)
class IndexSpec:
    """A community package index queried over HTTP."""
    endpoint: str = Constants.DEFAULT_INDEX_URL
    kind: ClassVar[LocationKind] = LocationKind.INDEX

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint", self.endpoint.rstrip("/"))

    def identity(self) -> "IndexSpec":
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "endpoint": self.endpoint}

    def __str__(self) -> str:
        return f"index: '{self.endpoint}'"


@dataclass(frozen=True)
class ApiCredentials:
    """Identity presented to a private package server."""
    client_name: str
    token: str = field(repr=False)

    def headers(self) -> Dict[str, str]:
        return {"X-Ops-UserId": self.client_name, "Authorization": f"Bearer {self.token}"}


@dataclass(frozen=True)
class ApiSpec:
    """A private package-serving API.

    Credentials are not part of the location's identity and are never written to
    the lockfile.
    """
    endpoint: str
    credentials: Optional[ApiCredentials] = field(default=None, compare=False, repr=False)
    kind: ClassVar[LocationKind] = LocationKind.API

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint", self.endpoint.rstrip("/"))

    def identity(self) -> "ApiSpec":
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "endpoint": self.endpoint}

    def __str__(self) -> str:
        return f"api: '{self.endpoint}'"


LocationSpec = Union[PathSpec, GitSpec, IndexSpec, ApiSpec]


def spec_from_dict(payload: Dict[str, Any]) -> LocationSpec:
    """Rebuild a spec from its ``to_dict`` form.

    Raises:
        LockfileError: If the payload names an unknown kind or misses fields.
    """
    kind = payload.get("kind")
    try:
        if kind == LocationKind.PATH.value:
            return PathSpec(payload["path"])
        if kind == LocationKind.GIT.value:
            return GitSpec(payload["uri"], payload.get("ref"), payload.get("revision"))
        if kind == LocationKind.INDEX.value:
            return IndexSpec(payload["endpoint"])
        if kind == LocationKind.API.value:
            return ApiSpec(payload["endpoint"])
    except KeyError as exc:
        raise LockfileError(f"Location of kind '{kind}' is missing `{exc.args[0]}`.") from exc
    raise LockfileError(f"Unknown location kind '{kind}'.")


def spec_digest(spec: LocationSpec) -> str:
    """Short stable digest of a location's identity, used in store keys."""
    payload = json.dumps(spec.identity().to_dict(), sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


def github_spec(repo: str, protocol: Union[str, GitProtocol] = GitProtocol.GIT,
                ref: Optional[str] = None) -> GitSpec:
    """Build a GitSpec for a ``owner/repo`` GitHub shorthand."""
    try:
        proto = GitProtocol(protocol) if not isinstance(protocol, GitProtocol) else protocol
    except ValueError as exc:
        raise ConfigurationError(
            f"'{protocol}' is not a supported Git protocol for GitHub locations.",
            hint="Use one of: git, ssh, https.",
        ) from exc
    host = Constants.GITHUB_HOST
    if proto is GitProtocol.SSH:
        uri = f"git@{host}:{repo}.git"
    elif proto is GitProtocol.HTTPS:
        uri = f"https://{host}/{repo}.git"
    else:
        uri = f"git://{host}/{repo}.git"
    return GitSpec(uri, ref)
