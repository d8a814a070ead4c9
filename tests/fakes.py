"""In-memory transports and package builders shared by the test modules."""

import io
import json
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from larder.constants import LocationKind
from larder.errors import NotFound
from larder.locations.git import GitLocation
from larder.locations.path import PathLocation
from larder.locations.remote import ApiLocation, IndexLocation


def write_package(root: Path, name: str, version: str, dependencies: Optional[Dict[str, str]] = None,
                  files: Optional[Dict[str, str]] = None) -> Path:
    """Create a package directory with a descriptor and a recipe."""
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    (root / "metadata.json").write_text(
        json.dumps({"name": name, "version": version, "dependencies": dependencies or {}}),
        encoding="utf-8",
    )
    (root / "recipes").mkdir(exist_ok=True)
    (root / "recipes" / "default.rb").write_text(f"# {name} {version}\n", encoding="utf-8")
    for rel, text in (files or {}).items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return root


def build_archive(path: Path, name: str, version: str, dependencies: Optional[Dict[str, str]] = None) -> Path:
    """Write a tar.gz holding ``<name>/metadata.json`` and a recipe."""
    members = {
        "metadata.json": json.dumps({"name": name, "version": version, "dependencies": dependencies or {}}),
        "recipes/default.rb": f"# {name} {version}\n",
    }
    with tarfile.open(path, "w:gz") as tf:
        for rel, text in members.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(f"{name}/{rel}")
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return path


class FakeIndexTransport:
    """Serves ``{name: {version: dependencies}}`` and counts every call."""

    def __init__(self, packages: Dict[str, Dict[str, Dict[str, str]]]):
        self.packages = packages
        self.index_calls: List[str] = []
        self.downloads: List[Tuple[str, str]] = []

    def fetch_index(self, name: str) -> List[str]:
        self.index_calls.append(name)
        if name not in self.packages:
            raise NotFound(f"index: {name} returned 404")
        return list(self.packages[name])

    def download(self, name: str, version: str, destination_dir: Path) -> Path:
        self.downloads.append((name, version))
        deps = self.packages[name][version]
        return build_archive(Path(destination_dir) / f"{name}-{version}.tar.gz", name, version, deps)

    @property
    def calls(self) -> int:
        return len(self.index_calls) + len(self.downloads)


class FakeGitTransport:
    """Serves ``{uri: (revision, name, version, dependencies)}`` and counts clones."""

    def __init__(self, repos: Dict[str, Tuple[str, str, str, Dict[str, str]]]):
        self.repos = repos
        self.ls_remote_calls = 0
        self.clones = 0

    def ls_remote(self, uri: str, ref: Optional[str] = None) -> Optional[str]:
        self.ls_remote_calls += 1
        if uri not in self.repos:
            raise NotFound(f"Unable to resolve git ref at {uri}")
        return self.repos[uri][0]

    def clone(self, uri: str, destination: Path, ref: Optional[str] = None) -> str:
        self.clones += 1
        revision, name, version, deps = self.repos[uri]
        write_package(destination, name, version, deps)
        (Path(destination) / ".git").mkdir()
        (Path(destination) / ".git" / "HEAD").write_text(revision, encoding="utf-8")
        return revision


def location_factory(index: Optional[FakeIndexTransport] = None, git: Optional[FakeGitTransport] = None,
                     api: Optional[FakeIndexTransport] = None):
    """Build a Downloader location factory wired to fake transports."""

    def factory(spec):
        if spec.kind is LocationKind.INDEX:
            return IndexLocation(spec, transport=index)
        if spec.kind is LocationKind.API:
            return ApiLocation(spec, transport=api)
        if spec.kind is LocationKind.GIT:
            return GitLocation(spec, git)
        return PathLocation(spec)

    return factory
