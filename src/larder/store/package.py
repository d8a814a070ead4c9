"""Cached packages: materialized package directories with parsed metadata."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import semantic_version

from larder.common.schema import DESCRIPTOR_SCHEMA, first_error
from larder.constants import Constants
from larder.errors import InvalidDescriptor, InvalidPackageFiles, LarderError
from larder.locations.specs import LocationSpec
from larder.versioning.models import Requirement
from larder.versioning.parser import parse_constraint, parse_version

logger = logging.getLogger(__name__)

_SKIPPED_FILES = (Constants.ORIGIN_FILE,)


@dataclass(frozen=True)
class Descriptor:
    """Parsed contents of a package's ``metadata.json``."""
    name: str
    version: semantic_version.Version
    dependencies: Tuple[Requirement, ...] = ()


def has_descriptor(path: Path) -> bool:
    return (Path(path) / Constants.DESCRIPTOR_FILE).is_file()


def read_descriptor(path: Path) -> Descriptor:
    """Parse the descriptor file found in package directory ``path``.

    Raises:
        InvalidDescriptor: If the file is missing, not JSON or malformed.
    """
    descriptor_path = Path(path) / Constants.DESCRIPTOR_FILE
    try:
        raw = descriptor_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise InvalidDescriptor(
            f"No {Constants.DESCRIPTOR_FILE} found at {path}",
            context={"path": str(path)},
        ) from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidDescriptor(
            f"{descriptor_path} is not valid JSON: {exc}",
            context={"path": str(descriptor_path)},
        ) from exc
    problem = first_error(DESCRIPTOR_SCHEMA, payload)
    if problem:
        raise InvalidDescriptor(f"{descriptor_path}: {problem}", context={"path": str(descriptor_path)})
    try:
        version = parse_version(payload["version"])
        dependencies = tuple(
            Requirement(name=dep, constraint=parse_constraint(expr))
            for dep, expr in sorted(payload.get("dependencies", {}).items())
        )
    except LarderError as exc:
        raise InvalidDescriptor(f"{descriptor_path}: {exc.message}", context={"path": str(descriptor_path)}) from exc
    return Descriptor(name=payload["name"], version=version, dependencies=dependencies)


def iter_package_files(root: Path) -> Iterator[Path]:
    """Yield every key file of a package, relative to ``root``, in sorted order."""
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in Constants.IGNORED_DIRS)
        for filename in sorted(filenames):
            full = Path(dirpath) / filename
            rel = full.relative_to(root)
            if rel.as_posix() in _SKIPPED_FILES:
                continue
            yield rel


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(Constants.DOWNLOAD_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def checksum_tree(root: Path) -> str:
    """Digest over every key file's relative path and contents."""
    h = hashlib.sha256()
    for rel in iter_package_files(root):
        h.update(rel.as_posix().encode("utf-8"))
        h.update(b"\0")
        h.update(file_digest(Path(root) / rel).encode("ascii"))
        h.update(b"\n")
    return h.hexdigest()


def validate_package_files(name: str, root: Path) -> None:
    """Reject packages whose paths contain whitespace.

    Raises:
        InvalidPackageFiles: Listing every offending path.
    """
    invalid: List[str] = []
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in Constants.IGNORED_DIRS]
        for entry in list(dirnames) + filenames:
            if any(ch.isspace() for ch in entry):
                invalid.append((Path(dirpath) / entry).relative_to(root).as_posix())
    if invalid:
        raise InvalidPackageFiles(name, invalid)


@dataclass(frozen=True)
class CachedPackage:
    """An immutable, on-disk, checksummed package with parsed metadata."""
    name: str
    version: semantic_version.Version
    origin: LocationSpec
    checksum: str
    path: Path
    dependencies: Tuple[Requirement, ...] = field(default=(), compare=False)
    revision: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path, origin: LocationSpec, revision: Optional[str] = None) -> "CachedPackage":
        """Build a CachedPackage from a package directory, validating it.

        Raises:
            InvalidDescriptor: If the descriptor is missing or malformed.
            InvalidPackageFiles: If filenames fail validation.
        """
        path = Path(path)
        descriptor = read_descriptor(path)
        validate_package_files(descriptor.name, path)
        return cls(
            name=descriptor.name,
            version=descriptor.version,
            origin=origin,
            checksum=checksum_tree(path),
            path=path,
            dependencies=descriptor.dependencies,
            revision=revision,
        )

    @property
    def identity(self) -> str:
        """Store key component: the git revision when present, else the version."""
        return self.revision or str(self.version)

    def file_checksums(self) -> Dict[str, str]:
        """Map each key file's relative path to its sha256."""
        return {rel.as_posix(): file_digest(self.path / rel) for rel in iter_package_files(self.path)}

    def __str__(self) -> str:
        return f"{self.name} ({self.version})"
