"""Lockfile data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

import semantic_version

from larder.constants import Constants
from larder.errors import LockfileError
from larder.locations.specs import LocationSpec


@dataclass(frozen=True)
class LockEntry:
    """One locked package: its exact version and where it came from."""
    name: str
    locked_version: semantic_version.Version
    origin: LocationSpec

    def __str__(self) -> str:
        return f"{self.name} ({self.locked_version}) from {self.origin}"


@dataclass
class Lockfile:
    """Locked entries keyed by name, plus the digest of the manifest they were resolved for."""
    manifest_digest: str
    entries: List[LockEntry] = field(default_factory=list)
    version: int = Constants.LOCKFILE_FORMAT_VERSION

    def __post_init__(self) -> None:
        seen = set()
        for entry in self.entries:
            if entry.name in seen:
                raise LockfileError(
                    f"The lockfile lists '{entry.name}' more than once.",
                    context={"name": entry.name},
                )
            seen.add(entry.name)
        self.entries = sorted(self.entries, key=lambda e: e.name)

    @classmethod
    def from_entries(cls, manifest_digest: str, entries: Iterable[LockEntry]) -> "Lockfile":
        return cls(manifest_digest=manifest_digest, entries=list(entries))

    def __iter__(self) -> Iterator[LockEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, name: object) -> bool:
        return any(e.name == name for e in self.entries)

    def get(self, name: str) -> Optional[LockEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def as_dict(self) -> Dict[str, LockEntry]:
        return {e.name: e for e in self.entries}
