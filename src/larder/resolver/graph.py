"""Resolution results: chosen packages and the demands that led to them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import semantic_version

from larder.store.package import CachedPackage
from larder.versioning.models import Requirement


@dataclass(frozen=True)
class Demand:
    """A requirement together with whoever declared it.

    ``required_by`` is None for top-level requirements.
    """
    requirement: Requirement
    required_by: Optional[str] = None

    @property
    def name(self) -> str:
        return self.requirement.name

    def __str__(self) -> str:
        source = f"required by {self.required_by}" if self.required_by else "from the manifest"
        return f"{self.requirement} {source}"


@dataclass
class ResolutionGraph:
    """Name -> chosen package, in discovery order, plus every demand per name."""
    packages: Dict[str, CachedPackage] = field(default_factory=dict)
    demands: Dict[str, Tuple[Demand, ...]] = field(default_factory=dict)

    def __iter__(self) -> Iterator[CachedPackage]:
        return iter(self.packages.values())

    def __len__(self) -> int:
        return len(self.packages)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def get(self, name: str) -> Optional[CachedPackage]:
        return self.packages.get(name)

    def version_of(self, name: str) -> Optional[semantic_version.Version]:
        pkg = self.packages.get(name)
        return pkg.version if pkg else None

    def chain(self, name: str) -> List[Demand]:
        """Every demand, direct or transitive, that named ``name``."""
        return list(self.demands.get(name, ()))

    def assignment(self) -> Dict[str, semantic_version.Version]:
        return {name: pkg.version for name, pkg in sorted(self.packages.items())}
