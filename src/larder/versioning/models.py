"""Data models for versions, constraints and requirements."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, FrozenSet, Iterable, Optional

import semantic_version

from larder.constants import Constants

if TYPE_CHECKING:
    from larder.locations.specs import LocationSpec


class Operator(Enum):
    """Constraint operators."""
    EQ = "="
    GE = ">="
    LE = "<="
    GT = ">"
    LT = "<"
    PESSIMISTIC = "~>"
    ANY = "any"


def release_of(version: semantic_version.Version) -> semantic_version.Version:
    """Return ``version`` without pre-release or build segments."""
    return semantic_version.Version(major=version.major, minor=version.minor, patch=version.patch)


@dataclass(frozen=True)
class Constraint:
    """An operator paired with a version.

    ``precision`` records how many numeric segments were written so that
    ``~> 1.2`` and ``~> 1.2.0`` keep their different meanings and render back
    the way they were declared.
    """
    operator: Operator
    version: semantic_version.Version = field(
        default_factory=lambda: semantic_version.Version("0.0.0")
    )
    precision: int = 3

    @classmethod
    def any(cls) -> "Constraint":
        return cls(Operator.ANY)

    @classmethod
    def exact(cls, version: semantic_version.Version) -> "Constraint":
        return cls(Operator.EQ, version)

    @property
    def is_any(self) -> bool:
        return self.operator is Operator.ANY

    def upper_bound(self) -> Optional[semantic_version.Version]:
        """Exclusive upper bound of a pessimistic constraint."""
        if self.operator is not Operator.PESSIMISTIC:
            return None
        v = self.version
        if self.precision >= 3:
            return semantic_version.Version(major=v.major, minor=v.minor + 1, patch=0)
        return semantic_version.Version(major=v.major + 1, minor=0, patch=0)

    def satisfies(self, version: semantic_version.Version) -> bool:
        """Return True when ``version`` is accepted by this constraint."""
        op = self.operator
        if op is Operator.ANY:
            return True
        if op is Operator.EQ:
            return version == self.version
        if op is Operator.GE:
            return version >= self.version
        if op is Operator.LE:
            return version <= self.version
        if op is Operator.GT:
            return version > self.version
        if op is Operator.LT:
            return version < self.version
        # Pre-releases of the upper bound itself are outside the range.
        return version >= self.version and release_of(version) < self.upper_bound()

    def __str__(self) -> str:
        if self.operator is Operator.ANY:
            return ">= 0.0.0"
        return f"{self.operator.value} {self._render_version()}"

    def _render_version(self) -> str:
        v = self.version
        if self.precision >= 3 or v.prerelease:
            return str(v)
        return ".".join(str(n) for n in (v.major, v.minor, v.patch)[: self.precision])


def satisfies_all(constraints: Iterable[Constraint], version: semantic_version.Version) -> bool:
    """Return True when ``version`` satisfies every constraint."""
    return all(c.satisfies(version) for c in constraints)


def normalize_groups(groups: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Return a frozen group set; an empty declaration means the default group."""
    cleaned = frozenset(str(g) for g in (groups or ()) if str(g))
    return cleaned or frozenset({Constants.DEFAULT_GROUP})


@dataclass(frozen=True)
class Requirement:
    """A named, constrained, optionally grouped and source-pinned request."""
    name: str
    constraint: Constraint = field(default_factory=Constraint.any)
    groups: FrozenSet[str] = field(default_factory=lambda: normalize_groups(None))
    location: Optional["LocationSpec"] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", normalize_groups(self.groups))

    def overlaps(self, other: "Requirement") -> bool:
        """True when both requirements share at least one group."""
        return bool(self.groups & other.groups)

    def pinned(self, version: semantic_version.Version,
               location: Optional["LocationSpec"] = None) -> "Requirement":
        """Return a copy constrained to exactly ``version``."""
        return Requirement(
            name=self.name,
            constraint=Constraint.exact(version),
            groups=self.groups,
            location=location if location is not None else self.location,
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.constraint})"
