"""Already-parsed manifest: top-level requirements plus default locations.

The manifest DSL lives outside this package; callers hand over plain records::

    Manifest.from_records(
        [
            {"name": "nginx", "constraint": "~> 2.7"},
            {"name": "app", "path": "../app", "groups": ["integration"]},
            {"name": "tools", "github": "acme/tools", "ref": "v1.0.0"},
        ],
        locations=[{"index": "https://supermarket.chef.io/api/v1"}],
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from larder.constants import GitProtocol
from larder.errors import AmbiguousLocation, ConfigurationError, DuplicateLocation, DuplicateRequirement
from larder.locations.specs import ApiSpec, GitSpec, IndexSpec, LocationSpec, PathSpec, github_spec
from larder.versioning.models import Requirement
from larder.versioning.parser import parse_constraint

logger = logging.getLogger(__name__)

_LOCATION_KEYS = ("path", "git", "github", "index", "api")


def manifest_digest(text: Union[str, bytes]) -> str:
    """sha256 of manifest source text."""
    data = text.encode("utf-8") if isinstance(text, str) else text
    return hashlib.sha256(data).hexdigest()


def location_from_record(record: Dict[str, Any],
                         github_protocol: Union[str, GitProtocol] = GitProtocol.GIT) -> Optional[LocationSpec]:
    """Build the LocationSpec named by a record, or None when it names none.

    Raises:
        AmbiguousLocation: If the record names more than one source.
    """
    present = [key for key in _LOCATION_KEYS if record.get(key)]
    if not present:
        return None
    if len(present) > 1:
        raise AmbiguousLocation(
            f"'{record.get('name', '<location>')}' declares several sources: {', '.join(present)}",
            context={"keys": present},
        )
    key = present[0]
    ref = record.get("ref") or record.get("branch") or record.get("tag")
    if key == "path":
        return PathSpec(str(record["path"]))
    if key == "git":
        return GitSpec(str(record["git"]), ref)
    if key == "github":
        return github_spec(str(record["github"]), record.get("protocol", github_protocol), ref)
    if key == "index":
        return IndexSpec(str(record["index"]))
    return ApiSpec(str(record["api"]))


@dataclass(frozen=True)
class Manifest:
    """Ordered requirements and ordered default locations.

    Construction validates the requirement set and the location list.
    """

    requirements: Tuple[Requirement, ...]
    default_locations: Tuple[LocationSpec, ...] = ()
    digest: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "requirements", tuple(self.requirements))
        object.__setattr__(self, "default_locations", tuple(self.default_locations))
        self.validate()

    @classmethod
    def from_records(
        cls,
        records: Iterable[Dict[str, Any]],
        locations: Iterable[Union[Dict[str, Any], LocationSpec]] = (),
        source: Optional[str] = None,
        github_protocol: Union[str, GitProtocol] = GitProtocol.GIT,
    ) -> "Manifest":
        """Build a manifest from plain dicts.

        Args:
            records: One dict per requirement with ``name`` and optional
                ``constraint``, ``groups``, and one of ``path``, ``git``,
                ``github``, ``index`` or ``api`` (plus ``ref`` for git).
            locations: Default locations, as dicts or specs, in priority order.
            source: Manifest source text to digest; the canonical JSON of the
                records is digested when omitted.
            github_protocol: Protocol for ``github`` shorthands.

        Returns:
            Manifest: The validated manifest.
        """
        records = list(records)
        requirements = []
        for record in records:
            if not record.get("name"):
                raise ConfigurationError(f"Requirement record without a name: {record!r}")
            requirements.append(
                Requirement(
                    name=str(record["name"]),
                    constraint=parse_constraint(record.get("constraint")),
                    groups=frozenset(record.get("groups") or ()),
                    location=location_from_record(record, github_protocol),
                )
            )
        specs: List[LocationSpec] = []
        for entry in locations:
            if isinstance(entry, dict):
                spec = location_from_record(entry, github_protocol)
                if spec is None:
                    raise ConfigurationError(f"Default location record names no source: {entry!r}")
                specs.append(spec)
            else:
                specs.append(entry)
        if source is None:
            source = json.dumps(
                {"requirements": records, "locations": [s.to_dict() for s in specs]},
                sort_keys=True,
                default=str,
            )
        return cls(tuple(requirements), tuple(specs), manifest_digest(source))

    def validate(self) -> None:
        """Check uniqueness and location consistency.

        Raises:
            AmbiguousLocation: Same name with different explicit locations,
                whether or not their groups overlap.
            DuplicateRequirement: Same name and location in overlapping groups.
            DuplicateLocation: The same default location listed twice.
        """
        seen: Dict[str, List[Requirement]] = {}
        for req in self.requirements:
            for other in seen.get(req.name, []):
                if req.location != other.location:
                    raise AmbiguousLocation(
                        f"'{req.name}' is declared with different sources: "
                        f"{other.location or 'default'} and {req.location or 'default'}",
                        context={"name": req.name},
                    )
                if req.overlaps(other):
                    raise DuplicateRequirement(
                        f"Your manifest contains multiple entries named '{req.name}'.",
                        hint="Remove any duplicate requirements, or place them in disjoint groups.",
                        context={"name": req.name, "groups": sorted(req.groups & other.groups)},
                    )
            seen.setdefault(req.name, []).append(req)

        registered: List[LocationSpec] = []
        for spec in self.default_locations:
            if spec in registered:
                raise DuplicateLocation(
                    f"Default location {spec} is declared more than once.",
                    context={"location": spec.to_dict()},
                )
            registered.append(spec)

    def names(self) -> List[str]:
        """Requirement names in declaration order, without repeats."""
        return list(dict.fromkeys(req.name for req in self.requirements))

    def get(self, name: str) -> List[Requirement]:
        return [req for req in self.requirements if req.name == name]

    def groups(self) -> List[str]:
        return sorted({group for req in self.requirements for group in req.groups})

    def filter(self, except_groups: Optional[Sequence[str]] = None,
               only_groups: Optional[Sequence[str]] = None) -> "Manifest":
        """Return the manifest restricted by group.

        ``except_groups`` drops requirements in any of the named groups;
        ``only_groups`` keeps only requirements in at least one of them. The
        filtered manifest gets a digest derived from this one plus the filter.

        Raises:
            ConfigurationError: If both filters are given.
        """
        if except_groups and only_groups:
            raise ConfigurationError(
                "Cannot specify both except and only groups.",
                context={"except": list(except_groups), "only": list(only_groups)},
            )
        if not except_groups and not only_groups:
            return self
        if except_groups:
            excluded = frozenset(except_groups)
            kept = tuple(r for r in self.requirements if not (r.groups & excluded))
            tag = "except=" + ",".join(sorted(excluded))
        else:
            included = frozenset(only_groups or ())
            kept = tuple(r for r in self.requirements if r.groups & included)
            tag = "only=" + ",".join(sorted(included))
        logger.debug("Group filter %s keeps %d of %d requirements", tag, len(kept), len(self.requirements))
        return Manifest(kept, self.default_locations, manifest_digest(f"{self.digest}\n{tag}"))
