"""Dependency resolution with chronological backtracking.

The search walks names in discovery order. For each unresolved name it tries
the candidate versions satisfying every demand accumulated so far, highest
first. Choosing a candidate adds its declared dependencies as new demands; when
one contradicts a version already chosen, the candidate is abandoned and the
next one at the same choice point is tried. When a choice point runs out of
candidates the failure propagates to the previous choice point.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import semantic_version

from larder.common.logging_utils import extra_context, Timer
from larder.constants import LocationKind
from larder.errors import NoSolution
from larder.resolver.downloader import Downloader
from larder.resolver.graph import Demand, ResolutionGraph
from larder.store.package import CachedPackage
from larder.versioning.models import Requirement, satisfies_all

logger = logging.getLogger(__name__)

_PINNING_KINDS = (LocationKind.PATH, LocationKind.GIT)


@dataclass
class _State:
    order: Tuple[str, ...] = ()
    demands: Dict[str, Tuple[Demand, ...]] = field(default_factory=dict)
    chosen: Dict[str, CachedPackage] = field(default_factory=dict)

    def copy(self) -> "_State":
        return _State(self.order, dict(self.demands), dict(self.chosen))

    def add(self, demand: Demand) -> None:
        if demand.name not in self.demands:
            self.order = self.order + (demand.name,)
        self.demands[demand.name] = self.demands.get(demand.name, ()) + (demand,)

    def next_unresolved(self) -> Optional[str]:
        for name in self.order:
            if name not in self.chosen:
                return name
        return None


class Resolver:
    """Computes one consistent version per reachable name."""

    def __init__(self, downloader: Downloader) -> None:
        self.downloader = downloader
        self._pinned: Dict[str, Requirement] = {}
        self._overridden: List[Tuple[CachedPackage, Demand]] = []
        self._preferred: Dict[str, semantic_version.Version] = {}
        self._steps = 0

    def resolve(self, requirements: Sequence[Requirement],
                preferred: Optional[Mapping[str, semantic_version.Version]] = None) -> ResolutionGraph:
        """Resolve ``requirements`` and everything they depend on.

        Args:
            requirements: Top-level requirements in manifest order.
            preferred: Versions tried first for the named packages when they
                are still viable (previously locked transitive versions).

        Returns:
            ResolutionGraph: The chosen package for every reachable name.

        Raises:
            NoSolution: If no assignment satisfies every constraint.
            NotFound: If a name has no versions in any location.
        """
        self._pinned = {
            r.name: r for r in requirements
            if r.location is not None and r.location.kind in _PINNING_KINDS
        }
        self._overridden = []
        self._preferred = dict(preferred or {})
        self._steps = 0
        state = _State()
        for req in requirements:
            state.add(Demand(req))

        with Timer() as t:
            final = self._search(state)
        logger.info("Resolved %d packages (%d ms)", len(final.chosen), t.duration_ms())
        logger.debug(
            "Resolution finished",
            extra=extra_context(event="resolve", component="resolver", steps=self._steps, duration_ms=t.duration_ms()),
        )
        self._warn_overridden(final)
        return ResolutionGraph(
            packages={name: final.chosen[name] for name in final.order},
            demands=dict(final.demands),
        )

    def _search(self, state: _State) -> _State:
        name = state.next_unresolved()
        if name is None:
            return state
        self._steps += 1
        demands = state.demands[name]
        primary = self._primary(demands)
        viable = [
            v for v in self.downloader.candidates(primary)
            if satisfies_all((d.requirement.constraint for d in demands), v)
        ]
        if not viable:
            raise NoSolution(name, demands)
        favourite = self._preferred.get(name)
        if favourite in viable:
            viable.remove(favourite)
            viable.insert(0, favourite)

        conflict: Optional[NoSolution] = None
        for version in viable:
            pkg = self.downloader.fetch(primary, version)
            try:
                return self._search(self._choose(state, pkg))
            except NoSolution as exc:
                conflict = exc
                logger.debug(
                    "Backtracking",
                    extra=extra_context(
                        event="backtrack", component="resolver", target=name,
                        version=str(version), conflict=exc.name,
                    ),
                )
        if conflict is None:
            raise NoSolution(name, demands)
        raise conflict

    def _choose(self, state: _State, pkg: CachedPackage) -> _State:
        nxt = state.copy()
        nxt.chosen[pkg.name] = pkg
        origin = f"{pkg.name} ({pkg.version})"
        for dep in pkg.dependencies:
            demand = Demand(dep, required_by=origin)
            if dep.name in self._pinned:
                self._overridden.append((pkg, demand))
                continue
            chosen = nxt.chosen.get(dep.name)
            if chosen is not None and not dep.constraint.satisfies(chosen.version):
                raise NoSolution(dep.name, nxt.demands.get(dep.name, ()) + (demand,))
            nxt.add(demand)
        return nxt

    @staticmethod
    def _primary(demands: Tuple[Demand, ...]) -> Requirement:
        """The demand deciding where a name is fetched from: first explicit location wins."""
        for demand in demands:
            if demand.requirement.location is not None:
                return demand.requirement
        return demands[0].requirement

    def _warn_overridden(self, state: _State) -> None:
        for parent, demand in self._overridden:
            if state.chosen.get(parent.name) != parent:
                continue
            pkg = state.chosen.get(demand.name)
            if pkg is not None and not demand.requirement.constraint.satisfies(pkg.version):
                logger.warning(
                    "%s (%s) from %s does not satisfy %s; using the pinned version",
                    pkg.name, pkg.version, pkg.origin, demand,
                )
