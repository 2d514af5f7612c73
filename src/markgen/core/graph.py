"""Dependency graph over merged units and the ordering engine.

Forward edges point from a unit to the units it requires; the reverse
map records, for each unit, the units that require it.  Ordering puts
every dependency before its dependents where the graph allows it.

Generated types can legitimately depend on each other, so the default
ordering never fails on a cycle: :meth:`DependencyGraph.best_effort_order`
breaks a cycle by forcing out its earliest-registered member.  The
strict :meth:`DependencyGraph.topological_order` is available for callers
that want cycles reported, and :meth:`DependencyGraph.schedule` degrades
from it to the best-effort order instead of aborting.
"""
from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from markgen.core.errors import CyclicDependencyError
from markgen.core.identity import UnitKey
from markgen.core.unit import Unit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleResult:
    """Outcome of ordering a dependency graph.

    Parameters
    ----------
    order:
        Every unit exactly once, dependencies first where possible.
    cycles:
        Strongly connected components that prevented a strict order.
    forced:
        Keys emitted before all of their dependencies, in emission order.
    strict:
        True when ``order`` is a strict topological order.
    """

    order: list[Unit] = field(default_factory=list)
    cycles: list[tuple[UnitKey, ...]] = field(default_factory=list)
    forced: list[UnitKey] = field(default_factory=list)
    strict: bool = False

    @property
    def keys(self) -> list[UnitKey]:
        return [unit.key for unit in self.order]


class DependencyGraph:
    """Directed graph whose nodes are units and edges are dependencies.

    Dependencies naming a key that no unit carries are kept out of the
    edge maps and reported by :meth:`missing_dependencies`.

    Parameters
    ----------
    units:
        The merged units, in registration order.  That order is the
        tie-breaker for every ordering this graph produces.
    """

    def __init__(self, units: Iterable[Unit]) -> None:
        self._units: dict[UnitKey, Unit] = {}
        for unit in units:
            self._units.setdefault(unit.key, unit)
        self._index: dict[UnitKey, int] = {key: i for i, key in enumerate(self._units)}
        self._forward: dict[UnitKey, list[UnitKey]] = {}
        self._reverse: dict[UnitKey, list[UnitKey]] = {}
        self._missing: dict[UnitKey, frozenset[UnitKey]] = {}
        self.rebuild()

    def rebuild(self) -> None:
        """Recompute forward edges and the reverse-dependency map."""
        self._forward = {key: [] for key in self._units}
        self._reverse = {key: [] for key in self._units}
        self._missing = {}
        for key, unit in self._units.items():
            known = sorted(
                (dep for dep in unit.dependencies if dep in self._units),
                key=self._index.__getitem__,
            )
            self._forward[key] = known
            for dep in known:
                self._reverse[dep].append(key)
            unknown = unit.dependencies.difference(self._units)
            if unknown:
                self._missing[key] = frozenset(unknown)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def nodes(self) -> list[Unit]:
        return list(self._units.values())

    def unit(self, key: UnitKey) -> Unit:
        return self._units[key]

    def nodes_referenced_from(self, key: UnitKey) -> list[Unit]:
        """Return the units *key* depends on."""
        return [self._units[dep] for dep in self._forward.get(key, ())]

    def nodes_referencing(self, key: UnitKey) -> list[Unit]:
        """Return the units that depend on *key*."""
        return [self._units[dep] for dep in self._reverse.get(key, ())]

    def missing_dependencies(self) -> dict[UnitKey, frozenset[UnitKey]]:
        """Return, per unit, the dependencies no unit in the graph provides."""
        return dict(self._missing)

    def __contains__(self, key: object) -> bool:
        return key in self._units

    def __len__(self) -> int:
        return len(self._units)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def best_effort_order(self) -> tuple[list[Unit], list[UnitKey]]:
        """Order units by repeated passes, breaking cycles deterministically.

        Each pass emits, in registration order, every remaining unit whose
        dependencies have all been emitted.  A pass that emits nothing
        forces out the earliest-registered unit of a cycle that depends
        on nothing else still remaining.

        Passes are driven by per-unit counts of unemitted dependencies, so
        only units that became ready are visited.  A unit readied by an
        earlier-registered unit joins the current pass; one readied by a
        later-registered or forced unit waits for the next pass.

        Returns
        -------
        tuple[list[Unit], list[UnitKey]]
            The order, and the keys that had to be forced.
        """
        keys = list(self._units)
        waiting = {key: len(deps) for key, deps in self._forward.items()}
        emitted: set[UnitKey] = set()
        order: list[Unit] = []
        forced: list[UnitKey] = []
        current: list[int] = []
        next_pass = [self._index[key] for key in keys if waiting[key] == 0]

        def emit(key: UnitKey, position: int) -> None:
            emitted.add(key)
            order.append(self._units[key])
            for dependent in self._reverse[key]:
                waiting[dependent] -= 1
                if waiting[dependent] == 0 and dependent not in emitted:
                    index = self._index[dependent]
                    if index > position:
                        heapq.heappush(current, index)
                    else:
                        next_pass.append(index)

        while len(order) < len(keys):
            if not next_pass:
                key = self._cycle_breaker([k for k in keys if k not in emitted])
                forced.append(key)
                logger.warning(
                    "Dependency cycle: processing %s before its dependencies %s",
                    key,
                    ", ".join(
                        str(d) for d in self._forward[key] if d != key and d not in emitted
                    ),
                )
                emit(key, len(keys))
                continue
            current = next_pass
            next_pass = []
            heapq.heapify(current)
            while current:
                position = heapq.heappop(current)
                emit(keys[position], position)

        return order, forced

    def _cycle_breaker(self, blocked: list[UnitKey]) -> UnitKey:
        # Force a member of a cycle that waits on nothing outside itself.
        remaining = set(blocked)
        subgraph = {
            key: [dep for dep in self._forward[key] if dep in remaining] for key in blocked
        }
        components = sorted(
            _strongly_connected_components(subgraph),
            key=lambda comp: min(self._index[k] for k in comp),
        )
        for comp in components:
            if all(dep in comp for key in comp for dep in subgraph[key]):
                return min(comp, key=self._index.__getitem__)
        return blocked[0]

    def topological_order(self) -> list[Unit]:
        """Return a strict dependency-first order.

        Raises
        ------
        CyclicDependencyError
            If the graph contains a cycle.
        """
        in_degree = {key: len(deps) for key, deps in self._forward.items()}
        ready = [self._index[key] for key, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        keys = list(self._units)
        order: list[Unit] = []

        while ready:
            key = keys[heapq.heappop(ready)]
            order.append(self._units[key])
            for dependent in self._reverse[key]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, self._index[dependent])

        if len(order) != len(self._units):
            raise CyclicDependencyError(self.cycles())
        return order

    def cycles(self) -> list[tuple[UnitKey, ...]]:
        """Return every dependency cycle as a sorted tuple of keys.

        Cycles are strongly connected components with more than one
        member, or a single unit that depends on itself.
        """
        components = _strongly_connected_components(self._forward)
        found = [
            tuple(sorted(comp, key=self._index.__getitem__))
            for comp in components
            if len(comp) > 1 or any(key in self._forward[key] for key in comp)
        ]
        found.sort(key=lambda comp: self._index[comp[0]])
        return found

    def schedule(self, strict: bool = False) -> ScheduleResult:
        """Order the graph, never failing on cycles.

        Parameters
        ----------
        strict:
            Try a strict topological order first.  On a cycle, log a
            warning and fall back to :meth:`best_effort_order`.
        """
        if strict:
            try:
                return ScheduleResult(order=self.topological_order(), strict=True)
            except CyclicDependencyError as exc:
                logger.warning("%s; falling back to best-effort order", exc)
                order, forced = self.best_effort_order()
                return ScheduleResult(order=order, cycles=exc.cycles, forced=forced)

        order, forced = self.best_effort_order()
        cycles = self.cycles() if forced else []
        return ScheduleResult(order=order, cycles=cycles, forced=forced, strict=not forced)


def _strongly_connected_components(
    graph: dict[UnitKey, list[UnitKey]],
) -> list[set[UnitKey]]:
    """Tarjan's algorithm with an explicit stack of ``(node, neighbours)`` frames."""
    counter = 0
    indices: dict[UnitKey, int] = {}
    lowlinks: dict[UnitKey, int] = {}
    stack: list[UnitKey] = []
    on_stack: set[UnitKey] = set()
    components: list[set[UnitKey]] = []

    def enter(node: UnitKey) -> tuple[UnitKey, Iterator[UnitKey]]:
        nonlocal counter
        indices[node] = counter
        lowlinks[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        return node, iter(graph.get(node, ()))

    for root in graph:
        if root in indices:
            continue
        frames = [enter(root)]
        while frames:
            node, neighbors = frames[-1]
            for neighbor in neighbors:
                if neighbor not in indices:
                    frames.append(enter(neighbor))
                    break
                if neighbor in on_stack:
                    lowlinks[node] = min(lowlinks[node], indices[neighbor])
            else:
                frames.pop()
                if frames:
                    parent = frames[-1][0]
                    lowlinks[parent] = min(lowlinks[parent], lowlinks[node])
                if lowlinks[node] == indices[node]:
                    component: set[UnitKey] = set()
                    while True:
                        popped = stack.pop()
                        on_stack.discard(popped)
                        component.add(popped)
                        if popped == node:
                            break
                    components.append(component)

    return components
