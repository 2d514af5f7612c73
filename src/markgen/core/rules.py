"""Relative ordering rules between marker handlers.

Rules decide the order in which each marker type's declarations are
*discovered and registered*; the order in which units are finally
processed is decided by the dependency graph.

A rule is attached to the marker it constrains::

    registry.register(Produces, ProducesHandler(), rules=[after(Service)])

reads "discover ``@Produces`` after ``@Service``".
"""
from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from markgen.core.errors import RuleCycleError
from markgen.core.markers import Marker

logger = logging.getLogger(__name__)


class RelativeOrder(Enum):
    """Direction of a rule relative to the marker it names."""

    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class RuleDef:
    """Constrain the owning marker to run before or after *marker*."""

    marker: type[Marker]
    order: RelativeOrder

    def __str__(self) -> str:
        return f"{self.order.value} @{self.marker.__name__}"


def before(marker: type[Marker]) -> RuleDef:
    """Return a rule placing the owning marker before *marker*."""
    return RuleDef(marker, RelativeOrder.BEFORE)


def after(marker: type[Marker]) -> RuleDef:
    """Return a rule placing the owning marker after *marker*."""
    return RuleDef(marker, RelativeOrder.AFTER)


class HandlerOrdering:
    """Explicit partial order over registered marker types.

    Built once from the registration order and each marker's rules, and
    validated on construction.

    Parameters
    ----------
    marker_types:
        Marker types in registration order, which is the base order used
        to break ties.
    rules:
        Rules keyed by the marker they constrain.

    Raises
    ------
    RuleCycleError
        If the rules cannot all be satisfied.
    """

    def __init__(
        self,
        marker_types: Iterable[type[Marker]],
        rules: Mapping[type[Marker], Iterable[RuleDef]] | None = None,
    ) -> None:
        self._markers: list[type[Marker]] = list(dict.fromkeys(marker_types))
        self._index = {marker: i for i, marker in enumerate(self._markers)}
        self._successors: dict[type[Marker], set[type[Marker]]] = {
            marker: set() for marker in self._markers
        }
        for owner, owner_rules in (rules or {}).items():
            if owner not in self._index:
                continue
            for rule in owner_rules:
                if rule.marker not in self._index:
                    logger.debug(
                        "Ignoring rule '%s' on @%s: marker is not registered",
                        rule,
                        owner.__name__,
                    )
                    continue
                if rule.marker is owner:
                    continue
                if rule.order is RelativeOrder.AFTER:
                    self._successors[rule.marker].add(owner)
                else:
                    self._successors[owner].add(rule.marker)
        self._order = self._sort()

    def _sort(self) -> list[type[Marker]]:
        in_degree = {marker: 0 for marker in self._markers}
        for successors in self._successors.values():
            for marker in successors:
                in_degree[marker] += 1

        ready = [self._index[m] for m, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[type[Marker]] = []
        while ready:
            marker = self._markers[heapq.heappop(ready)]
            order.append(marker)
            for successor in self._successors[marker]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    heapq.heappush(ready, self._index[successor])

        if len(order) != len(self._markers):
            stuck = [m.__name__ for m in self._markers if in_degree[m] > 0]
            raise RuleCycleError(stuck)
        return order

    def ordered(self) -> list[type[Marker]]:
        """Return marker types honouring every rule, ties in registration order."""
        return list(self._order)

    def must_precede(self, first: type[Marker], second: type[Marker]) -> bool:
        """Return True if a rule directly places *first* before *second*."""
        return second in self._successors.get(first, ())

    def __len__(self) -> int:
        return len(self._markers)
