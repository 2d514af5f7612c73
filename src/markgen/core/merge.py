"""Merge table that collapses units sharing a key.

Several markers on one type, or several types masquerading as the same
key, each produce their own :class:`~markgen.core.unit.Unit`.  The
:class:`UnitTable` folds them into one node per key before the graph is
built.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from enum import Enum

from markgen.core.identity import UnitKey
from markgen.core.unit import Unit

logger = logging.getLogger(__name__)


class MergePolicy(Enum):
    """How dependency sets combine when two units share a key.

    UNION
        The merged unit depends on everything either unit depended on.
    FIRST_WINS
        The first unit registered for a key keeps its dependency set;
        later units only contribute items.
    """

    UNION = "union"
    FIRST_WINS = "first_wins"


class UnitTable:
    """Insertion-ordered mapping of key to exactly one unit.

    Parameters
    ----------
    policy:
        Dependency merge policy.  Defaults to :attr:`MergePolicy.UNION`.
    """

    def __init__(self, policy: MergePolicy = MergePolicy.UNION) -> None:
        self._policy = policy
        self._units: dict[UnitKey, Unit] = {}

    @property
    def policy(self) -> MergePolicy:
        return self._policy

    def add(self, unit: Unit) -> Unit:
        """Insert *unit* or merge it into the unit already stored for its key.

        Returns
        -------
        Unit
            The unit now stored for the key.
        """
        existing = self._units.get(unit.key)
        if existing is None:
            self._units[unit.key] = unit
            return unit

        if self._policy is MergePolicy.FIRST_WINS:
            for item in unit.items:
                existing.add_item(item)
            dropped = unit.dependencies - existing.dependencies
            if dropped:
                logger.debug(
                    "Unit %s: ignoring dependencies %s of a later registration",
                    unit.key,
                    ", ".join(str(d) for d in sorted(dropped)),
                )
            return existing

        merged = existing.merged_with(unit, union=True)
        self._units[unit.key] = merged
        logger.debug("Merged %d item(s) into unit %s", len(unit.items), unit.key)
        return merged

    def get(self, key: UnitKey) -> Unit | None:
        return self._units.get(key)

    def units(self) -> list[Unit]:
        """Return all units in first-insertion order."""
        return list(self._units.values())

    def keys(self) -> list[UnitKey]:
        return list(self._units)

    def clear(self) -> None:
        self._units.clear()

    def __contains__(self, key: object) -> bool:
        if isinstance(key, Unit):
            key = key.key
        return key in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(list(self._units.values()))

    def __len__(self) -> int:
        return len(self._units)

    def __repr__(self) -> str:
        return f"UnitTable(policy={self._policy.value}, units={len(self._units)})"
