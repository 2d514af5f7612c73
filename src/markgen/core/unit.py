"""The node type of the dependency graph."""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from markgen.core.identity import UnitKey


class Unit:
    """A group of processing items that share one key.

    Two units are equal when their keys are equal; items and dependencies
    do not take part in equality.

    Parameters
    ----------
    key:
        The (possibly masqueraded) identity of the unit.
    items:
        Work items accumulated under this key, typically processing
        delegates.  ``None`` entries are dropped.
    dependencies:
        Keys of the units that must be processed first.  Fixed for the
        lifetime of this object.
    hard:
        Reserved flag separating required edges from advisory ones.
    """

    __slots__ = ("_key", "_items", "_dependencies", "_hard")

    def __init__(
        self,
        key: UnitKey,
        items: Iterable[Any] = (),
        dependencies: Iterable[UnitKey] = (),
        hard: bool = False,
    ) -> None:
        self._key = key
        self._items: list[Any] = [item for item in items if item is not None]
        self._dependencies: frozenset[UnitKey] = frozenset(dependencies)
        self._hard = hard

    @property
    def key(self) -> UnitKey:
        return self._key

    @property
    def items(self) -> list[Any]:
        return self._items

    @property
    def dependencies(self) -> frozenset[UnitKey]:
        return self._dependencies

    @property
    def hard(self) -> bool:
        return self._hard

    def add_item(self, item: Any) -> None:
        """Append *item* to this unit."""
        self._items.append(item)

    def merged_with(self, other: "Unit", union: bool = True) -> "Unit":
        """Return a new unit holding the items of both units.

        Items keep their order: this unit's first, then *other*'s.  With
        ``union`` the dependency sets are combined; otherwise this unit's
        dependencies are kept.

        Raises
        ------
        ValueError
            If the two units have different keys.
        """
        if other.key != self._key:
            raise ValueError(f"Cannot merge unit {other.key} into {self._key}")
        dependencies = self._dependencies | other.dependencies if union else self._dependencies
        return Unit(
            self._key,
            [*self._items, *other.items],
            dependencies,
            hard=self._hard or other.hard,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Unit):
            return NotImplemented
        return self._key == other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        deps = ", ".join(str(d) for d in sorted(self._dependencies))
        return f"Unit({self._key} => [{deps}], items={len(self._items)})"
