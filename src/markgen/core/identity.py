"""Identity of dependency-graph nodes.

A :class:`UnitKey` names the declaration a unit stands for: a fully
qualified name plus the :class:`ElementKind` it was declared at.  Keys are
immutable value objects, so two delegates discovered on the same owning
type compare equal structurally and collapse into a single unit.
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum


class ElementKind(Enum):
    """Granularity at which a marker may appear."""

    TYPE = "type"
    CONSTRUCTOR = "constructor"
    FIELD = "field"
    METHOD = "method"

    @classmethod
    def parse(cls, value: object) -> "ElementKind":
        """Classify *value* as an element kind.

        Accepts an ``ElementKind`` or its name / value in any case.

        Raises
        ------
        ValueError
            If *value* does not name a known kind.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            for kind in cls:
                if text in (kind.value, kind.name.lower()):
                    return kind
        raise ValueError(f"{value!r} is not a valid element kind")


ALL_KINDS: tuple[ElementKind, ...] = (
    ElementKind.TYPE,
    ElementKind.CONSTRUCTOR,
    ElementKind.FIELD,
    ElementKind.METHOD,
)


def qualified_name(obj: object) -> str:
    """Return ``module.QualName`` for a class or function."""
    module = getattr(obj, "__module__", None)
    qualname = getattr(obj, "__qualname__", None) or getattr(obj, "__name__", None)
    if qualname is None:
        raise TypeError(f"Cannot derive a qualified name from {obj!r}")
    if module in (None, "builtins"):
        return qualname
    return f"{module}.{qualname}"


@dataclass(frozen=True, slots=True)
class UnitKey:
    """Structural identity of a unit.

    Parameters
    ----------
    name:
        Fully qualified name, e.g. ``"app.services.Mailer"``.
    kind:
        Granularity of the declaration the key names.  Units are keyed by
        their owning type, so this is ``TYPE`` unless a handler masquerades
        as something else.
    """

    name: str
    kind: ElementKind = ElementKind.TYPE

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        if self.kind is ElementKind.TYPE:
            return f"UnitKey({self.name!r})"
        return f"UnitKey({self.name!r}, {self.kind.name})"

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, UnitKey):
            return NotImplemented
        return (self.name, self.kind.value) < (other.name, other.kind.value)

    @property
    def simple_name(self) -> str:
        """Return the last dotted component of the name."""
        return self.name.rsplit(".", 1)[-1]

    @classmethod
    def of(cls, obj: object) -> "UnitKey":
        """Build a key from a class, function, dotted string or key.

        Raises
        ------
        TypeError
            If *obj* has no usable qualified name.
        """
        if isinstance(obj, UnitKey):
            return obj
        if isinstance(obj, str):
            if not obj:
                raise TypeError("A unit key name must not be empty")
            return cls(obj)
        if inspect.isclass(obj):
            return cls(qualified_name(obj))
        if callable(obj):
            return cls(qualified_name(obj), ElementKind.METHOD)
        raise TypeError(f"Cannot derive a unit key from {obj!r}")
