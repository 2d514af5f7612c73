"""Declaration markers.

A marker is the Python stand-in for an annotation: an instance of a
:class:`Marker` subclass attached to a class, a function, or a class field.
Marker *types* are what handlers are registered against; marker
*instances* carry the arguments given at the declaration site.

Attaching markers
-----------------
::

    from typing import Annotated

    from markgen import ElementKind, Marker


    class Service(Marker):
        targets = (ElementKind.TYPE,)


    class Inject(Marker):
        targets = (ElementKind.FIELD, ElementKind.CONSTRUCTOR)


    @Service(name="mailer")
    class Mailer:
        transport: Annotated[Transport, Inject()]

Markers applied as decorators are stored on the target under
``__markers__`` and the target is returned unchanged.
"""
from __future__ import annotations

import logging
import typing
from collections.abc import Iterable
from typing import Any, ClassVar, TypeVar

from markgen.core.identity import ALL_KINDS, ElementKind, qualified_name

logger = logging.getLogger(__name__)

_MARKERS_ATTR = "__markers__"

F = TypeVar("F")


class Marker:
    """Base class for declaration markers.

    Subclasses may set ``targets`` to restrict where the marker may
    appear.  ``None`` means every :class:`ElementKind`.

    Keyword arguments passed to the constructor become attributes of the
    marker instance.
    """

    targets: ClassVar[Iterable[Any] | None] = None

    def __init__(self, **attributes: Any) -> None:
        self.attributes: dict[str, Any] = dict(attributes)

    def __getattr__(self, name: str) -> Any:
        attributes = self.__dict__.get("attributes", {})
        try:
            return attributes[name]
        except KeyError:
            raise AttributeError(
                f"{type(self).__name__!r} marker has no attribute {name!r}"
            ) from None

    def __call__(self, target: F) -> F:
        """Attach this marker to *target* and return it unchanged."""
        existing = markers_of(target)
        try:
            setattr(target, _MARKERS_ATTR, (*existing, self))
        except (AttributeError, TypeError):
            raise TypeError(f"Cannot attach {self!r} to {target!r}") from None
        return target

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Marker):
            return NotImplemented
        return type(self) is type(other) and self.attributes == other.attributes

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(self.attributes, key=str))))

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.attributes.items())
        return f"@{type(self).__name__}({args})"

    @classmethod
    def marker_name(cls) -> str:
        """Return the fully qualified name of this marker type."""
        return qualified_name(cls)


class TestOnly(Marker):
    """Excludes a type from processing unless the run is in test mode."""

    __test__ = False
    targets = (ElementKind.TYPE,)


def resolve_targets(
    marker_type: type[Marker],
) -> tuple[tuple[ElementKind, ...], list[str]]:
    """Classify the declared targets of *marker_type*.

    Returns
    -------
    tuple[tuple[ElementKind, ...], list[str]]
        The applicable kinds, and the raw target values that could not be
        classified.  When nothing is declared, or when any value cannot be
        classified, the applicable kinds are :data:`ALL_KINDS`.
    """
    declared = getattr(marker_type, "targets", None)
    if declared is None:
        return ALL_KINDS, []
    if isinstance(declared, (str, ElementKind)):
        declared = (declared,)
    kinds: list[ElementKind] = []
    unknown: list[str] = []
    try:
        values = list(declared)
    except TypeError:
        values = []
        unknown.append(repr(declared))
    for value in values:
        try:
            kind = ElementKind.parse(value)
        except ValueError:
            unknown.append(repr(value))
            continue
        if kind not in kinds:
            kinds.append(kind)
    if unknown or not kinds:
        logger.warning(
            "Marker %s declares unrecognised targets %s; applying to all element kinds",
            marker_type.__name__,
            ", ".join(unknown) or "(none)",
        )
        return ALL_KINDS, unknown or ["(empty)"]
    return tuple(kinds), []


def markers_of(obj: object) -> tuple[Marker, ...]:
    """Return the markers attached directly to *obj*.

    Class markers are read from the class's own ``__dict__`` so that
    subclasses do not inherit their parent's markers.
    """
    if isinstance(obj, type):
        found = obj.__dict__.get(_MARKERS_ATTR, ())
    else:
        found = getattr(obj, _MARKERS_ATTR, ())
    return tuple(m for m in found if isinstance(m, Marker))


def annotated_markers(annotation: object) -> tuple[Marker, ...]:
    """Return the markers carried as ``Annotated[...]`` metadata."""
    if typing.get_origin(annotation) is not typing.Annotated:
        return ()
    return tuple(m for m in getattr(annotation, "__metadata__", ()) if isinstance(m, Marker))


def is_marker_type(obj: object) -> bool:
    """Return True if *obj* is a :class:`Marker` subclass."""
    return isinstance(obj, type) and issubclass(obj, Marker)
