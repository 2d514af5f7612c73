"""Marker handlers: the code-generation collaborators the engine drives.

A handler is registered against one marker type.  For every declaration
carrying that marker the engine first asks the handler which units must
be processed before it (:meth:`MarkerHandler.check_dependencies`), then,
in dependency order, asks it to do its work (:meth:`MarkerHandler.handle`).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from markgen.core.identity import UnitKey

if TYPE_CHECKING:
    from markgen.core.context import ProcessingContext
    from markgen.core.declarations import DeclarationView
    from markgen.core.markers import Marker

DependencySpec = Iterable[Any]


class DependencyControl:
    """Lets a handler re-key its unit while dependencies are checked.

    By default a delegate's unit is keyed by the declaration's owning
    type.  Calling :meth:`masquerade_as` makes the unit stand for another
    declaration in the dependency graph, so that work for several types
    can be scheduled as one node.
    """

    def __init__(self, key: UnitKey) -> None:
        self._natural_key = key
        self._key = key

    def masquerade_as(self, target: Any) -> None:
        """Key this unit as *target* (a class, dotted name or ``UnitKey``)."""
        self._key = UnitKey.of(target)

    @property
    def key(self) -> UnitKey:
        return self._key

    @property
    def is_masquerading(self) -> bool:
        return self._key != self._natural_key

    def __repr__(self) -> str:
        return f"DependencyControl(key={self._key!r})"


class MarkerHandler(ABC):
    """Abstract base class for marker handlers.

    Implementations must be deterministic for a fixed input: the engine
    may call :meth:`handle` several times for one declaration while it
    retries towards a fixed point.
    """

    @abstractmethod
    def check_dependencies(
        self,
        control: DependencyControl,
        view: "DeclarationView",
        marker: "Marker",
        context: "ProcessingContext",
    ) -> DependencySpec:
        """Return the units that must be processed before this declaration.

        Parameters
        ----------
        control:
            Call ``control.masquerade_as(...)`` to re-key this unit.
        view:
            Dependency-check view; ``view.injector`` is ``None``.
        marker:
            The marker instance on the declaration.
        context:
            The run's processing context.

        Returns
        -------
        Iterable
            Unit keys, classes or dotted names.

        Raises
        ------
        markgen.core.errors.DependencyCheckError
            If the dependencies cannot be determined.  This aborts the run.
        """

    @abstractmethod
    def handle(
        self,
        view: "DeclarationView",
        marker: "Marker",
        context: "ProcessingContext",
    ) -> bool:
        """Process the declaration.

        Returns
        -------
        bool
            ``True`` on success.  ``False`` leaves the declaration pending
            for a later pass.

        Raises
        ------
        markgen.core.errors.InjectionFailure
            To report a recoverable failure with a reason.  The delegate
            is retried on the next pass.
        """


class FunctionHandler(MarkerHandler):
    """Adapts two plain callables to :class:`MarkerHandler`.

    Parameters
    ----------
    handle:
        ``(view, marker, context) -> bool``.
    check_dependencies:
        ``(control, view, marker, context) -> iterable``.  When omitted
        the declaration has no dependencies.
    """

    def __init__(
        self,
        handle: Callable[..., bool],
        check_dependencies: Callable[..., DependencySpec] | None = None,
    ) -> None:
        self._handle = handle
        self._check_dependencies = check_dependencies

    def check_dependencies(
        self,
        control: DependencyControl,
        view: "DeclarationView",
        marker: "Marker",
        context: "ProcessingContext",
    ) -> DependencySpec:
        if self._check_dependencies is None:
            return ()
        return self._check_dependencies(control, view, marker, context)

    def handle(
        self,
        view: "DeclarationView",
        marker: "Marker",
        context: "ProcessingContext",
    ) -> bool:
        return bool(self._handle(view, marker, context))

    def __repr__(self) -> str:
        name = getattr(self._handle, "__qualname__", repr(self._handle))
        return f"FunctionHandler({name})"


def normalize_dependencies(dependencies: DependencySpec | None) -> frozenset[UnitKey]:
    """Convert a handler's dependency result to a set of unit keys."""
    if dependencies is None:
        return frozenset()
    if isinstance(dependencies, (str, UnitKey)) or isinstance(dependencies, type):
        return frozenset({UnitKey.of(dependencies)})
    return frozenset(UnitKey.of(dep) for dep in dependencies)
