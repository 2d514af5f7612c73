"""Declarations discovered by a scanner, and the views handlers see.

A :class:`Declaration` is read-only input: a type, constructor, method or
field together with the markers found on it.  Handlers never receive a
declaration directly; they get a :class:`DeclarationView` bound to the
marker being processed and, once one exists, the owning type's injector.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from markgen.core.errors import MalformedDeclarationError
from markgen.core.identity import ElementKind, UnitKey, qualified_name
from markgen.core.markers import Marker, TestOnly, markers_of

if TYPE_CHECKING:
    from markgen.core.context import Injector

M = TypeVar("M", bound=Marker)


@dataclass(frozen=True)
class Declaration:
    """A marked element of the scanned code.

    Parameters
    ----------
    kind:
        The granularity of the element.
    owner:
        The class that declares the element.  For ``TYPE`` declarations
        this is the class itself.
    name:
        Member name for constructors, methods and fields; empty for types.
    markers:
        Every marker found on the element, in declaration order.
    obj:
        The underlying Python object (function, annotation), if any.
    """

    kind: ElementKind
    owner: Any
    name: str = ""
    markers: tuple[Marker, ...] = ()
    obj: Any = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.owner is None:
            raise MalformedDeclarationError(
                "declaration has no owning type", subject=self.name or "<anonymous>"
            )
        if self.kind is not ElementKind.TYPE and not self.name:
            raise MalformedDeclarationError(
                f"{self.kind.value} declaration has no member name",
                subject=self.owner_name,
            )

    @property
    def owner_name(self) -> str:
        """Return the fully qualified name of the owning type."""
        if isinstance(self.owner, str):
            return self.owner
        return qualified_name(self.owner)

    @property
    def owner_key(self) -> UnitKey:
        """Return the natural unit key of this declaration: its owning type."""
        return UnitKey(self.owner_name)

    @property
    def qualified_name(self) -> str:
        """Return ``Owner`` for types and ``Owner.member`` otherwise."""
        if self.kind is ElementKind.TYPE:
            return self.owner_name
        return f"{self.owner_name}.{self.name}"

    @property
    def package(self) -> str:
        """Return the dotted module path the owning type lives in."""
        if not isinstance(self.owner, str):
            return self.owner.__module__
        return self.owner_name.rpartition(".")[0]

    @property
    def is_test_only(self) -> bool:
        """Return True if the owning type carries :class:`TestOnly`."""
        if any(isinstance(m, TestOnly) for m in self.markers):
            return True
        return any(isinstance(m, TestOnly) for m in markers_of(self.owner))

    def marker(self, marker_type: type[M]) -> M | None:
        """Return the first marker of *marker_type*, or ``None``."""
        for candidate in self.markers:
            if isinstance(candidate, marker_type):
                return candidate
        return None

    def has_marker(self, marker_type: type[Marker]) -> bool:
        """Return True if a marker of *marker_type* is present."""
        return self.marker(marker_type) is not None

    def __str__(self) -> str:
        return f"{self.kind.value} {self.qualified_name}"


@dataclass(frozen=True)
class DeclarationView:
    """What a handler sees of a declaration.

    The engine builds a view twice per delegate: once without an injector
    while asking for dependencies, and once with the owning type's
    injector when processing for real.

    Parameters
    ----------
    declaration:
        The declaration being processed.
    marker:
        The marker instance whose handler is running.
    injector:
        The owning type's injector, or ``None`` for the dependency-check
        view.
    """

    declaration: Declaration
    marker: Marker
    injector: "Injector | None" = None

    @property
    def is_committed(self) -> bool:
        """Return True once the view is bound to an injector."""
        return self.injector is not None

    @property
    def kind(self) -> ElementKind:
        return self.declaration.kind

    @property
    def owner(self) -> Any:
        return self.declaration.owner

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def key(self) -> UnitKey:
        return self.declaration.owner_key

    def committed(self, injector: "Injector") -> "DeclarationView":
        """Return a copy of this view bound to *injector*."""
        return DeclarationView(self.declaration, self.marker, injector)
