"""Scanners: find marked declarations for the engine.

The engine only needs the :class:`Scanner` protocol.  Two implementations
are provided:

* :class:`StaticScanner` serves a fixed list of declarations.  It is what
  tests and callers with their own discovery use.
* :class:`ModuleScanner` imports packages and reads markers attached to
  classes, methods, constructors and ``Annotated`` fields.

Both are deterministic for a fixed input.
"""
from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil
import typing
from collections.abc import Callable, Iterable, Sequence
from types import ModuleType
from typing import Protocol, runtime_checkable

from markgen.core.declarations import Declaration
from markgen.core.identity import ElementKind
from markgen.core.markers import Marker, annotated_markers, markers_of

logger = logging.getLogger(__name__)


@runtime_checkable
class Scanner(Protocol):
    """Finds declarations carrying a marker within package scopes."""

    def types_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> Sequence[Declaration]: ...

    def constructors_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> Sequence[Declaration]: ...

    def methods_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> Sequence[Declaration]: ...

    def fields_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> Sequence[Declaration]: ...


def declarations_for(
    scanner: Scanner,
    marker_type: type[Marker],
    kind: ElementKind,
    packages: Sequence[str],
) -> Sequence[Declaration]:
    """Ask *scanner* for the declarations of one element kind."""
    lookup: dict[ElementKind, Callable[..., Sequence[Declaration]]] = {
        ElementKind.TYPE: scanner.types_marked_with,
        ElementKind.CONSTRUCTOR: scanner.constructors_marked_with,
        ElementKind.METHOD: scanner.methods_marked_with,
        ElementKind.FIELD: scanner.fields_marked_with,
    }
    return lookup[kind](marker_type, packages)


def in_scope(module_name: str, packages: Sequence[str]) -> bool:
    """Return True if *module_name* lies within one of *packages*.

    An empty scope matches everything.
    """
    if not packages:
        return True
    return any(
        module_name == package or module_name.startswith(package + ".")
        for package in packages
    )


class _FilteringScanner:
    """Shared filtering over a list of declarations."""

    def _declarations(self, packages: Sequence[str]) -> Sequence[Declaration]:
        raise NotImplementedError

    def _select(
        self,
        kind: ElementKind,
        marker_type: type[Marker],
        packages: Sequence[str],
    ) -> list[Declaration]:
        return [
            d
            for d in self._declarations(packages)
            if d.kind is kind and d.has_marker(marker_type) and in_scope(d.package, packages)
        ]

    def types_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> list[Declaration]:
        return self._select(ElementKind.TYPE, marker_type, packages)

    def constructors_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> list[Declaration]:
        return self._select(ElementKind.CONSTRUCTOR, marker_type, packages)

    def methods_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> list[Declaration]:
        return self._select(ElementKind.METHOD, marker_type, packages)

    def fields_marked_with(
        self, marker_type: type[Marker], packages: Sequence[str]
    ) -> list[Declaration]:
        return self._select(ElementKind.FIELD, marker_type, packages)


class StaticScanner(_FilteringScanner):
    """Serves a fixed, caller-supplied list of declarations.

    Parameters
    ----------
    declarations:
        Declarations in the order they should be reported.
    """

    def __init__(self, declarations: Iterable[Declaration] = ()) -> None:
        self._items: list[Declaration] = list(declarations)

    def add(self, declaration: Declaration) -> None:
        self._items.append(declaration)

    def _declarations(self, packages: Sequence[str]) -> Sequence[Declaration]:
        return self._items

    def __len__(self) -> int:
        return len(self._items)


class ModuleScanner(_FilteringScanner):
    """Imports packages and collects marked declarations from them.

    Parameters
    ----------
    modules:
        Extra modules (objects or dotted names) to scan in addition to
        the package scopes passed per call.
    recursive:
        Walk sub-packages of each scanned package.
    """

    def __init__(
        self,
        modules: Iterable[ModuleType | str] = (),
        recursive: bool = True,
    ) -> None:
        self._extra = list(modules)
        self._recursive = recursive
        self._cache: dict[tuple[str, ...], list[Declaration]] = {}

    def _declarations(self, packages: Sequence[str]) -> Sequence[Declaration]:
        scope = tuple(packages)
        if scope not in self._cache:
            self._cache[scope] = self._collect(scope)
        return self._cache[scope]

    def _collect(self, packages: tuple[str, ...]) -> list[Declaration]:
        modules: dict[str, ModuleType] = {}
        for target in [*self._extra, *packages]:
            for module in self._load(target):
                modules.setdefault(module.__name__, module)

        found: dict[tuple[str, str], Declaration] = {}
        for module_name in sorted(modules):
            module = modules[module_name]
            for obj in vars(module).values():
                if inspect.isclass(obj) and obj.__module__ == module.__name__:
                    for declaration in declarations_of(obj):
                        found.setdefault(
                            (declaration.qualified_name, declaration.kind.value),
                            declaration,
                        )
        return [found[k] for k in sorted(found)]

    def _load(self, target: ModuleType | str) -> list[ModuleType]:
        module = importlib.import_module(target) if isinstance(target, str) else target
        loaded = [module]
        path = getattr(module, "__path__", None)
        if not (self._recursive and path):
            return loaded
        for info in pkgutil.walk_packages(path, prefix=module.__name__ + "."):
            try:
                loaded.append(importlib.import_module(info.name))
            except Exception:
                logger.exception("Failed to import %r while scanning; skipping.", info.name)
        return loaded


def declarations_of(cls: type) -> list[Declaration]:
    """Return every marked declaration made directly on *cls*."""
    declarations: list[Declaration] = []

    type_markers = markers_of(cls)
    if type_markers:
        declarations.append(Declaration(ElementKind.TYPE, cls, "", type_markers, cls))

    for name, member in vars(cls).items():
        func = getattr(member, "__func__", member)
        if not inspect.isfunction(func):
            continue
        member_markers = markers_of(func) or markers_of(member)
        if not member_markers:
            continue
        kind = ElementKind.CONSTRUCTOR if name == "__init__" else ElementKind.METHOD
        declarations.append(Declaration(kind, cls, name, member_markers, func))

    for name, annotation in _own_annotations(cls).items():
        field_markers = annotated_markers(annotation)
        if field_markers:
            declarations.append(
                Declaration(ElementKind.FIELD, cls, name, field_markers, annotation)
            )

    return declarations


def _own_annotations(cls: type) -> dict[str, object]:
    own = inspect.get_annotations(cls)
    if not own:
        return {}
    try:
        hints = typing.get_type_hints(cls, include_extras=True)
    except Exception as exc:
        logger.warning(
            "Cannot resolve field annotations of %s (%s); field markers ignored",
            cls.__qualname__,
            exc,
        )
        return {}
    return {name: hints[name] for name in own if name in hints}
