"""Processing context and the type registry collaborator.

The :class:`ProcessingContext` is handed to every handler call.  It
carries the scan scope, the test-mode flag and the
:class:`TypeRegistry` that tracks which owning types the engine has seen.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from markgen.core.identity import UnitKey

logger = logging.getLogger(__name__)

TEST_MODE_ENV = "MARKGEN_TEST_MODE"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def is_test_mode() -> bool:
    """Return True when ``MARKGEN_TEST_MODE`` is set to a truthy value."""
    return os.environ.get(TEST_MODE_ENV, "").strip().lower() in _TRUTHY


@dataclass
class Injector:
    """Per-type handle handlers use to record what they generated.

    Parameters
    ----------
    type:
        The owning type this injector belongs to.
    key:
        Unit key of ``type``.
    """

    type: Any
    key: UnitKey
    provided: bool = False
    attributes: dict[str, Any] = field(default_factory=dict)

    def mark_provided(self) -> None:
        """Record that code for this type has been generated."""
        self.provided = True


@runtime_checkable
class TypeRegistry(Protocol):
    """Tracks the owning types seen during a run."""

    def add_type(self, type_: Any) -> None:
        """Record *type_* as known."""

    def get_injector(self, type_: Any) -> Injector:
        """Return the injector for *type_*, creating it if needed."""

    def known_types(self) -> list[Any]:
        """Return every type recorded so far, in first-seen order."""


class InjectionContext:
    """Default :class:`TypeRegistry`: one lazily created injector per type."""

    def __init__(self) -> None:
        self._types: dict[UnitKey, Any] = {}
        self._injectors: dict[UnitKey, Injector] = {}

    def add_type(self, type_: Any) -> None:
        key = UnitKey.of(type_)
        if key not in self._types:
            self._types[key] = type_
            logger.debug("Type %s is now known", key)

    def get_injector(self, type_: Any) -> Injector:
        key = UnitKey.of(type_)
        if key not in self._types:
            self.add_type(type_)
        injector = self._injectors.get(key)
        if injector is None:
            injector = Injector(type=type_, key=key)
            self._injectors[key] = injector
        return injector

    def known_types(self) -> list[Any]:
        return list(self._types.values())

    def is_known(self, type_: Any) -> bool:
        """Return True if *type_* has been added."""
        return UnitKey.of(type_) in self._types

    def is_provided(self, type_: Any) -> bool:
        """Return True if a handler marked *type_*'s injector as provided."""
        injector = self._injectors.get(UnitKey.of(type_))
        return injector is not None and injector.provided

    def __len__(self) -> int:
        return len(self._types)


@dataclass
class ProcessingContext:
    """State shared with handlers for one processing run.

    Parameters
    ----------
    packages:
        Package scopes the scanner should search.
    test_mode:
        Whether ``TestOnly`` declarations are included.  Defaults to the
        ``MARKGEN_TEST_MODE`` environment flag.
    type_registry:
        Collaborator recording seen types.  A fresh
        :class:`InjectionContext` is used when omitted.
    attributes:
        Free-form values handlers may share with each other.
    generated:
        Output produced by handlers, keyed by whatever the handler chooses
        (typically a file name or a unit key).
    """

    packages: tuple[str, ...] = ()
    test_mode: bool = field(default_factory=is_test_mode)
    type_registry: TypeRegistry = field(default_factory=InjectionContext)
    attributes: dict[str, Any] = field(default_factory=dict)
    generated: dict[Any, Any] = field(default_factory=dict)

    @classmethod
    def for_packages(
        cls,
        packages: Iterable[str],
        test_mode: bool | None = None,
        type_registry: TypeRegistry | None = None,
    ) -> "ProcessingContext":
        """Build a context, falling back to the environment for ``test_mode``."""
        return cls(
            packages=tuple(packages),
            test_mode=is_test_mode() if test_mode is None else test_mode,
            type_registry=type_registry if type_registry is not None else InjectionContext(),
        )
