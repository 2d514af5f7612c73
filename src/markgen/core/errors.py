"""Exception types raised and recorded by the markgen engine.

Errors fall into three groups:

* **Recoverable**: :class:`InjectionFailure`.  A handler signals that it
  cannot complete *yet*; the delegate is retried on the next pass.
* **Hard**: :class:`DependencyCheckError`, :class:`RuleCycleError`,
  :class:`CyclicDependencyError`.  These abort the operation that raised
  them.
* **Structural**: :class:`StructuralError` and subclasses.  Fatal to a
  single declaration; the engine records them and keeps going.

Permanent failures left after a run are aggregated into a
:class:`ProcessingIncompleteError` by
:meth:`markgen.core.processor.ProcessingReport.raise_for_failures`.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from markgen.core.identity import UnitKey


class MarkgenError(Exception):
    """Base class for every error raised by markgen."""


class InjectionFailure(MarkgenError):
    """A handler could not complete processing of a declaration yet.

    Raised from :meth:`MarkerHandler.handle`.  The engine catches it per
    delegate, records it on the owning entry and retries the delegate in
    a later pass.

    Parameters
    ----------
    message:
        Human-readable reason.
    key:
        The unit key of the declaration that failed, when known.  The
        engine fills it in if the handler leaves it empty.
    """

    def __init__(self, message: str, key: "UnitKey | None" = None) -> None:
        self.message = message
        self.key = key
        super().__init__(message)

    def __str__(self) -> str:
        if self.key is not None:
            return f"{self.key}: {self.message}"
        return self.message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InjectionFailure):
            return NotImplemented
        return (self.key, self.message) == (other.key, other.message)

    def __hash__(self) -> int:
        return hash((self.key, self.message))


class DependencyCheckError(MarkgenError):
    """A handler could not determine the dependencies of a declaration."""

    def __init__(self, message: str, key: "UnitKey | None" = None) -> None:
        self.message = message
        self.key = key
        super().__init__(f"{key}: {message}" if key is not None else message)


class StructuralError(MarkgenError):
    """A declaration or marker has a shape the engine cannot process."""

    def __init__(self, message: str, subject: str = "") -> None:
        self.message = message
        self.subject = subject
        super().__init__(f"{subject}: {message}" if subject else message)


class UnknownTargetError(StructuralError):
    """A marker declares targets that are not valid element kinds."""


class MalformedDeclarationError(StructuralError):
    """A declaration is missing its owner or member name."""


class CyclicDependencyError(MarkgenError):
    """Strict ordering found one or more dependency cycles.

    Parameters
    ----------
    cycles:
        Each cycle as a sorted tuple of unit keys.
    """

    def __init__(self, cycles: Iterable[Iterable["UnitKey"]]) -> None:
        self.cycles: list[tuple["UnitKey", ...]] = [tuple(c) for c in cycles]
        rendered = "; ".join(
            " <-> ".join(str(key) for key in cycle) for cycle in self.cycles
        )
        super().__init__(f"Circular unit dependency detected: {rendered}")


class RuleCycleError(MarkgenError):
    """Relative ordering rules between markers form a cycle."""

    def __init__(self, markers: Iterable[str]) -> None:
        self.markers: tuple[str, ...] = tuple(markers)
        super().__init__(
            "Ordering rules form a cycle between markers: "
            + ", ".join(self.markers)
        )


class HandlerNotFoundError(KeyError):
    """Raised when no handler is registered for a marker type."""

    def __init__(self, marker_name: str) -> None:
        self.marker_name = marker_name
        super().__init__(
            f"No handler is registered for marker {marker_name!r}. "
            "Register one with HandlerRegistry.register() or install a "
            "package that publishes it as an entry-point."
        )


class HandlerAlreadyRegisteredError(ValueError):
    """Raised when a marker type already has a handler."""

    def __init__(self, marker_name: str) -> None:
        self.marker_name = marker_name
        super().__init__(
            f"Marker {marker_name!r} already has a registered handler. "
            "Deregister the existing handler first."
        )


class ProcessingIncompleteError(MarkgenError):
    """Aggregates every permanent failure left after a processing run.

    Parameters
    ----------
    failures:
        Marker name mapped to the failures still recorded for it.
    pending:
        Marker name mapped to the unit keys still unprocessed.
    """

    def __init__(
        self,
        failures: Mapping[str, tuple[InjectionFailure, ...]],
        pending: Mapping[str, tuple["UnitKey", ...]],
    ) -> None:
        self.failures = dict(failures)
        self.pending = dict(pending)
        super().__init__(str(self))

    @property
    def count(self) -> int:
        """Return the number of declarations that never succeeded."""
        return sum(len(keys) for keys in self.pending.values())

    def __str__(self) -> str:
        lines = [f"Processing incomplete ({self.count} unprocessed declaration(s)):"]
        for marker, keys in self.pending.items():
            lines.append(f"  {marker}: {', '.join(str(k) for k in keys)}")
            for failure in self.failures.get(marker, ()):
                lines.append(f"    {failure}")
        return "\n".join(lines)
