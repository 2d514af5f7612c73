"""Processing delegates: one unit of work per (declaration, marker) pair."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from markgen.core.declarations import Declaration, DeclarationView
from markgen.core.errors import DependencyCheckError
from markgen.core.handler import DependencyControl, normalize_dependencies
from markgen.core.identity import UnitKey

if TYPE_CHECKING:
    from markgen.core.context import ProcessingContext
    from markgen.core.entry import ProcessingEntry
    from markgen.core.markers import Marker

logger = logging.getLogger(__name__)


class ProcessingDelegate:
    """Knows a declaration's dependencies and how to process it.

    Delegates compare equal when their declarations share an owning
    type, so that several markers on one type land in one unit.

    Parameters
    ----------
    entry:
        The entry of the marker type being processed.
    declaration:
        The marked declaration.
    marker:
        The marker instance found on ``declaration``.
    control:
        Dependency control handed to the handler; its key is the key of
        the unit this delegate joins.
    context:
        The run's processing context.
    """

    def __init__(
        self,
        entry: "ProcessingEntry",
        declaration: Declaration,
        marker: "Marker",
        control: DependencyControl,
        context: "ProcessingContext",
    ) -> None:
        self.entry = entry
        self.declaration = declaration
        self.marker = marker
        self.control = control
        self.context = context
        self._dependencies: frozenset[UnitKey] | None = None

    @property
    def key(self) -> UnitKey:
        """The natural identity of this delegate: its owning type."""
        return self.declaration.owner_key

    @property
    def unit_key(self) -> UnitKey:
        """The key of the unit this delegate joins (after masquerading)."""
        return self.control.key

    def required_dependencies(self) -> frozenset[UnitKey]:
        """Ask the handler which units must be processed first.

        Computed once and cached.  The handler sees a view with no
        injector.

        Raises
        ------
        DependencyCheckError
            If the handler raises while checking dependencies.
        """
        if self._dependencies is None:
            view = DeclarationView(self.declaration, self.marker)
            try:
                result = self.entry.handler.check_dependencies(
                    self.control, view, self.marker, self.context
                )
                self._dependencies = normalize_dependencies(result)
            except DependencyCheckError as exc:
                if exc.key is None:
                    exc.key = self.key
                raise
            except Exception as exc:
                raise DependencyCheckError(
                    f"@{self.entry.name} handler failed to check dependencies: {exc}",
                    key=self.key,
                ) from exc
            logger.debug(
                "%s requires [%s]",
                self,
                ", ".join(str(d) for d in sorted(self._dependencies)),
            )
        return self._dependencies

    def process(self) -> bool:
        """Run the handler on a view bound to the owning type's injector.

        ``InjectionFailure`` raised by the handler propagates to the
        entry, which records it and retries later.
        """
        registry = self.context.type_registry
        registry.add_type(self.declaration.owner)
        injector = registry.get_injector(self.declaration.owner)
        view = DeclarationView(self.declaration, self.marker, injector)
        return bool(self.entry.handler.handle(view, self.marker, self.context))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProcessingDelegate):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return f"@{self.entry.name} {self.declaration.qualified_name}"

    def __repr__(self) -> str:
        return f"ProcessingDelegate({self})"
