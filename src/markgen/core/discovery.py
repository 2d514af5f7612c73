"""Discovery: turn scanned declarations into delegates and units."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from markgen.core.declarations import Declaration
from markgen.core.delegate import ProcessingDelegate
from markgen.core.errors import MalformedDeclarationError, StructuralError, UnknownTargetError
from markgen.core.handler import DependencyControl
from markgen.core.markers import resolve_targets
from markgen.core.unit import Unit

if TYPE_CHECKING:
    from markgen.core.context import ProcessingContext
    from markgen.core.entry import ProcessingEntry
    from markgen.scanning import Scanner

logger = logging.getLogger(__name__)


class DelegateBuilder:
    """Builds one delegate and one unit per marked declaration.

    Structural problems (unclassifiable marker targets, malformed
    declarations) are collected in :attr:`structural_errors` and never
    abort discovery.

    Parameters
    ----------
    scanner:
        Source of declarations.
    context:
        The run's processing context.  Supplies the package scope, the
        test-mode flag and the type registry.
    """

    def __init__(self, scanner: "Scanner", context: "ProcessingContext") -> None:
        self._scanner = scanner
        self._context = context
        self.structural_errors: list[StructuralError] = []

    def discover(self, entry: "ProcessingEntry") -> list[Unit]:
        """Discover every declaration for *entry*'s marker and build units."""
        from markgen.scanning import declarations_for

        marker_type = entry.marker_type
        kinds, unknown = resolve_targets(marker_type)
        if unknown:
            self._record(
                UnknownTargetError(
                    f"unrecognised targets {', '.join(unknown)}; applying to all element kinds",
                    subject=marker_type.marker_name(),
                )
            )

        units: list[Unit] = []
        for kind in kinds:
            try:
                declarations = declarations_for(
                    self._scanner, marker_type, kind, self._context.packages
                )
            except StructuralError as exc:
                self._record(exc)
                continue
            for declaration in declarations:
                unit = self.build(entry, declaration)
                if unit is not None:
                    units.append(unit)

        logger.debug("@%s: discovered %d declaration(s)", entry.name, len(units))
        return units

    def build(self, entry: "ProcessingEntry", declaration: Declaration) -> Unit | None:
        """Build the unit for one declaration, or ``None`` if it is skipped.

        Raises
        ------
        markgen.core.errors.DependencyCheckError
            If the handler cannot determine the declaration's dependencies.
        """
        marker = declaration.marker(entry.marker_type)
        if marker is None:
            self._record(
                MalformedDeclarationError(
                    f"does not carry @{entry.name}", subject=declaration.qualified_name
                )
            )
            return None

        if declaration.is_test_only and not self._context.test_mode:
            logger.debug("Skipping test-only %s", declaration)
            return None

        control = DependencyControl(declaration.owner_key)
        self._context.type_registry.add_type(declaration.owner)

        delegate = ProcessingDelegate(entry, declaration, marker, control, self._context)
        entry.add_processing_delegate(delegate)
        dependencies = delegate.required_dependencies()
        if control.is_masquerading:
            logger.debug("%s masquerades as %s", delegate, control.key)
        return Unit(control.key, [delegate], dependencies)

    def _record(self, error: StructuralError) -> None:
        logger.warning("Structural error: %s", error)
        self.structural_errors.append(error)
