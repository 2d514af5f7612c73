"""markgen — marker-driven dependency resolution and code-generation scheduling.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
::

    import markgen
    from markgen import ElementKind, Marker, MarkerHandler


    class Service(Marker):
        targets = (ElementKind.TYPE,)


    class ServiceHandler(MarkerHandler):
        def check_dependencies(self, control, view, marker, context):
            return marker.attributes.get("requires", ())

        def handle(self, view, marker, context):
            context.generated[view.key] = f"# factory for {view.key}"
            return True


    report = markgen.process(
        ["app.services"],
        handlers={Service: ServiceHandler()},
    )
    report.raise_for_failures()

    markgen.__version__
    '0.1.0'
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from markgen.core import (
    Declaration,
    DeclarationView,
    DependencyControl,
    ElementKind,
    FunctionHandler,
    HandlerRegistry,
    InjectionContext,
    InjectionFailure,
    Marker,
    MarkerHandler,
    MarkgenError,
    ProcessingContext,
    ProcessingIncompleteError,
    TestOnly,
    UnitKey,
    after,
    before,
)
from markgen.core.processor import ProcessingReport, ProcessorFactory

__version__: str = "0.1.0"

if TYPE_CHECKING:
    from markgen.config import ProcessorConfig
    from markgen.core.rules import RuleDef
    from markgen.scanning import Scanner


def process(
    packages: Iterable[str],
    handlers: Mapping[type[Marker], MarkerHandler],
    rules: Mapping[type[Marker], Iterable["RuleDef"]] | None = None,
    scanner: "Scanner | None" = None,
    test_mode: bool | None = None,
    config: "ProcessorConfig | None" = None,
) -> ProcessingReport:
    """Scan *packages* and run *handlers* over every marked declaration.

    Parameters
    ----------
    packages:
        Package scopes to scan.
    handlers:
        Marker type mapped to its handler, in registration order.
    rules:
        Optional relative ordering rules per marker type.
    scanner:
        Declaration source.  Defaults to a
        :class:`~markgen.scanning.ModuleScanner` over ``packages``.
    test_mode:
        Include ``TestOnly`` declarations.  ``None`` reads the
        ``MARKGEN_TEST_MODE`` environment flag.
    config:
        Base settings; ``packages`` and ``test_mode`` override it.

    Returns
    -------
    ProcessingReport
        What was processed, in which order, and what failed.

    Raises
    ------
    markgen.core.errors.RuleCycleError
        If the ordering rules contradict each other.
    markgen.core.errors.DependencyCheckError
        If a handler cannot determine a declaration's dependencies.
    """
    from markgen.config import ProcessorConfig
    from markgen.scanning import ModuleScanner

    scope = tuple(packages)
    base = config if config is not None else ProcessorConfig()
    settings = base.with_overrides(packages=scope, test_mode=test_mode)

    factory = ProcessorFactory(config=settings)
    for marker_type, handler in handlers.items():
        factory.register_handler(marker_type, handler, (rules or {}).get(marker_type))
    return factory.process(scanner if scanner is not None else ModuleScanner())


__all__ = [
    "__version__",
    "process",
    "Declaration",
    "DeclarationView",
    "DependencyControl",
    "ElementKind",
    "FunctionHandler",
    "HandlerRegistry",
    "InjectionContext",
    "InjectionFailure",
    "Marker",
    "MarkerHandler",
    "MarkgenError",
    "ProcessingContext",
    "ProcessingIncompleteError",
    "ProcessingReport",
    "ProcessorFactory",
    "TestOnly",
    "UnitKey",
    "after",
    "before",
]
