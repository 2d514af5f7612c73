#!/usr/bin/env python3
"""Example: Quickstart — markgen

Minimal working example: declare two markers, register a handler for
each, and let the engine generate code in dependency order.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install markgen
"""
from __future__ import annotations

from collections.abc import Iterable

import markgen
from markgen import (
    DeclarationView,
    DependencyControl,
    ElementKind,
    InjectionFailure,
    Marker,
    MarkerHandler,
    ProcessingContext,
    after,
)
from markgen.scanning import StaticScanner


class Service(Marker):
    targets = (ElementKind.TYPE,)


class Exposed(Marker):
    targets = (ElementKind.TYPE,)


class ServiceHandler(MarkerHandler):
    """Generates a factory per service; services name what they require."""

    def check_dependencies(
        self,
        control: DependencyControl,
        view: DeclarationView,
        marker: Marker,
        context: ProcessingContext,
    ) -> Iterable[str]:
        return marker.attributes.get("requires", ())

    def handle(self, view: DeclarationView, marker: Marker, context: ProcessingContext) -> bool:
        requires = ", ".join(marker.attributes.get("requires", ()))
        context.generated[str(view.key)] = f"def make_{view.key.simple_name}({requires}): ..."
        view.injector.mark_provided()
        return True


class ExposedHandler(MarkerHandler):
    """Generates a route for a service once its factory exists."""

    def check_dependencies(
        self,
        control: DependencyControl,
        view: DeclarationView,
        marker: Marker,
        context: ProcessingContext,
    ) -> Iterable[str]:
        return ()

    def handle(self, view: DeclarationView, marker: Marker, context: ProcessingContext) -> bool:
        if str(view.key) not in context.generated:
            raise InjectionFailure("factory not generated yet")
        context.generated[f"route:{view.key}"] = f"@route('/{view.key.simple_name.lower()}')"
        return True


def main() -> None:
    print(f"markgen version: {markgen.__version__}")

    scanner = StaticScanner(
        [
            markgen.Declaration(
                ElementKind.TYPE,
                "shop.Checkout",
                markers=(Service(requires=["shop.Cart", "shop.Payments"]), Exposed()),
            ),
            markgen.Declaration(ElementKind.TYPE, "shop.Cart", markers=(Service(),)),
            markgen.Declaration(
                ElementKind.TYPE, "shop.Payments", markers=(Service(requires=["shop.Cart"]),)
            ),
        ]
    )

    report = markgen.process(
        ["shop"],
        handlers={Exposed: ExposedHandler(), Service: ServiceHandler()},
        rules={Exposed: [after(Service)]},
        scanner=scanner,
        test_mode=False,
    )

    print("Processing order:")
    for position, key in enumerate(report.order, start=1):
        print(f"  {position}. {key}")
    print(f"Retry rounds: {report.rounds}, succeeded: {report.succeeded}")
    report.raise_for_failures()


if __name__ == "__main__":
    main()
