"""End-to-end tests for markgen.core.processor — the ProcessorFactory pipeline."""
from __future__ import annotations

import importlib
import logging

import pytest

import markgen
from markgen.config import ProcessorConfig
from markgen.core.context import ProcessingContext
from markgen.core.declarations import Declaration
from markgen.core.entry import EntryState
from markgen.core.errors import (
    DependencyCheckError,
    InjectionFailure,
    ProcessingIncompleteError,
    RuleCycleError,
    UnknownTargetError,
)
from markgen.core.handler import FunctionHandler
from markgen.core.identity import ElementKind, UnitKey
from markgen.core.markers import Marker, TestOnly
from markgen.core.merge import MergePolicy
from markgen.core.processor import ProcessingReport, ProcessorFactory
from markgen.core.rules import after
from markgen.scanning import StaticScanner


class Service(Marker):
    targets = (ElementKind.TYPE,)


class Produces(Marker):
    targets = (ElementKind.TYPE,)


class Loose(Marker):
    targets = ("type", "package")


def _k(name: str) -> UnitKey:
    return UnitKey(f"app.{name}")


def _type(name: str, *markers: Marker) -> Declaration:
    return Declaration(ElementKind.TYPE, f"app.{name}", markers=markers)


def _requires(control, view, marker, context):  # type: ignore[no-untyped-def]
    if "as_" in marker.attributes:
        control.masquerade_as(marker.as_)
    return marker.attributes.get("requires", ())


class Recorder:
    """Collects ``(marker, owner)`` for every successful ``handle`` call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def handler(self, fails_for: frozenset[str] = frozenset()) -> FunctionHandler:
        def handle(view, marker, context):  # type: ignore[no-untyped-def]
            owner = str(view.key)
            if owner in fails_for:
                raise InjectionFailure("cannot generate")
            self.calls.append((type(marker).__name__, owner))
            context.generated[owner] = f"# generated for {owner}"
            return True

        return FunctionHandler(handle, _requires)

    @property
    def owners(self) -> list[str]:
        return [owner for _, owner in self.calls]


@pytest.fixture()
def recorder() -> Recorder:
    return Recorder()


# ===========================================================================
# Ordering
# ===========================================================================


class TestOrdering:
    def test_dependency_is_processed_first(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner(
            [_type("B", Service(requires=["app.A"])), _type("A", Service())]
        )
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        report = factory.process(scanner, context)
        assert report.order == [_k("A"), _k("B")]
        assert recorder.owners == ["app.A", "app.B"]
        assert report.succeeded
        assert report.cycles == []

    def test_chain_is_processed_in_dependency_order(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner(
            [
                _type("D", Service(requires=["app.C"])),
                _type("C", Service(requires=["app.B", "app.A"])),
                _type("B", Service(requires=["app.A"])),
                _type("A", Service()),
            ]
        )
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        factory.process(scanner, context)
        assert recorder.owners == ["app.A", "app.B", "app.C", "app.D"]

    def test_rule_orders_discovery_regardless_of_registration(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner([_type("P", Produces()), _type("S", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Produces, recorder.handler(), rules=[after(Service)])
        factory.register_handler(Service, recorder.handler())
        report = factory.process(scanner, context)
        assert [e.marker for e in report.entries] == ["Service", "Produces"]
        assert report.order == [_k("S"), _k("P")]
        assert recorder.calls == [("Service", "app.S"), ("Produces", "app.P")]

    def test_contradictory_rules_raise(self, context: ProcessingContext) -> None:
        factory = ProcessorFactory()
        factory.register_handler(Service, FunctionHandler(lambda v, m, c: True), [after(Produces)])
        factory.register_handler(Produces, FunctionHandler(lambda v, m, c: True), [after(Service)])
        with pytest.raises(RuleCycleError):
            factory.process(StaticScanner(), context)

    def test_cycle_is_tolerated(
        self, recorder: Recorder, context: ProcessingContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        scanner = StaticScanner(
            [_type("A", Service(requires=["app.B"])), _type("B", Service(requires=["app.A"]))]
        )
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        with caplog.at_level(logging.WARNING):
            report = factory.process(scanner, context)
        assert sorted(recorder.owners) == ["app.A", "app.B"]
        assert report.cycles == [(_k("A"), _k("B"))]
        assert report.forced == [_k("A")]
        assert report.succeeded
        assert "Dependency cycle" in caplog.text

    def test_strict_order_falls_back_on_cycle(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner(
            [_type("A", Service(requires=["app.B"])), _type("B", Service(requires=["app.A"]))]
        )
        factory = ProcessorFactory(config=ProcessorConfig(strict_order=True))
        factory.register_handler(Service, recorder.handler())
        report = factory.process(scanner, context)
        assert report.succeeded
        assert report.cycles == [(_k("A"), _k("B"))]

    def test_missing_dependencies_are_reported(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner([_type("A", Service(requires=["app.Ghost"]))])
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        report = factory.process(scanner, context)
        assert report.missing_dependencies == {_k("A"): frozenset({_k("Ghost")})}
        assert recorder.owners == ["app.A"]


# ===========================================================================
# Merging
# ===========================================================================


class TestMerging:
    def test_markers_on_one_type_share_a_unit(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner([_type("A", Service(), Produces())])
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        factory.register_handler(Produces, recorder.handler())
        report = factory.process(scanner, context)
        assert report.order == [_k("A")]
        assert len(factory.units.get(_k("A")).items) == 2
        assert recorder.calls == [("Service", "app.A"), ("Produces", "app.A")]

    def test_masquerading_joins_units(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner(
            [
                _type("Impl", Service(as_="app.Api", requires=["app.Base"])),
                _type("Api", Service()),
                _type("Base", Service()),
            ]
        )
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        report = factory.process(scanner, context)
        assert report.order == [_k("Base"), _k("Api")]
        assert recorder.owners == ["app.Base", "app.Impl", "app.Api"]

    @pytest.mark.parametrize(
        ("policy", "expected"),
        [
            (MergePolicy.UNION, [_k("B"), _k("A")]),
            (MergePolicy.FIRST_WINS, [_k("A"), _k("B")]),
        ],
    )
    def test_merge_policy_decides_dependencies(
        self,
        recorder: Recorder,
        context: ProcessingContext,
        policy: MergePolicy,
        expected: list[UnitKey],
    ) -> None:
        scanner = StaticScanner(
            [_type("A", Service(), Produces(requires=["app.B"])), _type("B", Service())]
        )
        factory = ProcessorFactory(config=ProcessorConfig(merge_policy=policy))
        factory.register_handler(Service, recorder.handler())
        factory.register_handler(Produces, recorder.handler())
        assert factory.process(scanner, context).order == expected


# ===========================================================================
# Failures and retries
# ===========================================================================


class TestFailures:
    def test_permanent_failure_is_reported(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner([_type("Bad", Service()), _type("Good", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler(fails_for=frozenset({"app.Bad"})))
        report = factory.process(scanner, context)
        assert not report.succeeded
        assert report.pending == {"Service": (_k("Bad"),)}
        assert [str(f) for f in report.failures["Service"]] == ["app.Bad: cannot generate"]
        assert report.entries[0].state is EntryState.STALLED
        assert recorder.owners == ["app.Good"]

    def test_raise_for_failures(self, recorder: Recorder, context: ProcessingContext) -> None:
        scanner = StaticScanner([_type("Bad", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler(fails_for=frozenset({"app.Bad"})))
        report = factory.process(scanner, context)
        with pytest.raises(ProcessingIncompleteError) as info:
            report.raise_for_failures()
        assert info.value.count == 1
        assert "app.Bad" in str(info.value)

    def test_no_failures_does_not_raise(self, context: ProcessingContext) -> None:
        ProcessingReport().raise_for_failures()

    def test_cross_marker_retry(self, context: ProcessingContext) -> None:
        def needs_b(view, marker, ctx):  # type: ignore[no-untyped-def]
            if "app.B" not in ctx.generated:
                raise InjectionFailure("app.B not generated yet")
            return True

        def provides(view, marker, ctx):  # type: ignore[no-untyped-def]
            ctx.generated[str(view.key)] = "done"
            return True

        scanner = StaticScanner([_type("A", Service()), _type("B", Produces())])
        factory = ProcessorFactory()
        factory.register_handler(Service, FunctionHandler(needs_b))
        factory.register_handler(Produces, FunctionHandler(provides))
        report = factory.process(scanner, context)
        assert report.succeeded
        assert report.rounds == 1
        assert report.entries[0].passes == 1

    def test_false_return_is_retried_then_reported(self, context: ProcessingContext) -> None:
        scanner = StaticScanner([_type("A", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Service, FunctionHandler(lambda view, marker, ctx: False))
        report = factory.process(scanner, context)
        assert report.pending == {"Service": (_k("A"),)}
        assert len(report.failures["Service"]) == 1

    def test_dependency_check_error_aborts(self, context: ProcessingContext) -> None:
        def refuses(control, view, marker, ctx):  # type: ignore[no-untyped-def]
            raise DependencyCheckError("unresolvable generic parameter")

        scanner = StaticScanner([_type("A", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Service, FunctionHandler(lambda v, m, c: True, refuses))
        with pytest.raises(DependencyCheckError) as info:
            factory.process(scanner, context)
        assert info.value.key == _k("A")

    def test_structural_errors_do_not_abort(
        self, recorder: Recorder, context: ProcessingContext
    ) -> None:
        scanner = StaticScanner([_type("A", Loose())])
        factory = ProcessorFactory()
        factory.register_handler(Loose, recorder.handler())
        report = factory.process(scanner, context)
        assert report.succeeded
        assert [type(e) for e in report.structural_errors] == [UnknownTargetError]
        assert recorder.owners == ["app.A"]


# ===========================================================================
# Driver state
# ===========================================================================


class TestDriver:
    def test_process_is_not_reentrant(self, context: ProcessingContext) -> None:
        factory = ProcessorFactory()

        def reenter(view, marker, ctx):  # type: ignore[no-untyped-def]
            factory.process(StaticScanner(), ctx)
            return True

        factory.register_handler(Service, FunctionHandler(reenter))
        with pytest.raises(RuntimeError, match="not reentrant"):
            factory.process(StaticScanner([_type("A", Service())]), context)

        factory.registry.deregister(Service)
        factory.register_handler(Service, FunctionHandler(lambda v, m, c: True))
        assert factory.process(StaticScanner([_type("A", Service())]), context).succeeded

    def test_each_run_starts_clean(self, recorder: Recorder, context: ProcessingContext) -> None:
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        factory.process(StaticScanner([_type("A", Service())]), context)
        report = factory.process(StaticScanner([_type("B", Service())]), context)
        assert report.order == [_k("B")]
        assert factory.units.keys() == [_k("B")]

    def test_plan_does_not_handle(self, recorder: Recorder, context: ProcessingContext) -> None:
        scanner = StaticScanner([_type("B", Service(requires=["app.A"])), _type("A", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        plan = factory.plan(scanner, context)
        assert plan.order == [_k("A"), _k("B")]
        assert recorder.calls == []
        assert len(plan.entries[0].targets) == 2

    def test_test_only_follows_config(self, recorder: Recorder, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MARKGEN_TEST_MODE", raising=False)
        scanner = StaticScanner([_type("Fake", Service(), TestOnly()), _type("Real", Service())])

        factory = ProcessorFactory(config=ProcessorConfig(test_mode=False))
        factory.register_handler(Service, recorder.handler())
        assert factory.process(scanner).order == [_k("Real")]

        factory = ProcessorFactory(config=ProcessorConfig(test_mode=True))
        factory.register_handler(Service, recorder.handler())
        assert factory.process(scanner).order == [_k("Fake"), _k("Real")]

    def test_test_mode_from_environment(
        self, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MARKGEN_TEST_MODE", "1")
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        report = factory.process(StaticScanner([_type("Fake", Service(), TestOnly())]))
        assert report.order == [_k("Fake")]

    def test_reset_clears_state(self, recorder: Recorder, context: ProcessingContext) -> None:
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler())
        factory.process(StaticScanner([_type("A", Service())]), context)
        factory.reset()
        assert len(factory.units) == 0
        assert factory.graph is None
        assert factory.entries == []

    def test_report_to_dict(self, recorder: Recorder, context: ProcessingContext) -> None:
        scanner = StaticScanner([_type("Bad", Service())])
        factory = ProcessorFactory()
        factory.register_handler(Service, recorder.handler(fails_for=frozenset({"app.Bad"})))
        data = factory.process(scanner, context).to_dict()
        assert data["succeeded"] is False
        assert data["order"] == ["app.Bad"]
        assert data["entries"][0]["state"] == "stalled"
        assert data["entries"][0]["errors"] == ["app.Bad: cannot generate"]


# ===========================================================================
# Convenience API
# ===========================================================================


class TestProcessFunction:
    def test_process_with_scanner(self, recorder: Recorder, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MARKGEN_TEST_MODE", raising=False)
        scanner = StaticScanner(
            [_type("P", Produces(requires=["app.S"])), _type("S", Service())]
        )
        report = markgen.process(
            ["app"],
            handlers={Produces: recorder.handler(), Service: recorder.handler()},
            rules={Produces: [after(Service)]},
            scanner=scanner,
        )
        assert report.succeeded
        assert recorder.owners == ["app.S", "app.P"]

    def test_process_scans_modules(self, make_package, recorder: Recorder) -> None:  # type: ignore[no-untyped-def]
        pkg = make_package(
            "process_demo",
            {
                "markers.py": "from markgen import Marker\n\nclass Component(Marker):\n    pass\n",
                "parts.py": (
                    "from process_demo.markers import Component\n\n"
                    "@Component(requires=['process_demo.parts.Engine'])\n"
                    "class Car:\n    pass\n\n"
                    "@Component()\n"
                    "class Engine:\n    pass\n"
                ),
            },
        )
        component = importlib.import_module(f"{pkg}.markers").Component
        report = markgen.process([pkg], handlers={component: recorder.handler()}, test_mode=False)
        assert report.succeeded
        assert recorder.owners == [f"{pkg}.parts.Engine", f"{pkg}.parts.Car"]
