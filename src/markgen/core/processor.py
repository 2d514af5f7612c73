"""The processing pipeline: discover, merge, order, execute, retry.

:class:`ProcessorFactory` runs one code-generation pass over a scanned
codebase::

    factory = ProcessorFactory()
    factory.register_handler(Service, ServiceHandler())
    factory.register_handler(Produces, ProducesHandler(), rules=[after(Service)])

    report = factory.process(ModuleScanner(), ProcessingContext(packages=("app",)))
    report.raise_for_failures()

Steps, in order:

1. Each registered marker's entry, in rule order, discovers its
   declarations and builds one delegate and one unit per declaration.
2. Units sharing a key are merged by the :class:`UnitTable`.
3. The :class:`DependencyGraph` builds the reverse-dependency map and
   orders the units, dependencies first, tolerating cycles.
4. Every delegate of every unit is attempted once, in that order.
5. Unfinished entries run their fixed-point retry loop.  Rounds repeat
   while any entry still makes progress.

What is left unprocessed is reported, never dropped.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from markgen.config import ProcessorConfig
from markgen.core.context import ProcessingContext, TypeRegistry
from markgen.core.delegate import ProcessingDelegate
from markgen.core.discovery import DelegateBuilder
from markgen.core.entry import EntryState, ProcessingEntry
from markgen.core.errors import InjectionFailure, ProcessingIncompleteError, StructuralError
from markgen.core.graph import DependencyGraph, ScheduleResult
from markgen.core.handler import MarkerHandler
from markgen.core.identity import UnitKey
from markgen.core.merge import UnitTable
from markgen.core.registry import HandlerRegistry
from markgen.core.rules import RuleDef

if TYPE_CHECKING:
    from markgen.core.markers import Marker
    from markgen.scanning import Scanner

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessingPlan:
    """Everything known before any handler's ``handle`` runs."""

    schedule: ScheduleResult
    entries: list[ProcessingEntry]
    missing_dependencies: dict[UnitKey, frozenset[UnitKey]] = field(default_factory=dict)
    structural_errors: list[StructuralError] = field(default_factory=list)

    @property
    def order(self) -> list[UnitKey]:
        return self.schedule.keys


@dataclass(frozen=True)
class EntrySummary:
    """Final state of one marker's processing entry."""

    marker: str
    state: EntryState
    passes: int
    succeeded: int
    pending: tuple[UnitKey, ...] = ()
    errors: tuple[InjectionFailure, ...] = ()

    @classmethod
    def of(cls, entry: ProcessingEntry) -> "EntrySummary":
        return cls(
            marker=entry.name,
            state=entry.state,
            passes=entry.passes,
            succeeded=entry.succeeded,
            pending=tuple(d.key for d in entry.targets),
            errors=entry.errors,
        )


@dataclass(frozen=True)
class ProcessingReport:
    """Outcome of :meth:`ProcessorFactory.process`.

    Parameters
    ----------
    order:
        Unit keys in the order they were processed.
    cycles:
        Dependency cycles the ordering had to break.
    forced:
        Units processed before all of their dependencies.
    missing_dependencies:
        Dependencies no discovered unit provides.
    structural_errors:
        Declarations and markers that could not be processed at all.
    entries:
        Per-marker final state, in discovery order.
    rounds:
        Retry rounds run after the ordered pass.
    """

    order: list[UnitKey] = field(default_factory=list)
    cycles: list[tuple[UnitKey, ...]] = field(default_factory=list)
    forced: list[UnitKey] = field(default_factory=list)
    missing_dependencies: dict[UnitKey, frozenset[UnitKey]] = field(default_factory=dict)
    structural_errors: list[StructuralError] = field(default_factory=list)
    entries: list[EntrySummary] = field(default_factory=list)
    rounds: int = 0

    @property
    def failures(self) -> dict[str, tuple[InjectionFailure, ...]]:
        """Marker name mapped to the failures of its unprocessed delegates."""
        return {e.marker: e.errors for e in self.entries if e.pending}

    @property
    def pending(self) -> dict[str, tuple[UnitKey, ...]]:
        """Marker name mapped to the keys of its unprocessed delegates."""
        return {e.marker: e.pending for e in self.entries if e.pending}

    @property
    def succeeded(self) -> bool:
        """Return True if every discovered delegate was processed."""
        return not any(e.pending for e in self.entries)

    def raise_for_failures(self) -> None:
        """Raise if any delegate is still unprocessed.

        Raises
        ------
        ProcessingIncompleteError
            Listing every unprocessed delegate and its latest failure.
        """
        if not self.succeeded:
            raise ProcessingIncompleteError(self.failures, self.pending)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON/YAML-friendly representation."""
        return {
            "succeeded": self.succeeded,
            "rounds": self.rounds,
            "order": [str(k) for k in self.order],
            "cycles": [[str(k) for k in cycle] for cycle in self.cycles],
            "forced": [str(k) for k in self.forced],
            "missing_dependencies": {
                str(k): sorted(str(d) for d in deps)
                for k, deps in self.missing_dependencies.items()
            },
            "structural_errors": [str(e) for e in self.structural_errors],
            "entries": [
                {
                    "marker": e.marker,
                    "state": e.state.value,
                    "passes": e.passes,
                    "succeeded": e.succeeded,
                    "pending": [str(k) for k in e.pending],
                    "errors": [str(f) for f in e.errors],
                }
                for e in self.entries
            ],
        }


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class ProcessorFactory:
    """Drives handlers over scanned declarations in dependency order.

    One instance owns the merge table, graph and entries of one run.
    :meth:`process` resets that state before it starts and refuses to be
    re-entered while running.

    Parameters
    ----------
    type_registry:
        Type registry used when :meth:`process` builds its own context.
    registry:
        Handler registry to draw handlers from.  A new one is created when
        omitted.
    config:
        Run settings.
    """

    def __init__(
        self,
        type_registry: TypeRegistry | None = None,
        registry: HandlerRegistry | None = None,
        config: ProcessorConfig | None = None,
    ) -> None:
        self._type_registry = type_registry
        self._registry = registry if registry is not None else HandlerRegistry()
        self._config = config if config is not None else ProcessorConfig()
        self._running = False
        self._clear()

    def reset(self) -> None:
        """Discard all state from a previous run."""
        if self._running:
            raise RuntimeError("Cannot reset a ProcessorFactory while it is processing")
        self._clear()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(
        self,
        marker_type: type["Marker"],
        handler: MarkerHandler,
        rules: Iterable[RuleDef] | None = None,
    ) -> None:
        """Register *handler* for *marker_type*; see :meth:`HandlerRegistry.register`."""
        self._registry.register(marker_type, handler, rules)

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def config(self) -> ProcessorConfig:
        return self._config

    @property
    def units(self) -> UnitTable:
        return self._units

    @property
    def graph(self) -> DependencyGraph | None:
        return self._graph

    @property
    def entries(self) -> list[ProcessingEntry]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def make_context(self) -> ProcessingContext:
        """Build a context from the configuration."""
        return ProcessingContext.for_packages(
            self._config.packages,
            test_mode=self._config.test_mode,
            type_registry=self._type_registry,
        )

    def plan(
        self, scanner: "Scanner", context: ProcessingContext | None = None
    ) -> ProcessingPlan:
        """Discover, merge and order units without processing them.

        Raises
        ------
        markgen.core.errors.RuleCycleError
            If the handlers' ordering rules contradict each other.
        markgen.core.errors.DependencyCheckError
            If a handler cannot determine a declaration's dependencies.
        """
        self._guard()
        self._running = True
        try:
            self._clear()
            return self._plan(scanner, context if context is not None else self.make_context())
        finally:
            self._running = False

    def process(
        self, scanner: "Scanner", context: ProcessingContext | None = None
    ) -> ProcessingReport:
        """Run the whole pipeline and report what is left unprocessed.

        Raises
        ------
        markgen.core.errors.RuleCycleError
            If the handlers' ordering rules contradict each other.
        markgen.core.errors.DependencyCheckError
            If a handler cannot determine a declaration's dependencies.
        RuntimeError
            If called while this factory is already processing.
        """
        self._guard()
        self._running = True
        try:
            self._clear()
            if context is None:
                context = self.make_context()
            plan = self._plan(scanner, context)
            self._execute(plan.schedule)
            rounds = self._retry()
            report = ProcessingReport(
                order=plan.order,
                cycles=plan.schedule.cycles,
                forced=plan.schedule.forced,
                missing_dependencies=plan.missing_dependencies,
                structural_errors=plan.structural_errors,
                entries=[EntrySummary.of(e) for e in self._entries],
                rounds=rounds,
            )
        finally:
            self._running = False

        for marker, keys in report.pending.items():
            logger.warning(
                "@%s: %d declaration(s) could not be processed: %s",
                marker,
                len(keys),
                ", ".join(str(k) for k in keys),
            )
        return report

    def _clear(self) -> None:
        self._units = UnitTable(self._config.merge_policy)
        self._graph: DependencyGraph | None = None
        self._entries: list[ProcessingEntry] = []

    def _guard(self) -> None:
        if self._running:
            raise RuntimeError("ProcessorFactory.process() is not reentrant")

    def _plan(self, scanner: "Scanner", context: ProcessingContext) -> ProcessingPlan:
        self._entries = self._registry.entries()
        builder = DelegateBuilder(scanner, context)
        for entry in self._entries:
            for unit in builder.discover(entry):
                self._units.add(unit)

        self._graph = DependencyGraph(self._units.units())
        schedule = self._graph.schedule(strict=self._config.strict_order)
        logger.debug(
            "Scheduled %d unit(s) from %d marker(s): %s",
            len(schedule.order),
            len(self._entries),
            ", ".join(str(k) for k in schedule.keys),
        )
        return ProcessingPlan(
            schedule=schedule,
            entries=list(self._entries),
            missing_dependencies=self._graph.missing_dependencies(),
            structural_errors=list(builder.structural_errors),
        )

    def _execute(self, schedule: ScheduleResult) -> None:
        for unit in schedule.order:
            for item in unit.items:
                if isinstance(item, ProcessingDelegate):
                    item.entry.attempt(item)

    def _retry(self) -> int:
        rounds = 0
        while rounds < self._config.max_rounds:
            unfinished = [e for e in self._entries if not e.is_complete]
            if not unfinished:
                break
            rounds += 1
            progressed = False
            for entry in unfinished:
                entry.process_all_delegates()
                progressed = progressed or entry.removed_in_last_run > 0
            logger.debug("Retry round %d: progress=%s", rounds, progressed)
            if not progressed:
                break
        return rounds
