"""Handler registry: which handler processes which marker, and in what order.

Handlers are registered against a marker type, optionally with relative
ordering rules.  Packages can also publish handlers as entry-points in
the ``markgen.handlers`` group; the entry-point name is ignored and the
loaded object must expose ``marker`` (a :class:`~markgen.core.markers.Marker`
subclass) and ``handler`` (a :class:`~markgen.core.handler.MarkerHandler`),
plus an optional ``rules`` sequence.

Example
-------
Register a handler directly::

    from markgen.core.registry import HandlerRegistry
    from markgen.core.rules import after

    registry = HandlerRegistry()
    registry.register(Service, ServiceHandler())
    registry.register(Produces, ProducesHandler(), rules=[after(Service)])

Or with the decorator::

    @registry.handler_for(Service)
    class ServiceHandler(MarkerHandler):
        ...

Publish from another package's ``pyproject.toml``::

    [project.entry-points."markgen.handlers"]
    services = "my_package.codegen:SERVICES"

where ``SERVICES = HandlerSpec(Service, ServiceHandler())``.
"""
from __future__ import annotations

import importlib.metadata
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from markgen.core.entry import ProcessingEntry
from markgen.core.errors import HandlerAlreadyRegisteredError, HandlerNotFoundError
from markgen.core.handler import MarkerHandler
from markgen.core.markers import Marker, is_marker_type
from markgen.core.rules import HandlerOrdering, RuleDef

logger = logging.getLogger(__name__)

DEFAULT_ENTRYPOINT_GROUP = "markgen.handlers"


@dataclass(frozen=True)
class HandlerSpec:
    """A handler bundled with its marker and rules, for publishing."""

    marker: type[Marker]
    handler: MarkerHandler
    rules: tuple[RuleDef, ...] = ()


class HandlerRegistry:
    """Ordered collection of marker handlers and their ordering rules."""

    def __init__(self) -> None:
        self._handlers: dict[type[Marker], MarkerHandler] = {}
        self._rules: dict[type[Marker], tuple[RuleDef, ...]] = {}
        self._ordering: HandlerOrdering | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        marker_type: type[Marker],
        handler: MarkerHandler,
        rules: Iterable[RuleDef] | None = None,
    ) -> None:
        """Register *handler* for *marker_type*.

        Parameters
        ----------
        marker_type:
            The marker the handler processes.
        handler:
            The handler instance.
        rules:
            Relative ordering rules for ``marker_type``'s discovery pass.

        Raises
        ------
        HandlerAlreadyRegisteredError
            If ``marker_type`` already has a handler.
        TypeError
            If ``marker_type`` is not a ``Marker`` subclass, or ``handler``
            is not a ``MarkerHandler``.
        """
        if not is_marker_type(marker_type):
            raise TypeError(
                f"Cannot register a handler for {marker_type!r}: "
                "it must be a subclass of Marker."
            )
        if not isinstance(handler, MarkerHandler):
            raise TypeError(
                f"Cannot register {handler!r} for @{marker_type.__name__}: "
                "it must be an instance of MarkerHandler."
            )
        if marker_type in self._handlers:
            raise HandlerAlreadyRegisteredError(marker_type.marker_name())
        self._handlers[marker_type] = handler
        self._rules[marker_type] = tuple(rules or ())
        self._ordering = None
        logger.debug(
            "Registered handler %s for @%s (%d rule(s))",
            type(handler).__qualname__,
            marker_type.__name__,
            len(self._rules[marker_type]),
        )

    def handler_for(
        self,
        marker_type: type[Marker],
        rules: Iterable[RuleDef] | None = None,
    ) -> Callable[[type[MarkerHandler]], type[MarkerHandler]]:
        """Return a class decorator that registers an instance of the class.

        The decorated class must be constructible without arguments.  It
        is returned unchanged.
        """

        def decorator(cls: type[MarkerHandler]) -> type[MarkerHandler]:
            self.register(marker_type, cls(), rules)
            return cls

        return decorator

    def deregister(self, marker_type: type[Marker]) -> None:
        """Remove the handler for *marker_type*.

        Raises
        ------
        HandlerNotFoundError
            If no handler is registered for ``marker_type``.
        """
        if marker_type not in self._handlers:
            raise HandlerNotFoundError(getattr(marker_type, "__name__", repr(marker_type)))
        del self._handlers[marker_type]
        del self._rules[marker_type]
        self._ordering = None
        logger.debug("Deregistered handler for @%s", marker_type.__name__)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, marker_type: type[Marker]) -> MarkerHandler:
        """Return the handler registered for *marker_type*.

        Raises
        ------
        HandlerNotFoundError
            If no handler is registered for ``marker_type``.
        """
        try:
            return self._handlers[marker_type]
        except KeyError:
            raise HandlerNotFoundError(
                getattr(marker_type, "__name__", repr(marker_type))
            ) from None

    def rules_for(self, marker_type: type[Marker]) -> tuple[RuleDef, ...]:
        return self._rules.get(marker_type, ())

    def ordering(self) -> HandlerOrdering:
        """Return the validated partial order over registered markers.

        Raises
        ------
        markgen.core.errors.RuleCycleError
            If the registered rules contradict each other.
        """
        if self._ordering is None:
            self._ordering = HandlerOrdering(self._handlers, self._rules)
        return self._ordering

    def marker_types(self) -> list[type[Marker]]:
        """Return marker types in discovery order."""
        return self.ordering().ordered()

    def entries(self) -> list[ProcessingEntry]:
        """Return a fresh :class:`ProcessingEntry` per marker, in discovery order."""
        return [
            ProcessingEntry(marker, self._handlers[marker], self._rules[marker])
            for marker in self.marker_types()
        ]

    def __contains__(self, marker_type: object) -> bool:
        return marker_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[type[Marker]]:
        return iter(self.marker_types())

    def __repr__(self) -> str:
        names = [m.__name__ for m in self._handlers]
        return f"HandlerRegistry(markers={names})"

    # ------------------------------------------------------------------
    # Entry-point loading
    # ------------------------------------------------------------------

    def load_entrypoints(self, group: str = DEFAULT_ENTRYPOINT_GROUP) -> int:
        """Register handlers published by installed distributions.

        Entry-points that fail to load or do not describe a handler are
        logged and skipped; markers that already have a handler are
        skipped at debug level, so repeated calls are idempotent.

        Returns
        -------
        int
            The number of handlers registered by this call.
        """
        registered = 0
        for ep in importlib.metadata.entry_points(group=group):
            try:
                published = ep.load()
            except Exception:
                logger.exception(
                    "Failed to load entry-point %r from group %r; skipping.",
                    ep.name,
                    group,
                )
                continue
            marker_type = getattr(published, "marker", None)
            handler = getattr(published, "handler", None)
            if marker_type in self._handlers:
                logger.debug(
                    "Entry-point %r: @%s already has a handler; skipping.",
                    ep.name,
                    marker_type.__name__,
                )
                continue
            try:
                self.register(marker_type, handler, getattr(published, "rules", None))
            except TypeError:
                logger.warning(
                    "Entry-point %r loaded but does not describe a marker handler; skipping.",
                    ep.name,
                )
                continue
            registered += 1
        return registered
