"""Per-marker processing entries and their fixed-point retry loop.

Every registered marker type gets one :class:`ProcessingEntry`.  The entry
holds the delegates discovered for that marker that have not succeeded
yet.  :meth:`ProcessingEntry.process_all_delegates` retries them pass
after pass, because one delegate's work can depend on side effects of
another delegate of the same marker; it stops as soon as every delegate
has succeeded or a whole pass succeeds at nothing.

State machine
-------------
::

    PENDING --process_all_delegates--> RETRYING --all done------> COMPLETE
                                          |  ^
                                 no progress  | more delegates / new round
                                          v  |
                                        STALLED
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from markgen.core.errors import InjectionFailure

if TYPE_CHECKING:
    from markgen.core.handler import MarkerHandler
    from markgen.core.identity import UnitKey
    from markgen.core.markers import Marker
    from markgen.core.rules import RuleDef

logger = logging.getLogger(__name__)


class EntryState(Enum):
    """Lifecycle of a processing entry."""

    PENDING = "pending"
    RETRYING = "retrying"
    STALLED = "stalled"
    COMPLETE = "complete"


class Processable(Protocol):
    """What an entry needs from a delegate."""

    @property
    def key(self) -> "UnitKey": ...

    def process(self) -> bool: ...


class ProcessingEntry:
    """All delegates registered against one marker type.

    Parameters
    ----------
    marker_type:
        The marker this entry handles.
    handler:
        The handler registered for ``marker_type``.
    rules:
        Relative ordering rules for ``marker_type``.
    """

    def __init__(
        self,
        marker_type: type["Marker"],
        handler: "MarkerHandler",
        rules: Iterable["RuleDef"] = (),
    ) -> None:
        self.marker_type = marker_type
        self.handler = handler
        self.rules: tuple["RuleDef", ...] = tuple(rules)
        self._targets: list[Any] = []
        self._failures: dict[int, InjectionFailure] = {}
        self._state = EntryState.PENDING
        self._passes = 0
        self._succeeded = 0
        self._removed_in_last_run = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_processing_delegate(self, delegate: Processable) -> None:
        """Queue *delegate* for processing."""
        self._targets.append(delegate)
        if self._state is EntryState.COMPLETE:
            self._state = EntryState.PENDING

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def attempt(self, delegate: Processable) -> bool:
        """Process *delegate* once.

        A successful delegate leaves the entry.  An
        :class:`InjectionFailure` is recorded as the delegate's most
        recent failure and the delegate stays queued.

        Returns
        -------
        bool
            True if the delegate succeeded.
        """
        try:
            succeeded = bool(delegate.process())
        except InjectionFailure as failure:
            if failure.key is None:
                failure.key = delegate.key
            self._failures[id(delegate)] = failure
            logger.debug("@%s %s: %s", self.name, delegate.key, failure.message)
            succeeded = False

        else:
            if not succeeded:
                self._failures[id(delegate)] = InjectionFailure(
                    "handler reported the declaration as not processed", delegate.key
                )

        if succeeded:
            self._failures.pop(id(delegate), None)
            self._remove(delegate)
            self._succeeded += 1
            if not self._targets:
                self._state = EntryState.COMPLETE
        return succeeded

    def process_all_delegates(self) -> bool:
        """Retry queued delegates until all succeed or a pass changes nothing.

        Failures recorded before this call are discarded; afterwards
        :attr:`errors` holds the latest failure of every delegate still
        queued.

        Returns
        -------
        bool
            True if no delegate is left queued.
        """
        self._failures.clear()
        initial = len(self._targets)

        while self._targets:
            self._state = EntryState.RETRYING
            start = len(self._targets)
            self._passes += 1
            for delegate in list(self._targets):
                self.attempt(delegate)
            logger.debug(
                "@%s pass %d: %d of %d delegate(s) remaining",
                self.name,
                self._passes,
                len(self._targets),
                start,
            )
            if len(self._targets) == start:
                break

        self._removed_in_last_run = initial - len(self._targets)
        if self._targets:
            self._state = EntryState.STALLED
            logger.debug(
                "@%s reached a fixed point with %d unprocessed delegate(s)",
                self.name,
                len(self._targets),
            )
            return False
        self._state = EntryState.COMPLETE
        return True

    def _remove(self, delegate: Processable) -> None:
        for i, queued in enumerate(self._targets):
            if queued is delegate:
                del self._targets[i]
                return

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.marker_type.__name__

    @property
    def state(self) -> EntryState:
        return self._state

    @property
    def passes(self) -> int:
        """Total passes run by :meth:`process_all_delegates`."""
        return self._passes

    @property
    def succeeded(self) -> int:
        """Number of delegates that have succeeded so far."""
        return self._succeeded

    @property
    def removed_in_last_run(self) -> int:
        """Delegates that succeeded during the last fixed-point run."""
        return self._removed_in_last_run

    @property
    def targets(self) -> tuple[Processable, ...]:
        """Delegates still waiting to succeed, in registration order."""
        return tuple(self._targets)

    @property
    def is_complete(self) -> bool:
        return not self._targets

    @property
    def errors(self) -> tuple[InjectionFailure, ...]:
        """The most recent failure of each queued delegate, in queue order."""
        return tuple(
            self._failures[id(d)] for d in self._targets if id(d) in self._failures
        )

    @property
    def failed_delegates(self) -> tuple[Processable, ...]:
        """Queued delegates whose last attempt failed."""
        return tuple(d for d in self._targets if id(d) in self._failures)

    def __repr__(self) -> str:
        return (
            f"ProcessingEntry(@{self.name}, state={self._state.value}, "
            f"pending={len(self._targets)})"
        )
