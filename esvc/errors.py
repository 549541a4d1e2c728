"""
Exception hierarchy.

Two families:
- RecoverableError: reported to the caller; the graph and working copy are
  left exactly as they were before the failed operation.
- InvariantViolation: a corrupted graph or a reducer that broke its contract.
  The operation is aborted and nothing is repaired.
"""

from __future__ import annotations

from typing import Iterable


class EsvcError(Exception):
    """Base class for all engine errors."""


class HashDecodeError(ValueError):
    """An event id string could not be decoded."""


# ---------------------------------------------------------------------------
# Recoverable
# ---------------------------------------------------------------------------


class RecoverableError(EsvcError):
    """Operation rejected; no state was changed."""


class MissingPredecessor(RecoverableError):
    """An event names a predecessor that is not in the graph."""

    def __init__(self, event_id: str, missing: Iterable[str]):
        self.event_id = event_id
        self.missing = tuple(sorted(missing))
        super().__init__(f"event {event_id} has missing predecessors: {', '.join(self.missing)}")


class DuplicateEvent(RecoverableError):
    """An event with this id is already in the graph."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"event {event_id} already exists")


class UnknownEvent(RecoverableError):
    """A referenced event id is not in the graph."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"unknown event {event_id}")


class UnknownBranch(RecoverableError):
    """A referenced branch name does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown branch '{name}'")


class ReadOnlyGraph(RecoverableError):
    """Mutation attempted on a read-only graph snapshot."""


class Conflict(RecoverableError):
    """
    Raised by a reducer's apply() when an event cannot be legally applied.

    The caller must change the payload; nothing was committed.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class MergeConflict(RecoverableError):
    """
    Non-commuting events with no resolution.

    event_a / event_b name the first unresolvable pair (canonical order);
    pairs lists every unresolvable pair found.
    """

    def __init__(
        self,
        event_a: str,
        event_b: str,
        *,
        pairs: Iterable[tuple[str, str]] | None = None,
        reason: str = "events do not commute and no resolution was supplied",
    ):
        self.event_a = event_a
        self.event_b = event_b
        self.pairs = tuple(pairs) if pairs is not None else ((event_a, event_b),)
        self.reason = reason
        super().__init__(f"merge conflict between {event_a} and {event_b}: {reason}")


class UnmergedFrontier(RecoverableError):
    """A commit was attempted on a frontier with several heads that were never merged."""

    def __init__(self, heads: Iterable[str]):
        self.heads = tuple(sorted(heads))
        super().__init__(f"frontier has {len(self.heads)} unmerged heads; merge before committing")


# ---------------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------------


class InvariantViolation(EsvcError):
    """Structural invariant broken; the operation must be abandoned."""


class CycleDetected(InvariantViolation):
    """The predecessor relation contains a cycle."""

    def __init__(self, cycle: Iterable[str]):
        self.cycle = tuple(cycle)
        super().__init__(f"dependency cycle: {' -> '.join(self.cycle)}")


class CorruptGraph(InvariantViolation):
    """Event content does not match its id, or serialized data is malformed."""


class ReducerContractViolation(InvariantViolation):
    """
    Replay produced a Conflict for an event that was already accepted.

    During a merge this means commute/resolve ruled out a conflict that
    apply then reported; elsewhere it means apply is not deterministic.
    """

    def __init__(self, event_id: str, conflict: Conflict, *, during: str = "replay"):
        self.event_id = event_id
        self.conflict = conflict
        self.during = during
        super().__init__(f"reducer rejected {event_id} during {during}: {conflict.reason}")
