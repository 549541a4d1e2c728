"""
Reducer contract.

The engine never hardcodes domain semantics. The embedding application
supplies three pure functions when it opens a working copy:

- apply(state, event) -> state     raises Conflict when the event is illegal
- commute(a, b) -> bool            conservative, symmetric, deterministic
- resolve(a, b) -> Resolution      optional tie-break for non-commuting pairs

Any object with those attributes satisfies the Reducer protocol.
FunctionReducer bundles plain functions into one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from .errors import Conflict
from .events import Event


class Resolution(str, Enum):
    """Decision for a pair of non-commuting events (a, b) with a.id < b.id."""

    A_FIRST = "a_first"
    B_FIRST = "b_first"
    UNRESOLVABLE = "unresolvable"


ApplyFn = Callable[[Any, Event], Any]
CommuteFn = Callable[[Event, Event], bool]
ResolveFn = Callable[[Event, Event], Resolution]


@runtime_checkable
class Reducer(Protocol):
    """
    Protocol for domain semantics.

    resolve may be None, meaning every non-commuting pair is a MergeConflict.
    """

    apply: ApplyFn
    commute: CommuteFn
    resolve: ResolveFn | None


@dataclass(frozen=True)
class FunctionReducer:
    """A Reducer assembled from plain functions."""

    apply: ApplyFn
    commute: CommuteFn
    resolve: ResolveFn | None = None

    def with_resolver(self, resolve: ResolveFn | None) -> FunctionReducer:
        """Same semantics, different tie-break policy."""
        return FunctionReducer(apply=self.apply, commute=self.commute, resolve=resolve)


# ---------------------------------------------------------------------------
# Resolver policies
# ---------------------------------------------------------------------------


def prefer_larger_id(event_a: Event, event_b: Event) -> Resolution:
    """Apply the event with the lexicographically larger id last, so it wins."""
    return Resolution.A_FIRST if event_a.id < event_b.id else Resolution.B_FIRST


def prefer_smaller_id(event_a: Event, event_b: Event) -> Resolution:
    """Apply the event with the lexicographically smaller id last, so it wins."""
    return Resolution.B_FIRST if event_a.id < event_b.id else Resolution.A_FIRST


def never_resolve(event_a: Event, event_b: Event) -> Resolution:
    return Resolution.UNRESOLVABLE


# ---------------------------------------------------------------------------
# Contract checks
# ---------------------------------------------------------------------------


def apply_all(reducer: Reducer, state: Any, events: list[Event]) -> Any:
    """Fold events through reducer.apply. Conflict propagates."""
    for event in events:
        state = reducer.apply(state, event)
    return state


def commutes_from(reducer: Reducer, state: Any, event_a: Event, event_b: Event) -> bool | None:
    """
    Check commutation empirically from one base state.

    Applies (a, b) and (b, a) and compares the results. Returns None when
    either order is rejected with a Conflict, since nothing can be concluded.
    """
    if event_a == event_b:
        return True
    try:
        ab = apply_all(reducer, state, [event_a, event_b])
        ba = apply_all(reducer, state, [event_b, event_a])
    except Conflict:
        return None
    return ab == ba
