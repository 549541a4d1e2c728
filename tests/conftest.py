"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any, Callable, Iterable

import pytest

from esvc.events import Event, create_event
from esvc.graph import EventGraph
from esvc.reducer import prefer_larger_id
from esvc.reducers import KV_REDUCER
from esvc.workcopy import WorkingCopy


@pytest.fixture
def graph() -> EventGraph:
    """Empty, writable event graph."""
    return EventGraph()


@pytest.fixture
def commit(graph: EventGraph) -> Callable[..., Event]:
    """Admit a commit event directly into the graph, bypassing any reducer."""

    def _commit(payload: Any, preds: Iterable[str] = (), *, branch: str | None = None) -> Event:
        event = create_event(payload, preds)
        graph.admit(event, branch=branch)
        return event

    return _commit


@pytest.fixture
def diamond(graph: EventGraph, commit: Callable[..., Event]) -> dict[str, Event]:
    """
    a -> b, a -> c, (b, c) -> d

        a
       / \\
      b   c
       \\ /
        d
    """
    a = commit("a")
    b = commit("b", [a.id])
    c = commit("c", [a.id])
    d = commit("d", [b.id, c.id])
    return {"a": a, "b": b, "c": c, "d": d}


@pytest.fixture
def kv_copy() -> WorkingCopy:
    """Key/value working copy on branch 'main' with no conflict resolver."""
    return WorkingCopy.open(EventGraph(), KV_REDUCER, {})


@pytest.fixture
def resolving_kv_copy() -> WorkingCopy:
    """Key/value working copy whose conflicts are resolved by larger id."""
    return WorkingCopy.open(EventGraph(), KV_REDUCER.with_resolver(prefer_larger_id), {})
