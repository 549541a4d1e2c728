"""
Per-frontier state cache.

States are never stored in the graph; they are derived by replay and cached
by frontier. A lookup walks back to the nearest cached ancestor (or the
initial state) and replays forward from there.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Iterable

from .errors import Conflict, ReducerContractViolation
from .events import Event, MergeRecord
from .graph import EventGraph
from .reducer import Reducer

logger = logging.getLogger(__name__)

ROOT: frozenset[str] = frozenset()


class WorkCache:
    """
    LRU cache of reduced states keyed by frontier.

    The initial state (empty frontier) is pinned and never evicted. Cached
    states are shared, so reducers must return new objects rather than
    mutating their input.
    """

    def __init__(
        self,
        graph: EventGraph,
        reducer: Reducer,
        initial_state: Any,
        *,
        max_entries: int = 256,
    ):
        if max_entries < 2:
            raise ValueError("max_entries must be at least 2")
        self.graph = graph
        self.reducer = reducer
        self.initial_state = initial_state
        self.max_entries = max_entries
        self._states: OrderedDict[frozenset[str], Any] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._states) + 1

    def __contains__(self, frontier: object) -> bool:
        return frontier == ROOT or frontier in self._states

    def put(self, frontier: Iterable[str], state: Any) -> None:
        key = frozenset(frontier)
        if key == ROOT:
            return
        self._states[key] = state
        self._states.move_to_end(key)
        while len(self._states) > self.max_entries:
            evicted, _ = self._states.popitem(last=False)
            logger.debug("evicted cached state for %d-head frontier", len(evicted))

    def _get(self, key: frozenset[str]) -> Any:
        if key == ROOT:
            return self.initial_state
        state = self._states[key]
        self._states.move_to_end(key)
        return state

    def clear(self) -> None:
        self._states.clear()

    # -- replay --

    def apply_event(self, state: Any, event: Event, *, during: str = "replay") -> Any:
        """Apply an already-accepted event; a Conflict here is a contract breach."""
        try:
            return self.reducer.apply(state, event)
        except Conflict as e:
            logger.error("reducer rejected accepted event %s: %s", event.id, e.reason)
            raise ReducerContractViolation(event.id, e, during=during) from e

    def replay(self, state: Any, event_ids: Iterable[str], *, during: str = "replay") -> Any:
        """Apply commit events in the given order, skipping merge markers."""
        for event_id in event_ids:
            event = self.graph.events[event_id]
            if not event.is_merge:
                state = self.apply_event(state, event, during=during)
        return state

    def state_for(self, frontier: Iterable[str]) -> Any:
        """
        Reduced state at a frontier.

        Single-head frontiers replay from the nearest cached ancestor. Frontiers
        with several heads that were never merged replay their execution order
        from the initial state.
        """
        target = self.graph.require(frontier)
        if target in self:
            self.hits += 1
            return self._get(target)

        self.misses += 1
        stack = [target]
        while stack:
            key = stack[-1]
            if key in self:
                stack.pop()
                continue
            needed = self._requirement(key)
            if needed is not None and needed not in self:
                stack.append(needed)
                continue
            self.put(key, self._compute(key))
            stack.pop()

        return self._get(target)

    def base_state(self, boundary: Iterable[str], context: Iterable[str]) -> Any:
        """
        State of a merge boundary as seen from the merged heads in `context`.

        A boundary with several heads is replayed in an order that honours
        every resolution recorded in the context's history. That state depends
        on the context, so it is not cached under the boundary itself.
        """
        key = self.graph.require(boundary)
        if len(key) <= 1:
            return self.state_for(key)
        order = self.graph.resolved_order(
            self.graph.closure(key), self.graph.recorded_resolutions(context)
        )
        logger.debug("replaying %d-head merge boundary from the initial state", len(key))
        return self.replay(self.initial_state, order)

    def _requirement(self, key: frozenset[str]) -> frozenset[str] | None:
        """The frontier whose state must be known before `key` can be computed."""
        if len(key) != 1:
            return None
        (event_id,) = key
        event = self.graph.events[event_id]
        if event.is_merge:
            boundary = MergeRecord.from_event(event).boundary
            return boundary if len(boundary) <= 1 else None
        return event.predecessors

    def _compute(self, key: frozenset[str]) -> Any:
        if len(key) > 1:
            logger.debug("replaying %d-head frontier from the initial state", len(key))
            return self.replay(self.initial_state, self.graph.execution_order(key))

        (event_id,) = key
        event = self.graph.events[event_id]
        if event.is_merge:
            record = MergeRecord.from_event(event)
            return self.replay(self.base_state(record.boundary, event.predecessors), record.order)
        return self.apply_event(self._get(event.predecessors), event)
