"""
Working copy: a named branch bound to a frontier and its reduced state.

All mutating operations hold a re-entrant lock for their whole duration and
are all-or-nothing: on any error the graph, the branch pointers and the
working copy are left as they were.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from .config import EngineConfig
from .errors import ReadOnlyGraph, UnknownBranch, UnknownEvent, UnmergedFrontier
from .events import Event, create_event
from .graph import EventGraph
from .hashing import is_event_id, short_id
from .merge import MergeEngine, MergeOutcome
from .reducer import Reducer
from .store import GraphStore
from .workcache import WorkCache

logger = logging.getLogger(__name__)

FrontierRef = str | Iterable[str]  # branch name, single event id, or ids


@dataclass(frozen=True)
class Snapshot:
    """Read-only view for concurrent readers."""

    graph: EventGraph
    branch: str
    frontier: frozenset[str]
    state: Any


class WorkingCopy:
    """
    Single-writer session over an event graph.

    The branch pointer always mirrors the working copy's frontier: commit,
    merge and checkout move both together.
    """

    def __init__(
        self,
        graph: EventGraph,
        reducer: Reducer,
        initial_state: Any,
        *,
        branch: str | None = None,
        config: EngineConfig | None = None,
        store: GraphStore | None = None,
    ):
        self.config = config or EngineConfig()
        self.graph = graph
        self.reducer = reducer
        self.store = store
        self.cache = WorkCache(
            graph, reducer, initial_state, max_entries=self.config.state_cache_size
        )
        self.engine = MergeEngine(graph, reducer, self.cache, workers=self.config.workers)
        self._lock = threading.RLock()
        self._closed = False

        self._branch = branch or self.config.default_branch
        self._frontier = graph.branches.get(self._branch, frozenset())
        if self._branch not in graph.branches and not graph.read_only:
            graph.branches[self._branch] = self._frontier
        self._state = self.cache.state_for(self._frontier)

    @classmethod
    def open(
        cls,
        graph: EventGraph | None,
        reducer: Reducer,
        initial_state: Any,
        *,
        branch: str | None = None,
        config: EngineConfig | None = None,
        store: GraphStore | None = None,
    ) -> WorkingCopy:
        """
        Open a working copy over a fully loaded graph.

        With graph=None the graph is loaded from the store (empty if the store
        has nothing yet).
        """
        if graph is None:
            data = store.load() if store is not None else None
            graph = EventGraph.loads(data) if data else EventGraph()
        wc = cls(graph, reducer, initial_state, branch=branch, config=config, store=store)
        logger.debug("opened branch '%s' at %d event(s)", wc.branch, len(graph))
        return wc

    # -- read access --

    @property
    def frontier(self) -> frozenset[str]:
        return self._frontier

    @property
    def state(self) -> Any:
        return self._state

    @property
    def branch(self) -> str:
        return self._branch

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                graph=self.graph.snapshot(),
                branch=self._branch,
                frontier=self._frontier,
                state=self._state,
            )

    def log(self, limit: int | None = None) -> list[Event]:
        """History of the current frontier, newest first."""
        with self._lock:
            ids = self.graph.closure(self._frontier)
        ordered = sorted(ids, key=lambda e: (-self.graph.depths[e], e))
        if limit is not None:
            ordered = ordered[:limit]
        return [self.graph.events[e] for e in ordered]

    # -- mutation --

    def _check_writable(self) -> None:
        if self._closed:
            raise RuntimeError("working copy is closed")
        if self.graph.read_only:
            raise ReadOnlyGraph("working copy is bound to a read-only graph")

    def _resolve(self, target: FrontierRef) -> frozenset[str]:
        """Branch name, event id or iterable of ids -> minimal frontier."""
        if isinstance(target, str):
            if target in self.graph.branches:
                return self.graph.branches[target]
            if target in self.graph:
                return frozenset({target})
            if is_event_id(target):
                raise UnknownEvent(target)
            raise UnknownBranch(target)
        return self.graph.minimal_frontier(target)

    def _move(self, frontier: frozenset[str], state: Any) -> None:
        self._frontier = frontier
        self._state = state
        self.graph.branches[self._branch] = frontier

    def commit(self, payload: Any) -> Event:
        """
        Apply a payload on top of the current frontier.

        Raises:
            Conflict: the reducer refused the event; nothing changed
            UnmergedFrontier: the frontier has several heads; merge them first
            ValueError: payload is not JSON-compatible
        """
        with self._lock:
            self._check_writable()
            if len(self._frontier) > 1:
                raise UnmergedFrontier(self._frontier)
            event = create_event(payload, self._frontier)
            state = self.reducer.apply(self._state, event)

            self.graph.admit(event, branch=self._branch, exist_ok=True)
            frontier = frozenset({event.id})
            self.cache.put(frontier, state)
            self._move(frontier, state)
            logger.debug("committed %s on '%s'", short_id(event.id), self._branch)
            return event

    def checkout(self, target: FrontierRef) -> Any:
        """
        Move the working copy (and its branch) to another frontier.

        Returns the state at that frontier.
        """
        with self._lock:
            self._check_writable()
            frontier = self._resolve(target)
            state = self.cache.state_for(frontier)
            self._move(frontier, state)
            logger.debug("checked out %d head(s) on '%s'", len(frontier), self._branch)
            return state

    def merge(self, *others: FrontierRef) -> MergeOutcome:
        """Merge other branches or frontiers into the current one."""
        with self._lock:
            self._check_writable()
            frontiers = [self._frontier, *(self._resolve(o) for o in others)]
            outcome = self.engine.merge(frontiers)
            self._move(outcome.frontier, outcome.state)
            return outcome

    def fork(self, name: str) -> frozenset[str]:
        """Create a new branch at the current frontier without switching to it."""
        with self._lock:
            self._check_writable()
            if name in self.graph.branches:
                raise ValueError(f"branch '{name}' already exists")
            self.graph.branches[name] = self._frontier
            return self._frontier

    def switch(self, name: str) -> Any:
        """Bind the working copy to an existing branch. Returns its state."""
        with self._lock:
            self._check_writable()
            frontier = self.graph.branch(name)
            state = self.cache.state_for(frontier)
            self._branch = name
            self._frontier = frontier
            self._state = state
            return state

    def close(self) -> EventGraph:
        """Flush the graph to the attached store (if any) and release the copy."""
        with self._lock:
            if not self._closed:
                if self.store is not None:
                    self.store.save(self.graph.dumps())
                self._closed = True
                logger.debug("closed branch '%s' with %d event(s)", self._branch, len(self.graph))
            return self.graph


@contextmanager
def open_working_copy(
    store: GraphStore,
    reducer: Reducer,
    initial_state: Any,
    *,
    branch: str | None = None,
    config: EngineConfig | None = None,
) -> Iterator[WorkingCopy]:
    """
    Scoped working copy: loads the graph from the store on entry and flushes
    it back on every exit path, including errors.
    """
    wc = WorkingCopy.open(None, reducer, initial_state, branch=branch, config=config, store=store)
    try:
        yield wc
    finally:
        wc.close()
