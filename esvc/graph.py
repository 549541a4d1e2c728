"""
Causal event graph.

An append-only arena of events indexed by content-derived id. Predecessor
links are stored as ids, never as object references. The graph only grows;
named branch pointers are the only thing that moves.
"""

from __future__ import annotations

import heapq
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from .errors import (
    CorruptGraph,
    CycleDetected,
    DuplicateEvent,
    MergeConflict,
    MissingPredecessor,
    ReadOnlyGraph,
    UnknownBranch,
    UnknownEvent,
)
from .events import Event, MergeRecord, verify_id

logger = logging.getLogger(__name__)

GRAPH_FORMAT = "esvc-graph"
GRAPH_FORMAT_VERSION = 1


@dataclass
class EventGraph:
    """DAG of events with frontier, ancestry and branch queries."""

    events: dict[str, Event] = field(default_factory=dict)  # id -> Event
    children: dict[str, set[str]] = field(
        default_factory=lambda: defaultdict(set)
    )  # id -> ids that name it as predecessor
    depths: dict[str, int] = field(default_factory=dict)  # id -> longest path from a root
    branches: dict[str, frozenset[str]] = field(default_factory=dict)  # name -> frontier
    read_only: bool = False

    # -- basic access --

    def __len__(self) -> int:
        return len(self.events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self.events

    def get(self, event_id: str) -> Event | None:
        return self.events.get(event_id)

    def event(self, event_id: str) -> Event:
        """Look up an event, raising UnknownEvent if absent."""
        try:
            return self.events[event_id]
        except KeyError:
            raise UnknownEvent(event_id) from None

    def depth(self, event_id: str) -> int:
        return self.depths[self.event(event_id).id]

    def require(self, frontier: Iterable[str]) -> frozenset[str]:
        """Validate that every id is known and return them as a frozenset."""
        ids = frozenset(frontier)
        for event_id in sorted(ids):
            if event_id not in self.events:
                raise UnknownEvent(event_id)
        return ids

    def sort_key(self, event_id: str) -> tuple[int, str]:
        """Causal sort key: depth first, id as tie-break."""
        return (self.depths[event_id], event_id)

    def causal_sort(self, ids: Iterable[str]) -> list[str]:
        """Order ids so that predecessors always come before descendants."""
        return sorted(ids, key=self.sort_key)

    def iter_events(self) -> Iterator[Event]:
        """All events in causal order."""
        for event_id in self.causal_sort(self.events):
            yield self.events[event_id]

    # -- admission --

    def _check_writable(self) -> None:
        if self.read_only:
            raise ReadOnlyGraph("graph snapshot is read-only")

    def admit(self, event: Event, *, branch: str | None = None, exist_ok: bool = False) -> bool:
        """
        Insert an event.

        Args:
            event: event to insert; its id must match its content
            branch: if given, advance (or create) only this branch; otherwise every
                branch whose frontier holds one of the predecessors advances
            exist_ok: treat an already-present identical event as a no-op

        Returns:
            True if the event was inserted, False if it already existed

        Raises:
            DuplicateEvent: id already present and exist_ok is False
            MissingPredecessor: a predecessor is not in the graph
            CycleDetected, CorruptGraph: fatal integrity failures
        """
        self._check_writable()

        if not verify_id(event):
            raise CorruptGraph(f"event id {event.id} does not match its content")
        if event.id in event.predecessors:
            raise CycleDetected([event.id, event.id])

        if event.id in self.events:
            if not exist_ok:
                raise DuplicateEvent(event.id)
            logger.debug("event %s already present", event.id)
            if branch is not None:
                self._advance_branch(branch, event)
            return False

        missing = [p for p in event.predecessors if p not in self.events]
        if missing:
            raise MissingPredecessor(event.id, missing)

        if event.is_merge:
            self._check_merge_record(event)

        # With content-derived ids and every predecessor already present, the
        # new id cannot be an ancestor of its own predecessors.
        self.events[event.id] = event
        self.depths[event.id] = 1 + max((self.depths[p] for p in event.predecessors), default=-1)
        for pred in event.predecessors:
            self.children[pred].add(event.id)

        if branch is not None:
            self._advance_branch(branch, event)
        else:
            for name, frontier in list(self.branches.items()):
                if frontier & event.predecessors:
                    self._advance_branch(name, event)

        logger.debug("admitted %s event %s (depth %d)", event.kind, event.id, self.depths[event.id])
        return True

    def _advance_branch(self, branch: str, event: Event) -> None:
        current = self.branches.get(branch, frozenset())
        self.branches[branch] = (current - event.predecessors) | {event.id}

    def _check_merge_record(self, event: Event) -> None:
        """A merge event's recorded order must cover exactly its divergent region."""
        record = MergeRecord.from_event(event)
        unknown = [e for e in (*record.boundary, *record.order) if e not in self.events]
        if unknown:
            raise CorruptGraph(f"merge event {event.id} references unknown events: {', '.join(sorted(unknown))}")

        reachable = self.closure(event.predecessors)
        base = self.closure(record.boundary)
        if not base <= reachable:
            raise CorruptGraph(f"merge event {event.id} has a boundary outside its history")
        if len(set(record.order)) != len(record.order) or set(record.order) != reachable - base:
            raise CorruptGraph(f"merge event {event.id} order does not match its divergent events")

    # -- ancestry --

    def ancestors(self, event_id: str, *, include_self: bool = False) -> Iterator[str]:
        """
        Lazily yield all causal ancestors of an event.

        Order is reverse-causal: every event is yielded before any of its own
        ancestors (descending depth, ties broken by ascending id). Each call
        returns a fresh iterator.
        """
        self.event(event_id)
        return self._iter_ancestors(event_id, include_self)

    def _iter_ancestors(self, event_id: str, include_self: bool) -> Iterator[str]:
        seen = {event_id}
        heap: list[tuple[int, str]] = []
        if include_self:
            heap.append((-self.depths[event_id], event_id))
        else:
            for pred in self.events[event_id].predecessors:
                seen.add(pred)
                heap.append((-self.depths[pred], pred))
        heapq.heapify(heap)

        while heap:
            _, current = heapq.heappop(heap)
            yield current
            for pred in self.events[current].predecessors:
                if pred not in seen:
                    seen.add(pred)
                    heapq.heappush(heap, (-self.depths[pred], pred))

    def closure(self, frontier: Iterable[str]) -> set[str]:
        """All events reachable from the frontier, the frontier included."""
        visited: set[str] = set()
        stack = list(self.require(frontier))

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for pred in self.events[current].predecessors:
                if pred not in visited:
                    stack.append(pred)

        return visited

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """True when `ancestor` is a strict causal ancestor of `descendant`."""
        self.require((ancestor, descendant))
        if ancestor == descendant:
            return False

        floor = self.depths[ancestor]
        visited: set[str] = set()
        stack = list(self.events[descendant].predecessors)
        while stack:
            current = stack.pop()
            if current == ancestor:
                return True
            if current in visited or self.depths[current] <= floor:
                continue
            visited.add(current)
            stack.extend(self.events[current].predecessors)
        return False

    def minimal_frontier(self, ids: Iterable[str]) -> frozenset[str]:
        """Drop ids that are ancestors of other ids in the set."""
        ids = self.require(ids)
        strict: set[str] = set()
        for event_id in ids:
            strict |= self.closure(self.events[event_id].predecessors)
        return ids - strict

    def lowest_common_ancestor(self, *frontiers: Iterable[str]) -> frozenset[str]:
        """
        Maximal events that are ancestors of (or inside) every frontier.

        An empty result means the frontiers share nothing but the initial state.
        """
        if not frontiers:
            raise ValueError("at least one frontier is required")

        closures = [self.closure(f) for f in frontiers]
        common = set.intersection(*closures)
        return frozenset(
            event_id for event_id in common if not (self.children.get(event_id, set()) & common)
        )

    def heads(self) -> frozenset[str]:
        """Graph-wide leaves: events with no descendants."""
        return frozenset(e for e in self.events if not self.children.get(e))

    def execution_order(self, frontier: Iterable[str]) -> list[str]:
        """
        Replay sequence for a frontier's full history.

        Commit events follow their predecessors; a merge event expands to its
        boundary followed by its recorded order, so resolved conflicts replay
        exactly as decided. A frontier with several unmerged heads is ordered
        by resolved_order() so decisions recorded anywhere in its history hold.
        """
        heads = self.require(frontier)
        if len(heads) > 1:
            return self.resolved_order(self.closure(heads), self.recorded_resolutions(heads))

        done: set[str] = set()
        active: set[str] = set()
        order: list[str] = []
        stack: list[tuple[str, bool]] = [
            (h, False) for h in sorted(heads, key=self.sort_key, reverse=True)
        ]

        while stack:
            current, expanded = stack.pop()
            if current in done:
                continue
            if expanded:
                active.discard(current)
                done.add(current)
                order.append(current)
                continue
            if current in active:
                raise CycleDetected([current, current])

            active.add(current)
            stack.append((current, True))
            event = self.events[current]
            if event.is_merge:
                record = MergeRecord.from_event(event)
                stack.extend((dep, False) for dep in reversed(record.order))
                if len(record.boundary) > 1:
                    base = self.resolved_order(
                        self.closure(record.boundary), self.recorded_resolutions(event.predecessors)
                    )
                    stack.extend((dep, False) for dep in reversed(base))
                else:
                    stack.extend((dep, False) for dep in record.boundary)
            else:
                stack.extend(
                    (dep, False) for dep in sorted(event.predecessors, key=self.sort_key, reverse=True)
                )

        return order

    def recorded_resolutions(self, frontier: Iterable[str]) -> set[tuple[str, str]]:
        """(first, second) pairs decided by every merge event in the frontier's history."""
        pairs: set[tuple[str, str]] = set()
        for event_id in self.closure(frontier):
            event = self.events[event_id]
            if event.is_merge:
                pairs.update(MergeRecord.from_event(event).resolutions)
        return pairs

    def resolved_order(
        self,
        ids: Iterable[str],
        resolutions: Iterable[tuple[str, str]] = (),
    ) -> list[str]:
        """
        Kahn's algorithm over ids, smallest id first.

        Edges are the causal links inside ids plus every (first, second)
        resolution whose two events are both in ids.

        Raises:
            MergeConflict: the resolutions contradict each other or causal order
        """
        members = set(ids)
        successors: dict[str, set[str]] = defaultdict(set)
        in_degree = {e: 0 for e in members}

        def add_edge(before: str, after: str) -> None:
            if after not in successors[before]:
                successors[before].add(after)
                in_degree[after] += 1

        for event_id in members:
            for pred in self.events[event_id].predecessors:
                if pred in members:
                    add_edge(pred, event_id)
        for first, second in resolutions:
            if first in members and second in members:
                add_edge(first, second)

        heap = [e for e, n in in_degree.items() if n == 0]
        heapq.heapify(heap)
        order: list[str] = []
        while heap:
            current = heapq.heappop(heap)
            order.append(current)
            for nxt in successors.get(current, ()):
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    heapq.heappush(heap, nxt)

        if len(order) != len(members):
            stuck = sorted(e for e, n in in_degree.items() if n > 0)
            other = stuck[1] if len(stuck) > 1 else stuck[0]
            raise MergeConflict(
                stuck[0],
                other,
                pairs=[(stuck[0], other)],
                reason="conflict resolutions contradict causal order",
            )
        return order

    # -- branches --

    def branch(self, name: str) -> frozenset[str]:
        try:
            return self.branches[name]
        except KeyError:
            raise UnknownBranch(name) from None

    def set_branch(self, name: str, frontier: Iterable[str]) -> frozenset[str]:
        """Point a branch at a frontier (reduced to its maximal events)."""
        self._check_writable()
        heads = self.minimal_frontier(frontier)
        self.branches[name] = heads
        return heads

    # -- integrity --

    def verify(self) -> None:
        """
        Full structural check: ids match content, predecessors exist, no cycles.

        Raises CorruptGraph, MissingPredecessor or CycleDetected.
        """
        for event in self.events.values():
            if not verify_id(event):
                raise CorruptGraph(f"event id {event.id} does not match its content")
            missing = [p for p in event.predecessors if p not in self.events]
            if missing:
                raise MissingPredecessor(event.id, missing)

        # Kahn's algorithm: in_degree[x] = number of predecessors of x
        in_degree = {e: len(ev.predecessors) for e, ev in self.events.items()}
        queue = [e for e, n in in_degree.items() if n == 0]
        visited = 0
        while queue:
            current = queue.pop()
            visited += 1
            for child in self.children.get(current, set()):
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    queue.append(child)

        if visited != len(self.events):
            raise CycleDetected(sorted(e for e, n in in_degree.items() if n > 0))

        for name, frontier in self.branches.items():
            unknown = [e for e in frontier if e not in self.events]
            if unknown:
                raise CorruptGraph(f"branch '{name}' points at unknown events: {', '.join(sorted(unknown))}")

    def snapshot(self) -> EventGraph:
        """Read-only copy that can be shared with concurrent readers."""
        children: dict[str, set[str]] = defaultdict(set)
        for event_id, kids in self.children.items():
            children[event_id] = set(kids)
        return EventGraph(
            events=dict(self.events),
            children=children,
            depths=dict(self.depths),
            branches=dict(self.branches),
            read_only=True,
        )

    def copy(self) -> EventGraph:
        """Writable copy."""
        clone = self.snapshot()
        clone.read_only = False
        return clone

    # -- serialization --

    def to_records(self) -> list[dict[str, Any]]:
        """Event records in causal order."""
        return [event.to_dict() for event in self.iter_events()]

    @classmethod
    def from_records(
        cls,
        records: Iterable[dict[str, Any]],
        branches: dict[str, Iterable[str]] | None = None,
    ) -> EventGraph:
        """
        Build a graph from event records.

        Records may arrive in any order; each is admitted once all of its
        predecessors are present.
        """
        graph = cls()
        pending = {}
        for record in records:
            event = Event.from_dict(record)
            pending[event.id] = event

        while pending:
            ready = [
                event_id
                for event_id, event in pending.items()
                if all(p in graph.events for p in event.predecessors)
            ]
            if not ready:
                break
            for event_id in sorted(ready):
                graph.admit(pending.pop(event_id), exist_ok=True)

        if pending:
            for event_id in sorted(pending):
                outside = [
                    p for p in pending[event_id].predecessors
                    if p not in graph.events and p not in pending
                ]
                if outside:
                    raise MissingPredecessor(event_id, outside)
            raise CycleDetected(sorted(pending))

        for name, frontier in (branches or {}).items():
            graph.set_branch(name, frontier)

        logger.debug("loaded graph with %d events and %d branches", len(graph), len(graph.branches))
        return graph

    def dumps(self) -> bytes:
        """
        Serialize to JSON Lines bytes.

        First line is a header carrying the branch pointers; each following
        line is one event, in causal order.
        """
        header = {
            "format": GRAPH_FORMAT,
            "version": GRAPH_FORMAT_VERSION,
            "branches": {name: sorted(f) for name, f in sorted(self.branches.items())},
        }
        lines = [json.dumps(header, sort_keys=True, separators=(",", ":"))]
        lines.extend(event.to_json() for event in self.iter_events())
        return ("\n".join(lines) + "\n").encode("utf-8")

    @classmethod
    def loads(cls, data: bytes | str) -> EventGraph:
        """Parse bytes produced by dumps()."""
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            return cls()

        try:
            header = json.loads(lines[0])
            records = [json.loads(line) for line in lines[1:]]
        except json.JSONDecodeError as e:
            raise CorruptGraph(f"malformed graph data: {e}") from e

        if not isinstance(header, dict) or header.get("format") != GRAPH_FORMAT:
            raise CorruptGraph("missing esvc-graph header")
        if header.get("version") != GRAPH_FORMAT_VERSION:
            raise CorruptGraph(f"unsupported graph format version: {header.get('version')}")

        return cls.from_records(records, header.get("branches") or {})
