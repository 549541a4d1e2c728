"""
Branch merge engine.

Merging n frontiers:

1. find the common-ancestor boundary and each branch's divergent events
2. evaluate commute() for every concurrent cross-branch pair (O(n² · m²))
3. collect non-commuting pairs into a conflict graph
4. ask the reducer to resolve each conflicting pair, or fail as a whole
5. build a canonical order: causal edges + new and recorded resolutions,
   smallest id first
6. replay that order from the boundary state
7. record one content-addressed merge event holding the order

Identical inputs always produce the same merge event id.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import MergeConflict
from .events import Event, MergeRecord, create_merge_event
from .graph import EventGraph
from .hashing import short_id
from .reducer import Reducer, Resolution
from .workcache import WorkCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConflict:
    """A non-commuting pair and the order the resolver chose for it."""

    first: str
    second: str

    def to_dict(self) -> dict[str, str]:
        return {"first": self.first, "second": self.second}


@dataclass(frozen=True)
class MergePlan:
    """Everything decided by a merge before the graph is touched."""

    frontiers: tuple[frozenset[str], ...]
    heads: frozenset[str]
    boundary: frozenset[str]
    divergent: tuple[tuple[str, ...], ...] = ()
    order: tuple[str, ...] = ()
    conflicts: tuple[ResolvedConflict, ...] = ()
    conflict_groups: tuple[tuple[str, ...], ...] = ()
    commute_evaluations: int = 0

    @property
    def fast_forward(self) -> bool:
        """True when the inputs collapse to at most one head; no merge event is needed."""
        return len(self.heads) <= 1

    def record(self) -> MergeRecord:
        return MergeRecord(
            boundary=self.boundary,
            order=self.order,
            resolutions=tuple((c.first, c.second) for c in self.conflicts),
        )


@dataclass(frozen=True)
class MergeOutcome:
    """Result of MergeEngine.merge()."""

    frontier: frozenset[str]
    state: Any
    plan: MergePlan
    event: Event | None = None
    created: bool = False  # False when the merge event already existed


class MergeEngine:
    """
    Merges frontiers of one graph under one reducer.

    workers > 1 evaluates commute() on a thread pool; results are assembled
    by pair index so the outcome does not depend on scheduling.
    """

    def __init__(
        self,
        graph: EventGraph,
        reducer: Reducer,
        cache: WorkCache,
        *,
        workers: int = 1,
    ):
        self.graph = graph
        self.reducer = reducer
        self.cache = cache
        self.workers = workers

    # -- planning --

    def plan(self, frontiers: Iterable[Iterable[str]]) -> MergePlan:
        """
        Decide boundary, conflicts and canonical order without mutating anything.

        Every head of the combined frontier is merged as its own branch, so
        concurrent heads inside one input frontier are commute-checked too.

        Raises:
            MergeConflict: a non-commuting pair could not be resolved, or
                recorded resolutions contradict each other
            UnknownEvent: a frontier names an event not in the graph
        """
        inputs = tuple(self.graph.require(f) for f in frontiers)
        if not inputs:
            raise ValueError("at least one frontier is required")

        heads = self.graph.minimal_frontier(frozenset().union(*inputs))
        if len(heads) <= 1:
            return MergePlan(frontiers=inputs, heads=heads, boundary=heads)

        fronts = tuple(frozenset({h}) for h in sorted(heads))
        closures = [self.graph.closure(f) for f in fronts]
        recorded = self.graph.recorded_resolutions(heads)
        base = self._base(set.intersection(*closures), recorded)
        boundary = frozenset(
            e for e in base if not (self.graph.children.get(e, set()) & base)
        )

        divergent = tuple(tuple(self.graph.causal_sort(c - base)) for c in closures)
        region = set().union(*divergent)
        ancestry = {
            e: self.graph.closure(self.graph.events[e].predecessors) & region for e in region
        }

        pairs = self._candidate_pairs(divergent, ancestry, closures)
        verdicts = self._evaluate(pairs)
        conflicting = [pair for pair, commutes in zip(pairs, verdicts) if not commutes]
        conflicts = self._resolve(conflicting)
        order = self.graph.resolved_order(
            region, [*recorded, *((c.first, c.second) for c in conflicts)]
        )

        return MergePlan(
            frontiers=fronts,
            heads=heads,
            boundary=boundary,
            divergent=divergent,
            order=tuple(order),
            conflicts=conflicts,
            conflict_groups=_components(conflicting),
            commute_evaluations=len(pairs),
        )

    def _base(self, common: set[str], recorded: set[tuple[str, str]]) -> set[str]:
        """
        Shared history replayed before the divergent region.

        An event that an earlier merge ordered after something outside the
        shared history moves into the region, together with its descendants,
        so that decision is replayed rather than overridden.
        """
        base = set(common)
        changed = True
        while changed:
            changed = False
            for first, second in sorted(recorded):
                if second in base and first not in base:
                    stack = [second]
                    while stack:
                        current = stack.pop()
                        if current in base:
                            base.discard(current)
                            stack.extend(self.graph.children.get(current, ()))
                    changed = True
        return base

    def _candidate_pairs(
        self,
        divergent: tuple[tuple[str, ...], ...],
        ancestry: dict[str, set[str]],
        closures: list[set[str]],
    ) -> list[tuple[str, str]]:
        """
        Unordered cross-branch pairs of concurrent commit events.

        Identical events, causally ordered events, merge markers and pairs
        already ordered inside one branch's history are skipped. Each pair is
        (smaller id, larger id).
        """
        events = self.graph.events
        seen: set[tuple[str, str]] = set()
        pairs: list[tuple[str, str]] = []

        for i, left in enumerate(divergent):
            for right in divergent[i + 1:]:
                for a in left:
                    if events[a].is_merge:
                        continue
                    for b in right:
                        if a == b or events[b].is_merge:
                            continue
                        pair = (a, b) if a < b else (b, a)
                        if pair in seen:
                            continue
                        seen.add(pair)
                        if a in ancestry[b] or b in ancestry[a]:
                            continue
                        if any(a in c and b in c for c in closures):
                            continue
                        pairs.append(pair)

        pairs.sort()
        return pairs

    def _evaluate(self, pairs: list[tuple[str, str]]) -> list[bool]:
        events = self.graph.events

        def check(pair: tuple[str, str]) -> bool:
            return bool(self.reducer.commute(events[pair[0]], events[pair[1]]))

        if self.workers > 1 and len(pairs) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                return list(pool.map(check, pairs))
        return [check(pair) for pair in pairs]

    def _resolve(self, conflicting: list[tuple[str, str]]) -> tuple[ResolvedConflict, ...]:
        events = self.graph.events
        resolve = getattr(self.reducer, "resolve", None)
        resolved: list[ResolvedConflict] = []
        unresolvable: list[tuple[str, str]] = []

        for a, b in conflicting:
            if resolve is None:
                decision = Resolution.UNRESOLVABLE
            else:
                decision = Resolution(resolve(events[a], events[b]))

            if decision is Resolution.UNRESOLVABLE:
                unresolvable.append((a, b))
            elif decision is Resolution.A_FIRST:
                resolved.append(ResolvedConflict(first=a, second=b))
            else:
                resolved.append(ResolvedConflict(first=b, second=a))

        if unresolvable:
            logger.info("merge aborted: %d unresolvable conflict(s)", len(unresolvable))
            a, b = unresolvable[0]
            raise MergeConflict(a, b, pairs=unresolvable)
        return tuple(resolved)

    # -- execution --

    def merge(self, frontiers: Iterable[Iterable[str]]) -> MergeOutcome:
        """
        Plan, replay and record a merge.

        The graph is only touched by the final admission of the merge event,
        so any failure before that leaves it unchanged. Admission advances
        every branch whose frontier holds one of the merged heads.
        """
        plan = self.plan(frontiers)
        if plan.fast_forward:
            return MergeOutcome(
                frontier=plan.heads,
                state=self.cache.state_for(plan.heads),
                plan=plan,
            )

        base_state = self.cache.base_state(plan.boundary, plan.heads)
        state = self.cache.replay(base_state, plan.order, during="merge replay")

        event = create_merge_event(plan.record(), plan.heads)
        created = self.graph.admit(event, exist_ok=True)
        frontier = frozenset({event.id})
        self.cache.put(frontier, state)

        logger.info(
            "merged %d frontiers into %s: %d divergent events, %d commute evaluations, %d resolved conflicts",
            len(plan.frontiers),
            short_id(event.id),
            len(plan.order),
            plan.commute_evaluations,
            len(plan.conflicts),
        )
        return MergeOutcome(frontier=frontier, state=state, plan=plan, event=event, created=created)


def _components(pairs: list[tuple[str, str]]) -> tuple[tuple[str, ...], ...]:
    """Connected components of the conflict graph, each sorted, ordered by first id."""
    adjacency: dict[str, set[str]] = defaultdict(set)
    for a, b in pairs:
        adjacency[a].add(b)
        adjacency[b].add(a)

    seen: set[str] = set()
    groups: list[tuple[str, ...]] = []
    for start in sorted(adjacency):
        if start in seen:
            continue
        component: set[str] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current in component:
                continue
            component.add(current)
            stack.extend(adjacency[current] - component)
        seen |= component
        groups.append(tuple(sorted(component)))
    return tuple(groups)


# ---------------------------------------------------------------------------
# Diagnostic query
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MergeReport:
    """Decisions recorded by a merge event, for diff and visualization tooling."""

    merge_id: str
    parents: tuple[str, ...]
    boundary: tuple[str, ...]
    order: tuple[str, ...]
    conflicts: tuple[ResolvedConflict, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "merge_id": self.merge_id,
            "parents": list(self.parents),
            "boundary": list(self.boundary),
            "order": list(self.order),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

    def format_summary(self) -> str:
        """Format the report as markdown."""
        lines = [
            f"# Merge {short_id(self.merge_id)}",
            "",
            f"- Parents: {', '.join(short_id(p) for p in self.parents)}",
            f"- Boundary: {', '.join(short_id(b) for b in self.boundary) or '(initial state)'}",
            f"- Replayed events: {len(self.order)}",
            f"- Resolved conflicts: {len(self.conflicts)}",
            "",
            "## Canonical Order",
            "",
            "| # | Event |",
            "|--:|-------|",
        ]
        for index, event_id in enumerate(self.order, start=1):
            lines.append(f"| {index} | {short_id(event_id)} |")

        if self.conflicts:
            lines.extend([
                "",
                "## Resolved Conflicts",
                "",
                "| Applied first | Applied second |",
                "|---------------|----------------|",
            ])
            for conflict in self.conflicts:
                lines.append(f"| {short_id(conflict.first)} | {short_id(conflict.second)} |")

        return "\n".join(lines) + "\n"


def describe_merge(graph: EventGraph, merge_id: str) -> MergeReport:
    """Resolved conflicts and canonical order recorded by a merge event."""
    event = graph.event(merge_id)
    record = MergeRecord.from_event(event)
    return MergeReport(
        merge_id=event.id,
        parents=tuple(sorted(event.predecessors)),
        boundary=tuple(sorted(record.boundary)),
        order=record.order,
        conflicts=tuple(ResolvedConflict(first=f, second=s) for f, s in record.resolutions),
    )
