"""
Immutable event records.

Events are the atomic unit of history. Each one names its causal
predecessors by id; state is computed by folding events, never by
mutating prior entries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import CorruptGraph
from .hashing import canonical_json, compute_hash

# Event kinds
COMMIT = "commit"
MERGE = "merge"

EVENT_KINDS = frozenset({COMMIT, MERGE})


@dataclass(frozen=True)
class Event:
    """
    Immutable event in the causal graph.

    The id is derived from (kind, payload, predecessors); build events with
    create_event() rather than by hand.
    """

    id: str
    kind: str  # One of EVENT_KINDS
    payload: Any
    predecessors: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Invalid event kind: {self.kind}")
        if not isinstance(self.predecessors, frozenset):
            object.__setattr__(self, "predecessors", frozenset(self.predecessors))

    @property
    def is_merge(self) -> bool:
        return self.kind == MERGE

    @property
    def is_root(self) -> bool:
        return not self.predecessors

    def content(self) -> dict[str, Any]:
        """The hashed portion of the event."""
        return {
            "kind": self.kind,
            "payload": self.payload,
            "predecessors": sorted(self.predecessors),
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "predecessors": sorted(self.predecessors),
        }

    def to_json(self) -> str:
        """Serialize to JSON string (single line)."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Reconstruct from JSON dict. The id is taken as given; see verify_id()."""
        try:
            return cls(
                id=data["id"],
                kind=data["kind"],
                payload=data.get("payload"),
                predecessors=frozenset(data.get("predecessors", [])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptGraph(f"malformed event record: {e}") from e

    @classmethod
    def from_json(cls, line: str) -> Event:
        return cls.from_dict(json.loads(line))


def event_id_for(kind: str, payload: Any, predecessors: Iterable[str]) -> str:
    """Compute the content-derived id without building the event."""
    try:
        encoded = canonical_json(
            {"kind": kind, "payload": payload, "predecessors": sorted(predecessors)}
        )
    except TypeError as e:
        raise ValueError(f"event payload is not JSON-serializable: {e}") from e
    return compute_hash(encoded)


def verify_id(event: Event) -> bool:
    """True when the event's id matches its content."""
    return event_id_for(event.kind, event.payload, event.predecessors) == event.id


def create_event(
    payload: Any,
    predecessors: Iterable[str] = (),
    *,
    kind: str = COMMIT,
) -> Event:
    """
    Factory function for creating events.

    The payload must be JSON-compatible. Tuples are hashed as lists, so prefer
    lists and dicts for payloads that must compare equal after a reload.
    """
    preds = frozenset(predecessors)
    return Event(
        id=event_id_for(kind, payload, preds),
        kind=kind,
        payload=payload,
        predecessors=preds,
    )


# ---------------------------------------------------------------------------
# Merge payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MergeRecord:
    """
    Decoded payload of a merge event.

    boundary: common-ancestor frontier the merge replays from
    order: canonical order of the divergent events
    resolutions: (first, second) pairs decided by the resolver
    """

    boundary: frozenset[str]
    order: tuple[str, ...]
    resolutions: tuple[tuple[str, str], ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "boundary": sorted(self.boundary),
            "order": list(self.order),
            "resolutions": [list(pair) for pair in self.resolutions],
        }

    @classmethod
    def from_event(cls, event: Event) -> MergeRecord:
        if not event.is_merge:
            raise ValueError(f"event {event.id} is not a merge event")
        payload = event.payload
        if not isinstance(payload, dict):
            raise CorruptGraph(f"merge event {event.id} has a non-object payload")
        try:
            return cls(
                boundary=frozenset(payload.get("boundary", [])),
                order=tuple(payload["order"]),
                resolutions=tuple((first, second) for first, second in payload.get("resolutions", [])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptGraph(f"malformed merge payload in {event.id}: {e}") from e


def create_merge_event(record: MergeRecord, predecessors: Iterable[str]) -> Event:
    return create_event(record.to_payload(), predecessors, kind=MERGE)
