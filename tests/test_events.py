from dataclasses import replace

import pytest

from esvc.errors import CorruptGraph
from esvc.events import (
    COMMIT,
    MERGE,
    Event,
    MergeRecord,
    create_event,
    create_merge_event,
    verify_id,
)
from esvc.hashing import is_event_id


class TestCreateEvent:
    def test_id_is_content_derived(self) -> None:
        event = create_event({"op": "set", "key": "x", "value": 1})
        assert is_event_id(event.id)
        assert verify_id(event)
        assert event.kind == COMMIT
        assert event.is_root

    def test_identical_content_gives_identical_id(self) -> None:
        a = create_event({"k": 1}, ["p1", "p2"])
        b = create_event({"k": 1}, ["p2", "p1"])
        assert a.id == b.id
        assert a == b

    def test_predecessors_change_the_id(self) -> None:
        root = create_event("root")
        assert create_event("x").id != create_event("x", [root.id]).id

    def test_kind_is_hashed(self) -> None:
        payload = {"boundary": [], "order": [], "resolutions": []}
        assert create_event(payload).id != create_event(payload, kind=MERGE).id

    def test_invalid_kind(self) -> None:
        with pytest.raises(ValueError, match="Invalid event kind"):
            create_event("x", kind="rebase")

    def test_payload_must_be_json_compatible(self) -> None:
        with pytest.raises(ValueError, match="JSON-serializable"):
            create_event({"value": object()})

    def test_predecessors_coerced_to_frozenset(self) -> None:
        event = Event(id="x", kind=COMMIT, payload=None, predecessors=["a", "b"])
        assert event.predecessors == frozenset({"a", "b"})


class TestSerialization:
    def test_dict_round_trip(self) -> None:
        root = create_event("root")
        event = create_event({"n": [1, 2]}, [root.id])
        assert Event.from_dict(event.to_dict()) == event

    def test_json_round_trip(self) -> None:
        event = create_event({"text": "héllo"})
        assert Event.from_json(event.to_json()) == event

    def test_predecessors_serialized_sorted(self) -> None:
        event = create_event("x", ["b", "a", "c"])
        assert event.to_dict()["predecessors"] == ["a", "b", "c"]

    def test_missing_field_is_corrupt(self) -> None:
        with pytest.raises(CorruptGraph, match="malformed event record"):
            Event.from_dict({"kind": COMMIT, "payload": 1})

    def test_tampered_payload_fails_verification(self) -> None:
        event = create_event({"value": 1})
        assert not verify_id(replace(event, payload={"value": 2}))


class TestMergeRecord:
    def test_payload_round_trip(self) -> None:
        record = MergeRecord(
            boundary=frozenset({"b2", "b1"}),
            order=("x", "y"),
            resolutions=(("x", "y"),),
        )
        event = create_merge_event(record, ["x", "y"])
        assert event.is_merge
        assert event.payload["boundary"] == ["b1", "b2"]
        assert MergeRecord.from_event(event) == record

    def test_commit_event_is_not_a_merge(self) -> None:
        with pytest.raises(ValueError, match="not a merge event"):
            MergeRecord.from_event(create_event("x"))

    def test_malformed_merge_payload(self) -> None:
        with pytest.raises(CorruptGraph):
            MergeRecord.from_event(create_event("nope", kind=MERGE))
        with pytest.raises(CorruptGraph):
            MergeRecord.from_event(create_event({"boundary": []}, kind=MERGE))
