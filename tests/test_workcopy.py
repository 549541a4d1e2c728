"""Tests for the working copy: commit, checkout, branches, snapshots, persistence."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from esvc.config import EngineConfig
from esvc.errors import Conflict, ReadOnlyGraph, UnknownBranch, UnknownEvent, UnmergedFrontier
from esvc.graph import EventGraph
from esvc.reducers import KV_REDUCER, delete_key, incr_key, set_key
from esvc.store import FileGraphStore, MemoryGraphStore
from esvc.workcopy import WorkingCopy, open_working_copy


class TestCommit:
    def test_commit_advances_frontier_and_branch(self, kv_copy) -> None:
        first = kv_copy.commit(set_key("x", 1))
        second = kv_copy.commit(incr_key("x"))

        assert first.is_root
        assert second.predecessors == frozenset({first.id})
        assert kv_copy.frontier == frozenset({second.id})
        assert kv_copy.graph.branch("main") == kv_copy.frontier
        assert kv_copy.state == {"x": 2}

    def test_conflict_leaves_everything_unchanged(self, kv_copy) -> None:
        kv_copy.commit(set_key("x", 1))
        before = (len(kv_copy.graph), kv_copy.frontier, kv_copy.state)

        with pytest.raises(Conflict, match="KEY_NOT_FOUND"):
            kv_copy.commit(delete_key("missing"))
        assert (len(kv_copy.graph), kv_copy.frontier, kv_copy.state) == before

    def test_non_json_payload_rejected(self, kv_copy) -> None:
        with pytest.raises(ValueError):
            kv_copy.commit({"op": "set", "key": "x", "value": {1, 2}})
        assert len(kv_copy.graph) == 0

    def test_identical_commit_on_two_branches_is_one_event(self, kv_copy) -> None:
        kv_copy.fork("twin")
        a = kv_copy.commit(set_key("x", 1))
        kv_copy.switch("twin")
        b = kv_copy.commit(set_key("x", 1))
        assert a.id == b.id
        assert len(kv_copy.graph) == 1

    def test_commit_leaves_forked_branch_in_place(self, kv_copy) -> None:
        base = kv_copy.commit(set_key("x", 1))
        kv_copy.fork("twin")
        kv_copy.commit(set_key("x", 2))
        assert kv_copy.graph.branch("twin") == frozenset({base.id})

    def test_commit_on_unmerged_heads_rejected(self, kv_copy) -> None:
        kv_copy.fork("other")
        a = kv_copy.commit(set_key("x", 1))
        kv_copy.switch("other")
        b = kv_copy.commit(set_key("y", 2))
        kv_copy.checkout([a.id, b.id])
        before = (len(kv_copy.graph), kv_copy.frontier, kv_copy.state)

        with pytest.raises(UnmergedFrontier, match="2 unmerged heads"):
            kv_copy.commit(set_key("z", 3))
        assert (len(kv_copy.graph), kv_copy.frontier, kv_copy.state) == before

        merge = kv_copy.merge().event
        assert kv_copy.commit(set_key("z", 3)).predecessors == frozenset({merge.id})

    def test_concurrent_commits_are_serialized(self, kv_copy) -> None:
        def worker() -> None:
            for _ in range(10):
                kv_copy.commit({"op": "incr", "key": "n", "by": 1, "t": threading.get_ident()})

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert kv_copy.state == {"n": 40}
        assert len(kv_copy.graph) == 40
        assert len(kv_copy.frontier) == 1


class TestCheckout:
    def test_checkout_event_id(self, kv_copy) -> None:
        first = kv_copy.commit(set_key("x", 1))
        kv_copy.commit(set_key("y", 2))

        assert kv_copy.checkout(first.id) == {"x": 1}
        assert kv_copy.frontier == frozenset({first.id})
        assert kv_copy.graph.branch("main") == frozenset({first.id})

    def test_checkout_frontier(self, kv_copy) -> None:
        first = kv_copy.commit(set_key("x", 1))
        kv_copy.commit(set_key("y", 2))
        assert kv_copy.checkout([first.id]) == {"x": 1}

    def test_checkout_branch_name(self, kv_copy) -> None:
        kv_copy.fork("old")
        kv_copy.commit(set_key("x", 1))
        assert kv_copy.checkout("old") == {}
        assert kv_copy.branch == "main"

    def test_checkout_root(self, kv_copy) -> None:
        kv_copy.commit(set_key("x", 1))
        assert kv_copy.checkout([]) == {}
        assert kv_copy.frontier == frozenset()

    def test_unknown_event_id(self, kv_copy) -> None:
        kv_copy.commit(set_key("x", 1))
        frontier = kv_copy.frontier
        with pytest.raises(UnknownEvent):
            kv_copy.checkout(["blake2b512:" + "A" * 86])
        with pytest.raises(UnknownEvent):
            kv_copy.checkout("blake2b512:" + "A" * 86)
        assert kv_copy.frontier == frontier

    def test_unknown_branch(self, kv_copy) -> None:
        with pytest.raises(UnknownBranch):
            kv_copy.checkout("nope")


class TestBranches:
    def test_fork_and_switch(self, kv_copy) -> None:
        kv_copy.commit(set_key("x", 1))
        assert kv_copy.fork("feature") == kv_copy.frontier
        assert kv_copy.branch == "main"

        assert kv_copy.switch("feature") == {"x": 1}
        kv_copy.commit(set_key("y", 2))
        assert kv_copy.branch == "feature"
        assert kv_copy.graph.branch("main") != kv_copy.graph.branch("feature")

        assert kv_copy.switch("main") == {"x": 1}

    def test_fork_existing_branch(self, kv_copy) -> None:
        with pytest.raises(ValueError, match="already exists"):
            kv_copy.fork("main")

    def test_switch_unknown(self, kv_copy) -> None:
        with pytest.raises(UnknownBranch):
            kv_copy.switch("ghost")

    def test_open_on_existing_branch(self) -> None:
        graph = EventGraph()
        wc = WorkingCopy.open(graph, KV_REDUCER, {}, branch="dev")
        wc.commit(set_key("x", 1))

        again = WorkingCopy.open(graph, KV_REDUCER, {}, branch="dev")
        assert again.state == {"x": 1}
        assert again.frontier == wc.frontier

    def test_default_branch_from_config(self) -> None:
        wc = WorkingCopy.open(EventGraph(), KV_REDUCER, {}, config=EngineConfig(default_branch="trunk"))
        assert wc.branch == "trunk"
        assert "trunk" in wc.graph.branches


class TestReadAccess:
    def test_log_newest_first(self, kv_copy) -> None:
        events = [kv_copy.commit(set_key("x", i)) for i in range(3)]
        assert kv_copy.log() == list(reversed(events))
        assert kv_copy.log(limit=1) == [events[-1]]

    def test_snapshot_is_isolated(self, kv_copy) -> None:
        kv_copy.commit(set_key("x", 1))
        snap = kv_copy.snapshot()
        kv_copy.commit(set_key("y", 2))

        assert snap.state == {"x": 1}
        assert len(snap.graph) == 1
        assert snap.graph.read_only
        assert snap.branch == "main"

    def test_read_only_graph_rejects_commit(self, kv_copy) -> None:
        kv_copy.commit(set_key("x", 1))
        reader = WorkingCopy.open(kv_copy.snapshot().graph, KV_REDUCER, {})
        assert reader.state == {"x": 1}
        with pytest.raises(ReadOnlyGraph):
            reader.commit(set_key("y", 2))


class TestPersistence:
    def test_close_flushes_to_store(self) -> None:
        store = MemoryGraphStore()
        wc = WorkingCopy.open(None, KV_REDUCER, {}, store=store)
        wc.commit(set_key("x", 1))
        graph = wc.close()

        assert store.saves == 1
        assert EventGraph.loads(store.data).events == graph.events
        assert wc.closed
        wc.close()
        assert store.saves == 1

    def test_closed_copy_rejects_mutation(self, kv_copy) -> None:
        kv_copy.close()
        with pytest.raises(RuntimeError, match="closed"):
            kv_copy.commit(set_key("x", 1))

    def test_open_working_copy_round_trip(self, tmp_path: Path) -> None:
        store = FileGraphStore(tmp_path / ".esvc" / "graph.jsonl")
        with open_working_copy(store, KV_REDUCER, {}) as wc:
            wc.commit(set_key("x", 1))
            wc.fork("feature")
            wc.commit(incr_key("x"))

        with open_working_copy(store, KV_REDUCER, {}) as wc:
            assert wc.state == {"x": 2}
            wc.switch("feature")
            assert wc.state == {"x": 1}

    def test_open_working_copy_flushes_on_error(self) -> None:
        store = MemoryGraphStore()
        with pytest.raises(Conflict):
            with open_working_copy(store, KV_REDUCER, {}) as wc:
                wc.commit(set_key("x", 1))
                wc.commit(delete_key("missing"))

        assert store.saves == 1
        assert len(EventGraph.loads(store.data)) == 1
