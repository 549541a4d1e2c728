import pytest

from esvc.errors import ReducerContractViolation
from esvc.events import MergeRecord, create_merge_event
from esvc.reducers import KV_REDUCER, delete_key, incr_key, set_key
from esvc.workcache import ROOT, WorkCache


@pytest.fixture
def cache(graph) -> WorkCache:
    return WorkCache(graph, KV_REDUCER, {})


def test_root_state_is_initial(cache) -> None:
    assert cache.state_for(ROOT) == {}
    assert cache.state_for([]) is cache.initial_state


def test_chain_replays_from_root(graph, commit, cache) -> None:
    a = commit(set_key("x", 1))
    b = commit(incr_key("x"), [a.id])
    c = commit(set_key("y", 2), [b.id])

    assert cache.state_for([c.id]) == {"x": 2, "y": 2}
    assert cache.misses == 1
    assert frozenset({a.id}) in cache
    assert frozenset({b.id}) in cache

    cache.state_for([c.id])
    assert cache.hits == 1


def test_replay_starts_from_nearest_cached_ancestor(graph, commit, cache) -> None:
    a = commit(set_key("x", 1))
    cache.put([a.id], {"x": 100})
    b = commit(incr_key("x"), [a.id])
    assert cache.state_for([b.id]) == {"x": 101}


def test_eviction_keeps_results_correct(graph, commit) -> None:
    cache = WorkCache(graph, KV_REDUCER, {}, max_entries=2)
    head = commit(set_key("n", 0))
    for _ in range(6):
        head = commit(incr_key("n"), [head.id])

    assert cache.state_for([head.id]) == {"n": 6}
    assert len(cache) <= 3
    cache.clear()
    assert cache.state_for([head.id]) == {"n": 6}


def test_root_is_never_stored(cache) -> None:
    cache.put(ROOT, {"ignored": True})
    assert cache.state_for(ROOT) == {}


def test_minimum_size() -> None:
    with pytest.raises(ValueError, match="at least 2"):
        WorkCache(None, KV_REDUCER, {}, max_entries=1)


def test_unmerged_frontier_replays_all_heads(graph, commit, cache) -> None:
    a = commit(set_key("x", 1))
    b = commit(set_key("y", 2))
    assert cache.state_for([a.id, b.id]) == {"x": 1, "y": 2}


def test_merge_event_replays_recorded_order(graph, commit, cache) -> None:
    base = commit(set_key("x", 0))
    b = commit(set_key("x", 1), [base.id])
    c = commit(set_key("x", 2), [base.id])

    b_last = create_merge_event(MergeRecord(frozenset({base.id}), (c.id, b.id)), [b.id, c.id])
    c_last = create_merge_event(MergeRecord(frozenset({base.id}), (b.id, c.id)), [b.id, c.id])
    graph.admit(b_last)
    graph.admit(c_last)

    assert cache.state_for([b_last.id]) == {"x": 1}
    assert cache.state_for([c_last.id]) == {"x": 2}


def test_multi_head_boundary_follows_recorded_resolution(graph, commit, cache) -> None:
    x = commit(set_key("k", 1))
    y = commit(set_key("k", 2))
    low, high = sorted([x.id, y.id])
    earlier = create_merge_event(
        MergeRecord(frozenset(), (high, low), resolutions=((high, low),)), [x.id, y.id]
    )
    graph.admit(earlier)
    w = commit(set_key("w", 9))
    merged = create_merge_event(
        MergeRecord(frozenset({x.id, y.id}), (w.id, earlier.id)), [earlier.id, w.id]
    )
    graph.admit(merged)

    winner = graph.events[low].payload["value"]
    assert cache.base_state([x.id, y.id], [earlier.id, w.id]) == {"k": winner}
    assert cache.state_for([merged.id]) == {"k": winner, "w": 9}
    assert frozenset({x.id, y.id}) not in cache


def test_commit_after_merge(graph, commit, cache) -> None:
    base = commit(set_key("x", 0))
    b = commit(set_key("y", 1), [base.id])
    c = commit(set_key("z", 2), [base.id])
    merge = create_merge_event(MergeRecord(frozenset({base.id}), (b.id, c.id)), [b.id, c.id])
    graph.admit(merge)
    after = commit(incr_key("x"), [merge.id])
    assert cache.state_for([after.id]) == {"x": 1, "y": 1, "z": 2}


def test_conflict_on_accepted_event_is_contract_violation(graph, commit, cache) -> None:
    bad = commit(delete_key("missing"))
    with pytest.raises(ReducerContractViolation, match="during replay") as exc_info:
        cache.state_for([bad.id])
    assert exc_info.value.event_id == bad.id
    assert "KEY_NOT_FOUND" in exc_info.value.conflict.reason
