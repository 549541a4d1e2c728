"""
Key/value reducer.

State is a flat dict. Payloads:

    {"op": "set", "key": "x", "value": 1}
    {"op": "delete", "key": "x"}
    {"op": "incr", "key": "n", "by": 2}

Events touching different keys always commute. On the same key, two
increments commute, and so do two sets of an identical value. Everything
else on one key is a conflict for the resolver.
"""

from __future__ import annotations

from typing import Any

from ..errors import Conflict
from ..events import Event
from ..reducer import FunctionReducer

OPS = frozenset({"set", "delete", "incr"})


def set_key(key: str, value: Any) -> dict[str, Any]:
    return {"op": "set", "key": key, "value": value}


def delete_key(key: str) -> dict[str, Any]:
    return {"op": "delete", "key": key}


def incr_key(key: str, by: int = 1) -> dict[str, Any]:
    return {"op": "incr", "key": key, "by": by}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse(event: Event) -> tuple[str, str, dict[str, Any]] | None:
    payload = event.payload
    if not isinstance(payload, dict):
        return None
    op = payload.get("op")
    key = payload.get("key")
    if op not in OPS or not isinstance(key, str):
        return None
    return op, key, payload


def apply(state: dict[str, Any], event: Event) -> dict[str, Any]:
    """Return a new dict; the input state is never modified."""
    parsed = _parse(event)
    if parsed is None:
        raise Conflict(f"INVALID_PAYLOAD: {event.payload!r}")
    op, key, payload = parsed

    new_state = dict(state)
    if op == "set":
        new_state[key] = payload.get("value")
    elif op == "delete":
        if key not in new_state:
            raise Conflict(f"KEY_NOT_FOUND: cannot delete '{key}'")
        del new_state[key]
    else:
        by = payload.get("by", 1)
        current = new_state.get(key, 0)
        if not _is_int(by):
            raise Conflict(f"INVALID_INCREMENT: {by!r}")
        if not _is_int(current):
            raise Conflict(f"NOT_AN_INTEGER: '{key}' holds {current!r}")
        new_state[key] = current + by
    return new_state


def commute(event_a: Event, event_b: Event) -> bool:
    a = _parse(event_a)
    b = _parse(event_b)
    if a is None or b is None:
        return False

    op_a, key_a, payload_a = a
    op_b, key_b, payload_b = b
    if key_a != key_b:
        return True
    if op_a == "incr" and op_b == "incr":
        return True
    if op_a == "set" and op_b == "set":
        return payload_a.get("value") == payload_b.get("value")
    return False


KV_REDUCER = FunctionReducer(apply=apply, commute=commute)
