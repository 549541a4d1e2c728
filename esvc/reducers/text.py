"""
Search-and-replace text reducer.

State is a string; each event replaces every occurrence of `search` with
`replace`. Two edits commute when their character sets are disjoint and
neither deletes text: then neither can create, destroy or split an
occurrence of the other's search string.
"""

from __future__ import annotations

from typing import Any

from ..errors import Conflict
from ..events import Event
from ..reducer import FunctionReducer


def sear(search: str, replace: str) -> dict[str, Any]:
    return {"search": search, "replace": replace}


def _parse(event: Event) -> tuple[str, str] | None:
    payload = event.payload
    if not isinstance(payload, dict):
        return None
    search = payload.get("search")
    replace = payload.get("replace")
    if not isinstance(search, str) or not isinstance(replace, str):
        return None
    return search, replace


def apply(state: str, event: Event) -> str:
    parsed = _parse(event)
    if parsed is None:
        raise Conflict(f"INVALID_PAYLOAD: {event.payload!r}")
    search, replace = parsed
    if not search:
        raise Conflict("EMPTY_SEARCH: search string must not be empty")
    return state.replace(search, replace)


def commute(event_a: Event, event_b: Event) -> bool:
    a = _parse(event_a)
    b = _parse(event_b)
    if a is None or b is None:
        return False
    if a == b:
        return True
    if not a[1] or not b[1]:
        return False
    return not (set(a[0] + a[1]) & set(b[0] + b[1]))


TEXT_REDUCER = FunctionReducer(apply=apply, commute=commute)
