"""Graphviz DOT export for debugging and visualization."""

from __future__ import annotations

import json
from typing import Any, Callable

from .graph import EventGraph
from .hashing import short_id


def _esc(s: str) -> str:
    # \l is a left-justified line break in Graphviz labels
    return s.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\l")


def _default_label(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True)


def to_dot(
    graph: EventGraph,
    *,
    payload_label: Callable[[Any], str] | None = None,
    title: str | None = None,
) -> str:
    """
    Render the graph as a DOT digraph.

    Edges point from an event to its predecessors. Each branch becomes a
    cluster containing its frontier. Merge events are drawn as boxes.
    """
    label_for = payload_label or _default_label

    lines = ["digraph esvc {"]
    if title:
        lines.append(f'  label="{_esc(title)}";')
        lines.append("  labelloc=t;")
    lines.append('  node [fontname="Helvetica", fontsize=10];')

    for event in graph.iter_events():
        if event.is_merge:
            label = f"{short_id(event.id)}\nmerge"
            lines.append(f'  "{_esc(event.id)}" [label="{_esc(label)}", shape=box];')
        else:
            label = f"{short_id(event.id)}\n{label_for(event.payload)}"
            lines.append(f'  "{_esc(event.id)}" [label="{_esc(label)}"];')

    for event in graph.iter_events():
        for pred in sorted(event.predecessors):
            lines.append(f'  "{_esc(event.id)}" -> "{_esc(pred)}";')

    for name, frontier in sorted(graph.branches.items()):
        lines.append(f'  subgraph "cluster_{_esc(name)}" {{')
        lines.append(f'    label="{_esc(name)}";')
        for event_id in sorted(frontier):
            lines.append(f'    "{_esc(event_id)}";')
        lines.append("  }")

    lines.append("}")
    return "\n".join(lines) + "\n"
