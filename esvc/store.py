"""
Graph persistence.

A store holds the serialized bytes of one graph (EventGraph.dumps()). The
working copy loads the whole graph at open and flushes it back at close.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class GraphStore(Protocol):
    """Where a serialized graph lives between sessions."""

    def load(self) -> bytes | None:
        """Stored bytes, or None if nothing has been saved yet."""
        ...

    def save(self, data: bytes) -> None:
        ...


class MemoryGraphStore:
    """In-process store, mostly for tests and embedding."""

    def __init__(self, data: bytes | None = None):
        self.data = data
        self.saves = 0

    def load(self) -> bytes | None:
        return self.data

    def save(self, data: bytes) -> None:
        self.data = bytes(data)
        self.saves += 1


class FileGraphStore:
    """
    Single JSON Lines file on disk.

        .esvc/graph.jsonl

    Writes go to a temp file that is then renamed over the target, so a
    crash never leaves a half-written graph behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> bytes | None:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def save(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        temp_path.write_bytes(data)
        temp_path.replace(self.path)
        logger.debug("saved %d bytes to %s", len(data), self.path)
