"""
Event-sourced version control.

State is never stored; it is reconstructed by replaying immutable events in
a causally consistent order. Branches that diverged from a common ancestor
are merged by checking which concurrent events commute, resolving or
surfacing the ones that do not, and recording the decision as a single
content-addressed merge event.

Components:
- events / graph: immutable events and the append-only causal graph
- reducer: pluggable domain semantics (apply, commute, resolve)
- merge: n-way merge engine and merge diagnostics
- workcopy: single-writer working copy bound to a branch
- store: graph persistence
"""

from .config import EngineConfig, load_config
from .errors import (
    Conflict,
    CorruptGraph,
    CycleDetected,
    DuplicateEvent,
    EsvcError,
    InvariantViolation,
    MergeConflict,
    MissingPredecessor,
    ReadOnlyGraph,
    RecoverableError,
    ReducerContractViolation,
    UnknownBranch,
    UnknownEvent,
    UnmergedFrontier,
)
from .events import COMMIT, MERGE, Event, MergeRecord, create_event
from .graph import EventGraph
from .merge import MergeEngine, MergeOutcome, MergePlan, MergeReport, describe_merge
from .reducer import FunctionReducer, Reducer, Resolution, prefer_larger_id, prefer_smaller_id
from .store import FileGraphStore, GraphStore, MemoryGraphStore
from .workcopy import WorkingCopy, open_working_copy

__version__ = "0.1.0"

__all__ = [
    "COMMIT",
    "MERGE",
    "Conflict",
    "CorruptGraph",
    "CycleDetected",
    "DuplicateEvent",
    "EngineConfig",
    "EsvcError",
    "Event",
    "EventGraph",
    "FileGraphStore",
    "FunctionReducer",
    "GraphStore",
    "InvariantViolation",
    "MemoryGraphStore",
    "MergeConflict",
    "MergeEngine",
    "MergeOutcome",
    "MergePlan",
    "MergeRecord",
    "MergeReport",
    "MissingPredecessor",
    "ReadOnlyGraph",
    "RecoverableError",
    "Reducer",
    "ReducerContractViolation",
    "Resolution",
    "UnknownBranch",
    "UnknownEvent",
    "UnmergedFrontier",
    "WorkingCopy",
    "create_event",
    "describe_merge",
    "load_config",
    "open_working_copy",
    "prefer_larger_id",
    "prefer_smaller_id",
]
