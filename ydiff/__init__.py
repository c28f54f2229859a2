"""
ydiff — Minimal edits between JSON snapshots and collaborative documents
========================================================================

Keeps an immutable JSON-like snapshot and a live pycrdt document tree
in step, in both directions, without tearing down unrelated nodes:

    apply_delta(old, new, live_map)          snapshot change → live edits
    apply_portable_delta(live_map, delta)    stored delta    → live edits
    make_event_handler(snapshot, callback)   live events     → new snapshot

    old = {"count": 10, "status": True}
    new = {"count": 20, "status": False, "message": "Hello"}
    apply_delta(old, new, root).raise_for_error()

Sequences and text are aligned with a longest-common-subsequence pass,
so elements and characters that survive the change keep their live
identity, and with it any concurrent edits and cursors attached to it.
"""

from ydiff.core import (
    # Classification
    JsonKind,
    classify,
    same,
    # Alignment
    MAX_ALIGN_CELLS,
    align,
    # Materialize / apply
    materialize,
    apply_delta,
    apply_text_delta,
    Mutation,
    MutationOp,
    ApplyResult,
)
from ydiff.errors import (
    YDiffError, TypeMismatch, StaleSnapshot, InvalidDeltaShape, UnsupportedLiveKind,
    format_error,
)
from ydiff.events import (
    ChangeEvent, SnapshotState, EventReconstructor,
    rebuild_at, reconstruct, make_event_handler, subscribe,
)
from ydiff.formats import (
    from_python, to_python, from_json, to_json, dumps_delta, loads_delta,
)
from ydiff.live import NodeKind, node_kind, serialize
from ydiff.portable import DELETION_SENTINEL, diff, apply_portable_delta

__version__ = "0.1.0"
__all__ = [
    "JsonKind", "classify", "same",
    "MAX_ALIGN_CELLS", "align",
    "materialize", "apply_delta", "apply_text_delta",
    "Mutation", "MutationOp", "ApplyResult",
    "YDiffError", "TypeMismatch", "StaleSnapshot", "InvalidDeltaShape",
    "UnsupportedLiveKind", "format_error",
    "ChangeEvent", "SnapshotState", "EventReconstructor",
    "rebuild_at", "reconstruct", "make_event_handler", "subscribe",
    "from_python", "to_python", "from_json", "to_json", "dumps_delta", "loads_delta",
    "NodeKind", "node_kind", "serialize",
    "DELETION_SENTINEL", "diff", "apply_portable_delta",
]
