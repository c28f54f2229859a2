"""
ydiff.portable — Portable deltas
================================

A portable delta describes a change without reference to any live
node, so it can be stored or sent over the wire and applied later.
Its shape mirrors the snapshot tree:

MAP LEVEL  (a JSON object keyed like the map)

    "key": [new]            addition
    "key": [old, new]       modification
    "key": [old, 0, 0]      deletion
    "key": { ... }          nested delta for the child at "key"

SEQUENCE LEVEL  (a JSON object carrying the array marker)

    "_t": "a"               marks the object as a sequence delta
    "_3": [old, 0, 0]       delete the element at OLD index 3
    "3": [new]              insert at NEW index 3
    "3": [old, new]         replace the element at NEW index 3
    "3": { ... }            nested delta for the element at NEW index 3

    Deletions run first (descending old index), then insertions
    (ascending new index), then replacements and nested deltas.

TEXT LEVEL  (a JSON array)

    [new]                   the text becomes `new`
    [old, new]              the text becomes `new`

The canonical description of a change is the pair (old, new); diff()
derives the portable form from it, and

    serialize(apply_portable_delta(materialize(old), diff(old, new))) == new

A nested object creates a Sequence child when it carries the array
marker and a Map child otherwise.  Text changes are always leaf
arrays, never nested objects.
"""

import logging
from typing import Any, Optional, Union

from . import live
from .core import (
    MAX_ALIGN_CELLS, ApplyResult, JsonKind, Mutation, MutationOp, Patcher, Path,
    classify, materialize, matched_pairs, same,
)
from .errors import InvalidDeltaShape, TypeMismatch, UnsupportedLiveKind, YDiffError
from .live import NodeKind

logger = logging.getLogger(__name__)

DELETION_SENTINEL = 0
ARRAY_MARKER = ("_t", "a")

Delta = Union[dict, list]


# ═══════════════════════════════════════════════════════════════════
#  PRODUCER
# ═══════════════════════════════════════════════════════════════════

def diff(old: Any, new: Any, max_cells: int = MAX_ALIGN_CELLS) -> Optional[Delta]:
    """
    Portable delta turning ``old`` into ``new``, or None if they are equal.

    Maps and sequences of the same kind get nested deltas; any other
    change is a leaf ``[old, new]``.
    """
    if same(old, new):
        return None

    old_kind = classify(old)
    new_kind = classify(new)
    if old_kind is new_kind and old_kind is JsonKind.MAPPING:
        return _diff_map(old, new, max_cells) or None
    if old_kind is new_kind and old_kind is JsonKind.SEQUENCE:
        return _diff_sequence(old, new, max_cells)
    return [old, new]


def _diff_map(old: dict, new: dict, max_cells: int) -> dict:
    delta: dict[str, Any] = {}
    for k in old:
        if k not in new:
            delta[k] = [old[k], DELETION_SENTINEL, DELETION_SENTINEL]
    for k in new:
        if k not in old:
            delta[k] = [new[k]]
    for k in old:
        if k in new:
            sub = diff(old[k], new[k], max_cells)
            if sub is not None:
                delta[k] = sub
    return delta


def _diff_sequence(old: list, new: list, max_cells: int) -> Optional[dict]:
    marker_key, marker = ARRAY_MARKER
    delta: dict[str, Any] = {marker_key: marker}

    oi = ni = 0
    for mo, mn in matched_pairs(old, new, max_cells):
        while oi < mo and ni < mn:
            sub = diff(old[oi], new[ni], max_cells)
            if isinstance(sub, dict):
                delta[str(ni)] = sub
            elif sub is not None:
                delta[str(ni)] = [old[oi], new[ni]]
            oi += 1
            ni += 1
        while ni < mn:
            delta[str(ni)] = [new[ni]]
            ni += 1
        while oi < mo:
            delta[f"_{oi}"] = [old[oi], DELETION_SENTINEL, DELETION_SENTINEL]
            oi += 1
        if mo < len(old):
            oi += 1
            ni += 1

    return delta if len(delta) > 1 else None


# ═══════════════════════════════════════════════════════════════════
#  SHAPE HELPERS
# ═══════════════════════════════════════════════════════════════════

def is_array_delta(delta: Any) -> bool:
    marker_key, marker = ARRAY_MARKER
    return isinstance(delta, dict) and delta.get(marker_key) == marker


def is_deletion(entry: Any) -> bool:
    """[old, 0, 0].  The sentinels must be real ints: False == 0 too."""
    return (
        isinstance(entry, list)
        and len(entry) == 3
        and type(entry[1]) is int and entry[1] == DELETION_SENTINEL
        and type(entry[2]) is int and entry[2] == DELETION_SENTINEL
    )


def _parse_index(text: str) -> Optional[int]:
    # isdigit() alone accepts superscripts such as "²", which int() rejects
    return int(text) if text.isascii() and text.isdigit() else None


# ═══════════════════════════════════════════════════════════════════
#  PORTABLE DELTA ENGINE
# ═══════════════════════════════════════════════════════════════════

def apply_portable_delta(
    node: Any,
    delta: Optional[Delta],
    *,
    max_cells: int = MAX_ALIGN_CELLS,
) -> ApplyResult:
    """
    Apply a portable delta to a live Map, Array or Text node.

    Malformed entries are skipped, logged at WARNING and collected in
    ``result.issues``; their siblings are still applied.  Structural
    errors abort the call and land in ``result.error``.  Everything
    runs inside one transaction on the node's document.
    """
    result = ApplyResult()
    if delta is None:
        return result
    try:
        with live.transaction(node):
            PortablePatcher(result, max_cells).apply(node, delta, ())
    except YDiffError as exc:
        result.error = exc
        logger.debug("portable delta aborted after %d mutations: %s",
                     len(result.mutations), exc)
    return result


class PortablePatcher:
    """Recursive walk for one apply_portable_delta() call."""

    def __init__(self, result: ApplyResult, max_cells: int):
        self.result = result
        self.log = result.mutations
        self.max_cells = max_cells

    def report(self, path: Path, reason: str, entry: Any = None) -> None:
        issue = InvalidDeltaShape(path, reason, entry)
        logger.warning("skipping portable delta entry: %s", issue)
        self.result.issues.append(issue)

    def apply(self, node: Any, delta: Any, path: Path) -> None:
        kind = live.node_kind(node)
        if kind is NodeKind.MAP:
            self.apply_map(node, delta, path)
        elif kind is NodeKind.SEQUENCE:
            self.apply_sequence(node, delta, path)
        elif kind is NodeKind.TEXT:
            self.apply_text(node, delta, path)
        elif kind is NodeKind.LEAF:
            raise TypeMismatch("a leaf value cannot be patched in place", path)
        else:
            raise UnsupportedLiveKind(node)

    # ── text content ────────────────────────────────────────────

    def replace_text(self, node: Any, new: str, path: Path) -> None:
        """Bring a Text node to ``new`` with character edits, keeping
        the node itself (and its collaborators' cursors) alive."""
        current = str(node)
        if current != new:
            Patcher(self.log, self.max_cells).apply_text(current, new, node, path)

    def apply_text(self, node: Any, delta: Any, path: Path) -> None:
        if not isinstance(delta, list) or len(delta) not in (1, 2):
            self.report(path, "text delta must be [new] or [old, new]", delta)
            return
        new = delta[-1]
        if not isinstance(new, str):
            self.report(path, "text delta target is not a string", delta)
            return
        self.replace_text(node, new, path)

    # ── maps ────────────────────────────────────────────────────

    def apply_map(self, node: Any, delta: Any, path: Path) -> None:
        if not isinstance(delta, dict):
            self.report(path, "map delta must be an object", delta)
            return
        if is_array_delta(delta):
            self.report(path, "sequence delta addressed to a map node", delta)
            return

        for key, entry in delta.items():
            child_path = path + (key,)
            if isinstance(entry, dict):
                self.apply_map_child(node, key, entry, child_path)
            elif is_deletion(entry):
                if live.map_delete(node, key):
                    self.log.append(Mutation(MutationOp.MAP_DELETE, child_path))
            elif isinstance(entry, list) and len(entry) == 1:
                live.map_set(node, key, materialize(entry[0]))
                self.log.append(Mutation(MutationOp.MAP_SET, child_path, entry[0]))
            elif isinstance(entry, list) and len(entry) == 2:
                self.modify_map_entry(node, key, entry[1], child_path)
            else:
                self.report(child_path, "unrecognized map entry", entry)

    def modify_map_entry(self, node: Any, key: str, new: Any, path: Path) -> None:
        existed = live.map_has(node, key)
        child = live.map_get(node, key) if existed else None
        if existed and isinstance(new, str) and live.node_kind(child) is NodeKind.TEXT:
            self.replace_text(child, new, path)
            return
        live.map_set(node, key, materialize(new))
        op = MutationOp.REPLACE if existed else MutationOp.MAP_SET
        self.log.append(Mutation(op, path, new))

    def apply_map_child(self, node: Any, key: str, entry: dict, path: Path) -> None:
        if is_array_delta(entry):
            expected, empty = NodeKind.SEQUENCE, []
        else:
            expected, empty = NodeKind.MAP, {}

        if not live.map_has(node, key):
            live.map_set(node, key, materialize(empty))
            self.log.append(Mutation(MutationOp.MAP_SET, path, empty))

        child = live.map_get(node, key)
        child_kind = live.node_kind(child)
        if child_kind is not expected:
            self.report(path, f"nested {expected.name} delta for a {child_kind.name} node", entry)
            return
        self.apply(child, entry, path)

    # ── sequences ───────────────────────────────────────────────

    def apply_sequence(self, node: Any, delta: Any, path: Path) -> None:
        if not is_array_delta(delta):
            self.report(path, "sequence delta is missing the array marker", delta)
            return

        deletions: list[int] = []
        insertions: list[tuple[int, Any]] = []
        updates: list[tuple[int, Any]] = []
        marker_key = ARRAY_MARKER[0]

        for key, entry in delta.items():
            if key == marker_key:
                continue
            if key.startswith("_"):
                index = _parse_index(key[1:])
                if index is None or not is_deletion(entry):
                    # moves ("_3": ["", 5, 3]) are not supported
                    self.report(path + (key,), "unrecognized old-index entry", entry)
                    continue
                deletions.append(index)
                continue

            index = _parse_index(key)
            if index is None:
                self.report(path + (key,), "sequence key is not an index", entry)
            elif isinstance(entry, list) and len(entry) == 1:
                insertions.append((index, entry[0]))
            elif isinstance(entry, dict) or (isinstance(entry, list) and len(entry) == 2):
                updates.append((index, entry))
            else:
                self.report(path + (key,), "unrecognized sequence entry", entry)

        for index in sorted(deletions, reverse=True):
            if index >= live.length(node):
                self.report(path + (f"_{index}",), "deletion index out of range")
                continue
            live.seq_delete(node, index, 1)
            self.log.append(Mutation(MutationOp.SEQ_DELETE, path + (index,)))

        for index, value in sorted(insertions, key=lambda item: item[0]):
            if index > live.length(node):
                self.report(path + (index,), "insertion index out of range", [value])
                continue
            live.seq_insert(node, index, materialize(value))
            self.log.append(Mutation(MutationOp.SEQ_INSERT, path + (index,), value))

        for index, entry in sorted(updates, key=lambda item: item[0]):
            child_path = path + (index,)
            if index >= live.length(node):
                self.report(child_path, "modification index out of range", entry)
                continue
            if isinstance(entry, list):
                live.seq_delete(node, index, 1)
                live.seq_insert(node, index, materialize(entry[1]))
                self.log.append(Mutation(MutationOp.REPLACE, child_path, entry[1]))
                continue
            child = live.seq_get(node, index)
            child_kind = live.node_kind(child)
            expected = NodeKind.SEQUENCE if is_array_delta(entry) else NodeKind.MAP
            if child_kind is not expected:
                self.report(child_path, f"nested {expected.name} delta for a {child_kind.name} node", entry)
                continue
            self.apply(child, entry, child_path)
