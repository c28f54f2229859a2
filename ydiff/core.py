"""
ydiff.core — Snapshot-to-live-tree delta application
=====================================================

§1  THE PROBLEM
───────────────

A collaborative document lives in two forms at once:

    • a SNAPSHOT: an immutable plain-Python value (dict / list / str /
      number / bool / None), convenient for application code;
    • a LIVE TREE: pycrdt Map / Array / Text nodes that merge
      concurrent edits from many peers.

When the application produces a new snapshot, the live tree must be
brought in line with it.  Rebuilding the live tree from scratch is
correct but destructive: every node is replaced, so concurrent edits
to those nodes are lost and collaborative-text cursors jump.

ydiff instead computes, level by level, the smallest set of
insertions and deletions that turns the old snapshot into the new
one, and issues exactly those mutations against the live nodes.


§2  VALUE KINDS
───────────────

Every snapshot value has one of four kinds:

    MAPPING    dict            ↔  pycrdt.Map
    SEQUENCE   list / tuple    ↔  pycrdt.Array
    TEXT       str             ↔  pycrdt.Text
    PRIMITIVE  None/bool/num   ↔  stored as a leaf

Old and new values of the same non-primitive kind are diffed in
place.  Anything else (a kind change, or two primitives) is a
REPLACEMENT: the slot in the parent is emptied and refilled with a
freshly materialized subtree.  Replacement is the only operation
allowed to destroy a subtree.


§3  SEQUENCE ALIGNMENT
──────────────────────

Ordered sequences (lists and strings) are aligned with the classic
longest-common-subsequence table:

    dp[i][j] = dp[i-1][j-1] + 1              if left[i-1] ≡ right[j-1]
             = max(dp[i-1][j], dp[i][j-1])    otherwise

walked back from (|left|, |right|).  On a tie between the up and left
neighbours the walk consumes from the RIGHT sequence first, which
fixes one reproducible alignment among the many optimal ones.

The matched pairs split both sequences into GAPS.  Inside a gap the
engine pairs old and new elements position by position (in-place
modification candidates), inserts the surplus new elements and
deletes the surplus old ones.  Matched elements are never touched.

For a gap-free walk over primitives the number of element insertions
plus deletions is exactly

    |old| + |new| - 2·|LCS|

which is the minimum for any edit script made of inserts and deletes.


§4  COMPLEXITY
──────────────

The LCS table costs O(|left|·|right|) time and space.  Above
MAX_ALIGN_CELLS cells the engine first strips the common prefix and
suffix (which never shortens the LCS), and if the middle is still too
large it treats the middle as one unaligned gap.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Optional, Sequence, Union

from . import live
from .errors import StaleSnapshot, TypeMismatch, UnsupportedLiveKind, YDiffError
from .live import NodeKind

logger = logging.getLogger(__name__)

# Largest LCS table (in cells) the delta engines will build
MAX_ALIGN_CELLS = 4_000_000

Path = tuple[Union[int, str], ...]


# ═══════════════════════════════════════════════════════════════════
#  VALUE CLASSIFIER
# ═══════════════════════════════════════════════════════════════════

class JsonKind(Enum):
    """Kinds of snapshot value."""
    MAPPING = auto()
    SEQUENCE = auto()
    TEXT = auto()
    PRIMITIVE = auto()


def classify(value: Any) -> JsonKind:
    """Which live-node kind a snapshot value corresponds to."""
    if isinstance(value, dict):
        return JsonKind.MAPPING
    if isinstance(value, (list, tuple)):
        return JsonKind.SEQUENCE
    if isinstance(value, str):
        return JsonKind.TEXT
    return JsonKind.PRIMITIVE


# Live kind each snapshot kind must be paired with.  A LEAF (a raw value
# sitting in a container) is paired by the kind of the value it holds.
_LIVE_KIND = {
    JsonKind.MAPPING: NodeKind.MAP,
    JsonKind.SEQUENCE: NodeKind.SEQUENCE,
    JsonKind.TEXT: NodeKind.TEXT,
    JsonKind.PRIMITIVE: NodeKind.LEAF,
}


def same(a: Any, b: Any) -> bool:
    """
    Deep, type-aware equality of two snapshot values.

    bool is a subclass of int in Python, so ``True == 1``.  A snapshot
    that flips 1 to True has still changed, so bools only ever equal
    bools here.  Ints and floats compare numerically (1 ≡ 1.0), since
    the live engine may hand integers back as floats.
    """
    if a is b:
        return True

    a_is_bool = type(a) is bool
    b_is_bool = type(b) is bool
    if a_is_bool or b_is_bool:
        return a_is_bool and b_is_bool and a == b

    if isinstance(a, dict):
        if not isinstance(b, dict) or a.keys() != b.keys():
            return False
        return all(same(a[k], b[k]) for k in a)

    if isinstance(a, (list, tuple)):
        if not isinstance(b, (list, tuple)) or len(a) != len(b):
            return False
        return all(same(x, y) for x, y in zip(a, b))

    if isinstance(b, (dict, list, tuple)):
        return False

    return a == b


# ═══════════════════════════════════════════════════════════════════
#  SEQUENCE ALIGNER
# ═══════════════════════════════════════════════════════════════════

def align(
    left: Sequence[Any],
    right: Sequence[Any],
    eq: Optional[Callable[[Any, Any], bool]] = None,
) -> tuple[list[int], list[int]]:
    """
    Longest common subsequence of two sequences.

    Returns ``(left_indexes, right_indexes)``: two strictly increasing
    index lists of equal length such that left[left_indexes[k]] matches
    right[right_indexes[k]] for every k.

    ``eq`` defaults to same(); pass ``operator.is_`` to match by
    identity instead.  Strings are aligned character by character.

    No size guard is applied here.
    """
    if eq is None:
        eq = same
    m, n = len(left), len(right)

    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row, prev = dp[i], dp[i - 1]
        a = left[i - 1]
        for j in range(1, n + 1):
            if eq(a, right[j - 1]):
                row[j] = prev[j - 1] + 1
            else:
                row[j] = max(prev[j], row[j - 1])

    left_indexes: list[int] = []
    right_indexes: list[int] = []
    i, j = m, n
    while i > 0 and j > 0:
        if eq(left[i - 1], right[j - 1]):
            left_indexes.append(i - 1)
            right_indexes.append(j - 1)
            i -= 1
            j -= 1
        elif dp[i - 1][j] > dp[i][j - 1]:
            i -= 1
        else:
            # tie: consume from the right sequence
            j -= 1

    left_indexes.reverse()
    right_indexes.reverse()
    return left_indexes, right_indexes


def matched_pairs(
    old: Sequence[Any],
    new: Sequence[Any],
    max_cells: int = MAX_ALIGN_CELLS,
) -> list[tuple[int, int]]:
    """
    Aligned (old_index, new_index) pairs followed by the sentinel pair
    (len(old), len(new)).

    Within max_cells this is exactly align().  Above it, the common
    prefix and suffix are matched greedily and only the middle is
    aligned, or left unaligned if it is still too large.
    """
    m, n = len(old), len(new)
    if m * n <= max_cells:
        left, right = align(old, new)
        pairs = list(zip(left, right))
        pairs.append((m, n))
        return pairs

    prefix = 0
    while prefix < m and prefix < n and same(old[prefix], new[prefix]):
        prefix += 1
    suffix = 0
    while (suffix < m - prefix and suffix < n - prefix
           and same(old[m - 1 - suffix], new[n - 1 - suffix])):
        suffix += 1

    pairs = [(k, k) for k in range(prefix)]
    mid_old = old[prefix:m - suffix]
    mid_new = new[prefix:n - suffix]
    if len(mid_old) * len(mid_new) <= max_cells:
        left, right = align(mid_old, mid_new)
        pairs.extend((i + prefix, j + prefix) for i, j in zip(left, right))
    else:
        logger.warning(
            "alignment of %d x %d elements exceeds %d cells; "
            "rewriting the middle %d/%d elements without alignment",
            m, n, max_cells, len(mid_old), len(mid_new),
        )
    pairs.extend((m - suffix + k, n - suffix + k) for k in range(suffix))
    pairs.append((m, n))
    return pairs


# ═══════════════════════════════════════════════════════════════════
#  MUTATION LOG / RESULT
# ═══════════════════════════════════════════════════════════════════

class MutationOp(Enum):
    """Mutations the engines issue against a live tree."""
    MAP_SET = auto()        # Set a key to a new subtree
    MAP_DELETE = auto()     # Remove a key
    SEQ_INSERT = auto()     # Insert one element
    SEQ_DELETE = auto()     # Delete `count` elements
    TEXT_INSERT = auto()    # Insert a run of characters
    TEXT_DELETE = auto()    # Delete `count` characters
    REPLACE = auto()        # Empty a slot and refill it (kind change)


_INSERTS = (MutationOp.MAP_SET, MutationOp.SEQ_INSERT, MutationOp.TEXT_INSERT, MutationOp.REPLACE)
_DELETES = (MutationOp.MAP_DELETE, MutationOp.SEQ_DELETE, MutationOp.TEXT_DELETE, MutationOp.REPLACE)


@dataclass
class Mutation:
    """
    One mutation issued against the live tree.

    ``path`` is relative to the node the call started at.  For
    sequence and text mutations its last element is the index/offset.
    """
    op: MutationOp
    path: Path
    value: Any = None
    count: int = 1

    def __repr__(self) -> str:
        path_str = "/".join(str(p) for p in self.path) or "(root)"
        if self.op in (MutationOp.SEQ_DELETE, MutationOp.TEXT_DELETE):
            return f"{self.op.name} at {path_str}: {self.count}"
        if self.op is MutationOp.MAP_DELETE:
            return f"MAP_DELETE at {path_str}"
        return f"{self.op.name} at {path_str}: {self.value!r}"


@dataclass
class ApplyResult:
    """
    Outcome of one delta application.

    ``error`` holds the structural error that aborted the call, if any;
    mutations issued before the abort stay in ``mutations`` (and in the
    live tree).  ``issues`` holds portable-delta entries that were
    skipped as malformed.
    """
    mutations: list[Mutation] = field(default_factory=list)
    issues: list[YDiffError] = field(default_factory=list)
    error: Optional[YDiffError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def inserted(self) -> int:
        """Elements/characters/keys inserted (a REPLACE counts once)."""
        return sum(m.count for m in self.mutations if m.op in _INSERTS)

    @property
    def deleted(self) -> int:
        """Elements/characters/keys deleted (a REPLACE counts once)."""
        return sum(m.count for m in self.mutations if m.op in _DELETES)

    def raise_for_error(self) -> "ApplyResult":
        if self.error is not None:
            raise self.error
        return self

    def __repr__(self) -> str:
        if self.error is not None:
            return f"ApplyResult(FAILED: {self.error!r})"
        return f"ApplyResult({len(self.mutations)} mutations, {len(self.issues)} issues)"


# ═══════════════════════════════════════════════════════════════════
#  STRUCTURE MATERIALIZER
# ═══════════════════════════════════════════════════════════════════

def materialize(value: Any) -> Any:
    """
    Build a brand-new live subtree for a snapshot value.

        dict   → Map of materialized entries
        list   → Array of materialized elements, in order
        str    → Text seeded with the string
        other  → returned unchanged (stored as a leaf)

    The result is preliminary: it joins a document when it is inserted
    into an attached container.
    """
    kind = classify(value)
    if kind is JsonKind.MAPPING:
        return live.new_map({str(k): materialize(v) for k, v in value.items()})
    if kind is JsonKind.SEQUENCE:
        return live.new_sequence([materialize(v) for v in value])
    if kind is JsonKind.TEXT:
        return live.new_text(value)
    return value


# ═══════════════════════════════════════════════════════════════════
#  DELTA APPLICATION ENGINE
# ═══════════════════════════════════════════════════════════════════

def apply_delta(
    old: Any,
    new: Any,
    node: Any,
    parent: Any = None,
    key: Union[int, str, None] = None,
    *,
    strict: bool = False,
    max_cells: int = MAX_ALIGN_CELLS,
) -> ApplyResult:
    """
    Mutate ``node`` (which represents ``old``) so that it represents ``new``.

    ``parent``/``key`` name the slot holding ``node``; they are only
    needed when ``node`` itself may have to be replaced.

    The live node's kind must match ``old``; otherwise the result
    carries a TypeMismatch.  With ``strict=True`` its whole content
    must also equal ``old`` (StaleSnapshot otherwise).  Without it, the
    edits are positioned against whatever the live node holds now, so
    concurrent edits by other writers interleave instead of failing.

    All mutations are made inside one transaction on the node's
    document.
    """
    result = ApplyResult()
    try:
        if strict:
            current = live.serialize(node)
            if not same(current, old):
                raise StaleSnapshot("live content does not match the old snapshot")
        with live.transaction(node if parent is None else parent):
            Patcher(result.mutations, max_cells).apply(old, new, node, parent, key, ())
    except YDiffError as exc:
        result.error = exc
        logger.debug("delta application aborted after %d mutations: %s",
                     len(result.mutations), exc)
        return result

    logger.debug("delta application issued %d mutations", len(result.mutations))
    return result


class Patcher:
    """Recursive walk for one apply_delta() call."""

    def __init__(self, log: list[Mutation], max_cells: int):
        self.log = log
        self.max_cells = max_cells

    def apply(self, old: Any, new: Any, node: Any, parent: Any, key: Any, path: Path) -> None:
        old_kind = classify(old)
        new_kind = classify(new)

        if old is new:
            return
        # strings and primitives are compared by value
        if old_kind is new_kind and old_kind in (JsonKind.PRIMITIVE, JsonKind.TEXT) and same(old, new):
            return

        live_kind = live.node_kind(node)
        if live_kind is NodeKind.LEAF:
            compatible = classify(node) is old_kind
        else:
            compatible = live_kind is _LIVE_KIND[old_kind]
        if not compatible:
            raise TypeMismatch(
                f"live {live_kind.name} node does not match old {old_kind.name} value "
                f"at {'/'.join(str(p) for p in path) or '(root)'}",
                path,
            )

        if live_kind is NodeKind.LEAF or old_kind is not new_kind or new_kind is JsonKind.PRIMITIVE:
            self.replace(new, parent, key, path)
            return

        if new_kind is JsonKind.MAPPING:
            self.apply_map(old, new, node, path)
        elif new_kind is JsonKind.SEQUENCE:
            self.apply_sequence(old, new, node, path)
        elif new_kind is JsonKind.TEXT:
            self.apply_text(old, new, node, path)
        else:
            raise TypeMismatch(f"cannot diff {new_kind.name} values in place", path)

    def replace(self, new: Any, parent: Any, key: Any, path: Path) -> None:
        if parent is None:
            raise TypeMismatch("the root node cannot be replaced; pass its parent slot", path)

        parent_kind = live.node_kind(parent)
        value = materialize(new)
        if parent_kind is NodeKind.MAP:
            live.map_delete(parent, key)
            live.map_set(parent, key, value)
        elif parent_kind is NodeKind.SEQUENCE:
            live.seq_delete(parent, key, 1)
            live.seq_insert(parent, key, value)
        elif parent_kind is NodeKind.TEXT or parent_kind is NodeKind.LEAF:
            raise TypeMismatch(f"a {parent_kind.name} node has no child slots to replace", path)
        else:
            raise UnsupportedLiveKind(parent)
        logger.debug("replaced live node at %s", "/".join(str(p) for p in path) or "(root)")
        self.log.append(Mutation(MutationOp.REPLACE, path, new))

    def apply_map(self, old: dict, new: dict, node: Any, path: Path) -> None:
        removed = [k for k in old if k not in new]
        added = [k for k in new if k not in old]
        common = [k for k in old if k in new]

        for k in removed:
            live.map_delete(node, k)
            self.log.append(Mutation(MutationOp.MAP_DELETE, path + (k,)))

        for k in added:
            live.map_set(node, k, materialize(new[k]))
            self.log.append(Mutation(MutationOp.MAP_SET, path + (k,), new[k]))

        for k in common:
            self.apply(old[k], new[k], live.map_get(node, k), node, k, path + (k,))

    def apply_sequence(self, old: Sequence, new: Sequence, node: Any, path: Path) -> None:
        # The live index always equals the new index: everything before
        # it has already been made to match new[:ni].
        oi = ni = 0
        for mo, mn in matched_pairs(old, new, self.max_cells):
            while oi < mo and ni < mn:
                if ni < live.length(node):
                    self.apply(old[oi], new[ni], live.seq_get(node, ni), node, ni, path + (ni,))
                else:
                    self.insert_element(node, ni, new[ni], path)
                oi += 1
                ni += 1

            while ni < mn:
                self.insert_element(node, ni, new[ni], path)
                ni += 1

            while oi < mo:
                if ni < live.length(node):
                    live.seq_delete(node, ni, 1)
                    self.log.append(Mutation(MutationOp.SEQ_DELETE, path + (ni,)))
                oi += 1

            if mo < len(old):
                oi += 1
                ni += 1

        extra = live.length(node) - len(new)
        if extra > 0:
            live.seq_delete(node, len(new), extra)
            self.log.append(Mutation(MutationOp.SEQ_DELETE, path + (len(new),), count=extra))

    def insert_element(self, node: Any, index: int, value: Any, path: Path) -> None:
        live.seq_insert(node, index, materialize(value))
        self.log.append(Mutation(MutationOp.SEQ_INSERT, path + (index,), value))

    def apply_text(self, old: str, new: str, node: Any, path: Path) -> None:
        oi = ni = 0
        for mo, mn in matched_pairs(old, new, self.max_cells):
            if oi < mo:
                live.text_delete(node, ni, mo - oi)
                self.log.append(Mutation(MutationOp.TEXT_DELETE, path + (ni,), count=mo - oi))
                oi = mo
            if ni < mn:
                run = new[ni:mn]
                live.text_insert(node, ni, run)
                self.log.append(Mutation(MutationOp.TEXT_INSERT, path + (ni,), run, count=len(run)))
                ni = mn
            if mo < len(old):
                oi += 1
                ni += 1


def apply_text_delta(old: str, new: str, node: Any, *, max_cells: int = MAX_ALIGN_CELLS) -> ApplyResult:
    """Character-level edit of a Text node from ``old`` to ``new``."""
    return apply_delta(old, new, node, max_cells=max_cells)
