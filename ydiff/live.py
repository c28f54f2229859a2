"""
ydiff.live — Binding to the live document engine (pycrdt).

The live tree is owned by pycrdt, the Python binding of the Yjs CRDT.
This module is the only place that knows about pycrdt's classes.  The
rest of ydiff sees a closed set of node kinds:

    NodeKind.MAP       pycrdt.Map      string-keyed, unordered
    NodeKind.SEQUENCE  pycrdt.Array    ordered, index-addressed
    NodeKind.TEXT      pycrdt.Text     characters, offset-addressed
    NodeKind.LEAF      primitives      None / bool / int / float / str

A raw ``str`` stored directly in a container is a LEAF, not a TEXT:
it holds a string value but cannot be edited character by character.

Every dispatcher in ydiff calls node_kind() and handles all four
members; anything else raises UnsupportedLiveKind.
"""

from contextlib import contextmanager
from enum import Enum, auto
from typing import Any, Callable, Iterator, Optional, Union

from pycrdt import Array, Doc, Map, Text

from .errors import UnsupportedLiveKind

# Values pycrdt stores as opaque leaves inside containers
LEAF_TYPES = (type(None), bool, int, float, str, bytes, dict, list)

LiveNode = Union[Map, Array, Text]


class NodeKind(Enum):
    """The kinds of node a live tree can hold."""
    MAP = auto()
    SEQUENCE = auto()
    TEXT = auto()
    LEAF = auto()


def node_kind(node: Any) -> NodeKind:
    """Classify a live object.  Raises UnsupportedLiveKind for anything
    that is neither a known shared type nor a storable primitive."""
    if isinstance(node, Map):
        return NodeKind.MAP
    if isinstance(node, Array):
        return NodeKind.SEQUENCE
    if isinstance(node, Text):
        return NodeKind.TEXT
    if isinstance(node, LEAF_TYPES):
        return NodeKind.LEAF
    raise UnsupportedLiveKind(node)


def serialize(node: Any) -> Any:
    """Snapshot value currently represented by a live node."""
    kind = node_kind(node)
    if kind is NodeKind.LEAF:
        return node
    if kind is NodeKind.TEXT:
        return str(node)
    if kind is NodeKind.MAP or kind is NodeKind.SEQUENCE:
        return node.to_py()
    raise UnsupportedLiveKind(node)


# ═══════════════════════════════════════════════════════════════════
#  CONSTRUCTION (preliminary, not yet attached to a document)
# ═══════════════════════════════════════════════════════════════════

def new_map(entries: dict[str, Any]) -> Map:
    return Map(entries)


def new_sequence(items: list[Any]) -> Array:
    return Array(items)


def new_text(content: str) -> Text:
    return Text(content)


# ═══════════════════════════════════════════════════════════════════
#  MUTATION PRIMITIVES
# ═══════════════════════════════════════════════════════════════════

def map_get(node: Map, key: str) -> Any:
    return node.get(key)


def map_has(node: Map, key: str) -> bool:
    return key in node


def map_set(node: Map, key: str, value: Any) -> None:
    node[key] = value


def map_delete(node: Map, key: str) -> bool:
    """Delete ``key`` if present.  Another writer may already have
    removed it, so a missing key is not an error."""
    if key in node:
        del node[key]
        return True
    return False


def length(node: Union[Array, Text]) -> int:
    return len(node)


def seq_get(node: Array, index: int) -> Any:
    return node[index]


def seq_insert(node: Array, index: int, value: Any) -> None:
    node.insert(index, value)


def seq_delete(node: Array, index: int, count: int = 1) -> None:
    if count > 0:
        del node[index:index + count]


def text_insert(node: Text, offset: int, content: str) -> None:
    if content:
        node.insert(offset, content)


def text_delete(node: Text, offset: int, count: int) -> None:
    if count > 0:
        del node[offset:offset + count]


# ═══════════════════════════════════════════════════════════════════
#  DOCUMENT-LEVEL SERVICES
# ═══════════════════════════════════════════════════════════════════

def document_of(node: Any) -> Optional[Doc]:
    """The document a shared type is attached to, or None for leaves
    and preliminary types."""
    if node_kind(node) is NodeKind.LEAF:
        return None
    try:
        return node.doc
    except RuntimeError:
        # preliminary type, not integrated yet
        return None


@contextmanager
def transaction(node: Any) -> Iterator[None]:
    """Group every mutation made inside the block into one transaction
    on the node's document.  Transactions nest: inside a caller's own
    ``doc.transaction()`` this joins the outer one."""
    doc = document_of(node)
    if doc is None:
        yield
        return
    with doc.transaction():
        yield


def observe(node: LiveNode, handler: Callable[[list], None]) -> Any:
    """Register ``handler`` for deep change batches on ``node``.
    Returns the pycrdt subscription, which the caller must keep to
    unobserve later."""
    if node_kind(node) is NodeKind.LEAF:
        raise UnsupportedLiveKind(node)
    return node.observe_deep(handler)
