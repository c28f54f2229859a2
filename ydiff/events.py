"""
ydiff.events — Rebuilding snapshots from live change events.

The live tree reports each transaction as one batch of events.  Each
event names the path (from the observed node) of a node that changed.
The reconstructor serializes that node and grafts the result into the
previous snapshot, copying only the containers along the path:

    before:  {"a": A, "b": {"x": 1, "y": Y}}
    event:   path ("b", "x"), value 2
    after:   {"a": A, "b": {"x": 2, "y": Y}}     A and Y are the same objects

One batch produces one new snapshot and one notification, never one
per event.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from . import live
from .core import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """
    A live change, normalized.

    ``value`` is the serialized node at ``path`` after the change.
    ``action`` is "add", "update" or "delete"; ``keys`` maps each
    changed map key to its own action (empty for sequences and text).
    """
    path: Path
    value: Any
    action: str = "update"
    keys: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_live(cls, event: Any) -> "ChangeEvent":
        """Normalize a pycrdt MapEvent / ArrayEvent / TextEvent."""
        path = tuple(event.path)
        value = live.serialize(event.target)

        keys: dict[str, str] = {}
        raw_keys = getattr(event, "keys", None)
        if isinstance(raw_keys, dict):
            for key, change in raw_keys.items():
                action = change.get("action") if isinstance(change, dict) else None
                keys[key] = action or "update"
            action = _summarize(keys.values())
        else:
            action = _action_from_delta(getattr(event, "delta", None))

        return cls(path, value, action, keys)


def _summarize(actions: Iterable[str]) -> str:
    distinct = set(actions)
    if len(distinct) == 1:
        return distinct.pop()
    return "update"


def _action_from_delta(delta: Any) -> str:
    if not isinstance(delta, list):
        return "update"
    ops = set()
    for item in delta:
        if isinstance(item, dict):
            if "insert" in item:
                ops.add("add")
            elif "delete" in item:
                ops.add("delete")
    return _summarize(ops) if ops else "update"


# ═══════════════════════════════════════════════════════════════════
#  PATH-SCOPED IMMUTABLE REBUILD
# ═══════════════════════════════════════════════════════════════════

def rebuild_at(snapshot: Any, path: Path, value: Any) -> Any:
    """
    Copy of ``snapshot`` with ``value`` at ``path``.

    Only the containers along the path are copied; every other branch
    is shared with ``snapshot``.  Where the path does not fit the
    snapshot (an index into a dict, a key into a list, a missing
    parent) the subtree at that point becomes ``value``.
    """
    if not path or snapshot is None:
        return value

    step, rest = path[0], path[1:]

    if isinstance(step, int) and not isinstance(step, bool):
        if not isinstance(snapshot, (list, tuple)):
            return value
        items = list(snapshot)
        if step < len(items):
            items[step] = rebuild_at(items[step], rest, value)
        else:
            items.extend([None] * (step - len(items)))
            items.append(rebuild_at(None, rest, value))
        return items

    if isinstance(step, str):
        if not isinstance(snapshot, dict):
            return value
        updated = dict(snapshot)
        updated[step] = rebuild_at(snapshot.get(step), rest, value)
        return updated

    return value


# ═══════════════════════════════════════════════════════════════════
#  EVENT RECONSTRUCTOR
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SnapshotState:
    """The current snapshot and how many batches produced it."""
    value: Any
    version: int = 0


def reconstruct(state: SnapshotState, events: Iterable[Any]) -> SnapshotState:
    """
    Fold one batch of events into ``state``.

    Events may be ChangeEvent instances or raw pycrdt events.  Returns
    ``state`` itself when the batch is empty.
    """
    value = state.value
    count = 0
    for event in events:
        change = event if isinstance(event, ChangeEvent) else ChangeEvent.from_live(event)
        value = rebuild_at(value, change.path, change.value)
        count += 1
    if count == 0:
        return state
    logger.debug("rebuilt snapshot from %d events", count)
    return SnapshotState(value, state.version + 1)


class EventReconstructor:
    """Owns the snapshot kept in step with one observed live node."""

    def __init__(self, initial: Any):
        self.state = SnapshotState(initial)

    @property
    def snapshot(self) -> Any:
        return self.state.value

    def apply(self, events: Iterable[Any]) -> SnapshotState:
        self.state = reconstruct(self.state, events)
        return self.state


def make_event_handler(
    initial: Any,
    on_update: Callable[[Any], None],
) -> Callable[[list], None]:
    """
    Batch handler for ``node.observe_deep``.

    Each non-empty batch produces one new snapshot, delivered to
    ``on_update`` once.  The reconstructor holding the state is
    reachable as ``handler.reconstructor``.
    """
    reconstructor = EventReconstructor(initial)

    def handler(events: list) -> None:
        before = reconstructor.state
        after = reconstructor.apply(events)
        if after is not before:
            on_update(after.value)

    handler.reconstructor = reconstructor  # type: ignore[attr-defined]
    return handler


def subscribe(node: Any, initial: Any, on_update: Callable[[Any], None]) -> tuple[Any, Callable]:
    """Create a handler and register it on ``node``.

    Returns ``(subscription, handler)``.
    """
    handler = make_event_handler(initial, on_update)
    return live.observe(node, handler), handler
