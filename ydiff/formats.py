"""
ydiff.formats — Snapshots and portable deltas as plain data and JSON.

Supported conversions:
    • Python objects (dict, list, tuple, str, int, float, bool, None) → snapshot
    • live node → snapshot
    • JSON strings ↔ snapshots
    • portable deltas ↔ canonical JSON (the wire form)
"""

import json
from typing import Any, Optional

from . import live
from .errors import InvalidDeltaShape
from .portable import Delta


# ═══════════════════════════════════════════════════════════════════
#  PYTHON OBJECTS / LIVE NODES → SNAPSHOTS
# ═══════════════════════════════════════════════════════════════════

def from_python(obj: Any) -> Any:
    """
    Normalize a Python object into a snapshot value.

    Mapping:
        dict          → dict with str keys
        list / tuple  → list
        str / bytes   → unchanged
        int / float   → unchanged
        bool / None   → unchanged

    Snapshots must be acyclic; a container that contains itself raises
    ValueError.  Anything else falls back to its string form.
    """
    return _from_python(obj, set())


def _from_python(obj: Any, active: set[int]) -> Any:
    if obj is None or isinstance(obj, (bool, int, float, str, bytes)):
        return obj

    if isinstance(obj, (dict, list, tuple)):
        if id(obj) in active:
            raise ValueError("snapshot values must be acyclic")
        active.add(id(obj))
        try:
            if isinstance(obj, dict):
                return {str(k): _from_python(v, active) for k, v in obj.items()}
            return [_from_python(item, active) for item in obj]
        finally:
            active.discard(id(obj))

    # Fallback: convert to string representation
    return str(obj)


def to_python(node: Any) -> Any:
    """Snapshot of a live node (Map → dict, Array → list, Text → str)."""
    return live.serialize(node)


# ═══════════════════════════════════════════════════════════════════
#  JSON STRINGS ↔ SNAPSHOTS
# ═══════════════════════════════════════════════════════════════════

def from_json(text: str) -> Any:
    """Parse a JSON string into a snapshot."""
    return json.loads(text)


def to_json(value: Any, **kwargs) -> str:
    """Serialize a snapshot (or a live node) to a JSON string."""
    if not isinstance(value, (dict, list, str, int, float, bool, type(None))):
        value = live.serialize(value)
    return json.dumps(value, **kwargs)


# ═══════════════════════════════════════════════════════════════════
#  PORTABLE DELTAS ↔ WIRE FORM
# ═══════════════════════════════════════════════════════════════════

def dumps_delta(delta: Optional[Delta]) -> str:
    """
    Canonical JSON for a portable delta: sorted keys, no whitespace.

    Equal deltas always produce identical bytes.  ``None`` (no change)
    is written as ``null``.
    """
    return json.dumps(delta, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def loads_delta(text: str) -> Optional[Delta]:
    """Parse the wire form back into a portable delta.

    Only the top-level shape is checked here; entry shapes are checked
    (and reported) when the delta is applied.
    """
    delta = json.loads(text)
    if delta is not None and not isinstance(delta, (dict, list)):
        raise InvalidDeltaShape((), "portable delta must be an object, an array or null", delta)
    return delta
