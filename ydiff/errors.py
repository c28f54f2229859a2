"""
ydiff.errors — Typed error taxonomy.

    YDiffError
    ├── TypeMismatch          live node kind disagrees with the old snapshot
    ├── StaleSnapshot         strict entry check: live content != old snapshot
    ├── InvalidDeltaShape     portable delta entry matches no known pattern
    └── UnsupportedLiveKind   a live object of unknown kind reached a dispatcher

TypeMismatch, StaleSnapshot and UnsupportedLiveKind abort the call that
raised them.  InvalidDeltaShape is isolated to the offending key/index:
the portable engine records it and moves on to the next sibling.
"""

from typing import Any, Union

__all__ = [
    "YDiffError",
    "TypeMismatch",
    "StaleSnapshot",
    "InvalidDeltaShape",
    "UnsupportedLiveKind",
    "format_error",
]


class YDiffError(Exception):
    """Base class for all errors raised by ydiff."""
    pass


class TypeMismatch(YDiffError):
    """The live node does not have the kind the old snapshot implies."""

    def __init__(self, message: str, path: tuple = ()):
        super().__init__(message)
        self.path = path


class StaleSnapshot(YDiffError):
    """The live node's content no longer equals the old snapshot."""

    def __init__(self, message: str, path: tuple = ()):
        super().__init__(message)
        self.path = path


class InvalidDeltaShape(YDiffError):
    """A portable delta entry that is neither addition, modification,
    deletion nor a nested delta."""

    def __init__(self, path: tuple[Union[int, str], ...], reason: str, entry: Any = None):
        path_str = "/".join(str(p) for p in path) or "(root)"
        super().__init__(f"{reason} at {path_str}")
        self.path = path
        self.reason = reason
        self.entry = entry


class UnsupportedLiveKind(YDiffError):
    """A live object that is not a Map, Array, Text or primitive leaf."""

    def __init__(self, obj: Any):
        self.type_name = type(obj).__name__
        super().__init__(f"unsupported live node type: {self.type_name}")


def format_error(e: BaseException) -> str:
    """Return a short, uniform message like 'TypeMismatch: detail'."""
    name = e.__class__.__name__
    msg = str(e).strip()
    return f"{name}: {msg}" if msg else name
