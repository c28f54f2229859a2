"""
Test suite for ydiff.portable and ydiff.formats — portable deltas.

    §1  Producer (diff)
    §2  Applying deltas to live documents
    §3  Malformed deltas
    §4  Wire form
"""

import os
import sys

import pytest
from pycrdt import Array, Doc, Map, Text

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ydiff.core import MutationOp, materialize
from ydiff.errors import InvalidDeltaShape, TypeMismatch, UnsupportedLiveKind
from ydiff.formats import dumps_delta, from_python, loads_delta, to_json
from ydiff.live import NodeKind, node_kind, serialize
from ydiff.portable import apply_portable_delta, diff, is_deletion


def _root(entries=None):
    doc = Doc()
    root = Map()
    doc["root"] = root
    if entries:
        with doc.transaction():
            for key, value in entries.items():
                root[key] = materialize(value)
    return doc, root


# ═══════════════════════════════════════════════════════════════════
#  §1  PRODUCER
# ═══════════════════════════════════════════════════════════════════

class TestDiff:

    def test_equal_values(self):
        assert diff({"a": [1, "x"]}, {"a": [1, "x"]}) is None
        assert diff("same", "same") is None
        assert diff(1, 1.0) is None

    def test_map_entries(self):
        assert diff({"a": 1}, {"a": 2}) == {"a": [1, 2]}
        assert diff({"a": 1, "b": 2}, {"a": 1}) == {"b": [2, 0, 0]}
        assert diff({"a": 1}, {"a": 1, "b": 2}) == {"b": [2]}

    def test_nested_map(self):
        old = {"a": {"b": 1, "c": 2}}
        new = {"a": {"b": 1, "c": 3}}
        assert diff(old, new) == {"a": {"c": [2, 3]}}

    def test_sequence_modification(self):
        old = {"fruits": ["apple", "banana", "cherry"]}
        new = {"fruits": ["apple", "blueberry", "cherry"]}
        assert diff(old, new) == {"fruits": {"_t": "a", "1": ["banana", "blueberry"]}}

    def test_sequence_deletion(self):
        assert diff([1, 2, 3], [1, 3]) == {"_t": "a", "_1": [2, 0, 0]}

    def test_sequence_insertion(self):
        assert diff([1, 3], [1, 2, 3]) == {"_t": "a", "1": [2]}

    def test_nested_delta_in_sequence(self):
        assert diff([{"a": 1}], [{"a": 2}]) == {"_t": "a", "0": {"a": [1, 2]}}

    def test_kind_change_is_leaf(self):
        assert diff({"x": [1]}, {"x": {"a": 1}}) == {"x": [[1], {"a": 1}]}
        assert diff("hello", "help") == ["hello", "help"]

    def test_bool_and_int_differ(self):
        assert diff({"a": True}, {"a": 1}) == {"a": [True, 1]}


# ═══════════════════════════════════════════════════════════════════
#  §2  APPLYING DELTAS
# ═══════════════════════════════════════════════════════════════════

ROUND_TRIPS = [
    ({"a": 1}, {"a": 2}),
    ({"a": 1, "b": 2}, {"a": 1}),
    ({}, {"a": {"b": {"c": 1}}}),
    ({"a": None}, {"a": 1}),
    ({"a": 0}, {}),
    ({"a": [1, 2, 3]}, {"a": [3, 2, 1]}),
    ({"l": ["x", "y"]}, {"l": ["y", "z"]}),
    ({"fruits": ["apple", "banana", "cherry"]}, {"fruits": ["apple", "blueberry", "cherry"]}),
    ({"items": [{"id": 1, "v": "a"}, {"id": 2}]}, {"items": [{"id": 1, "v": "b"}, {"id": 2}, {"id": 3}]}),
    ({"t": "hello"}, {"t": "help"}),
    ({"x": [1]}, {"x": {"a": 1}}),
    ({"m": {"deep": [[1, 2], [3]]}}, {"m": {"deep": [[1], [3, 4], []]}}),
    ({"flags": [True, 1, False, 0]}, {"flags": [1, True, 0, False]}),
]


class TestApplyPortable:

    @pytest.mark.parametrize("old,new", ROUND_TRIPS)
    def test_round_trip(self, old, new):
        doc, root = _root(old)
        result = apply_portable_delta(root, diff(old, new))
        assert result.ok, result.error
        assert not result.issues
        assert serialize(root) == new

    def test_root_sequence(self):
        doc = Doc()
        arr = Array()
        doc["arr"] = arr
        arr.extend([1, 2, 3, 4])
        result = apply_portable_delta(arr, diff([1, 2, 3, 4], [0, 1, 3, 4, 5]))
        assert result.ok
        assert serialize(arr) == [0, 1, 3, 4, 5]

    def test_deletions_run_before_insertions(self):
        doc = Doc()
        arr = Array()
        doc["arr"] = arr
        arr.extend(["a", "b", "c"])
        delta = {"_t": "a", "_0": ["a", 0, 0], "_2": ["c", 0, 0], "0": ["x"], "2": ["y"]}
        result = apply_portable_delta(arr, delta)
        assert result.ok
        assert serialize(arr) == ["x", "b", "y"]
        ops = [m.op for m in result.mutations]
        assert ops == [MutationOp.SEQ_DELETE, MutationOp.SEQ_DELETE,
                       MutationOp.SEQ_INSERT, MutationOp.SEQ_INSERT]

    def test_none_delta_is_noop(self):
        doc, root = _root({"a": 1})
        result = apply_portable_delta(root, None)
        assert result.ok
        assert result.mutations == []

    def test_added_string_becomes_text(self):
        doc, root = _root()
        apply_portable_delta(root, {"greeting": ["hi"]}).raise_for_error()
        assert node_kind(root["greeting"]) is NodeKind.TEXT

    def test_text_modification_stays_in_place(self):
        doc, root = _root({"greeting": "Hello, world!"})
        result = apply_portable_delta(root, {"greeting": ["Hello, world!", "Hello, Yjs!"]})
        assert result.ok
        assert str(root["greeting"]) == "Hello, Yjs!"
        ops = {m.op for m in result.mutations}
        assert ops == {MutationOp.TEXT_DELETE, MutationOp.TEXT_INSERT}

    def test_text_delta_on_text_root(self):
        doc = Doc()
        text = Text()
        doc["text"] = text
        text += "hello"
        assert apply_portable_delta(text, ["hello", "help"]).ok
        assert str(text) == "help"
        assert apply_portable_delta(text, ["yelp"]).ok
        assert str(text) == "yelp"

    def test_modification_of_missing_key_sets_it(self):
        doc, root = _root()
        result = apply_portable_delta(root, {"a": [1, 2]})
        assert result.ok
        assert root["a"] == 2
        assert result.mutations[0].op is MutationOp.MAP_SET

    def test_nested_entry_creates_missing_map(self):
        doc, root = _root()
        result = apply_portable_delta(root, {"m": {"x": [1]}})
        assert result.ok
        assert serialize(root) == {"m": {"x": 1}}
        assert node_kind(root["m"]) is NodeKind.MAP

    def test_nested_entry_creates_missing_sequence(self):
        doc, root = _root()
        result = apply_portable_delta(root, {"l": {"_t": "a", "0": ["a"]}})
        assert result.ok
        assert serialize(root) == {"l": ["a"]}
        assert node_kind(root["l"]) is NodeKind.SEQUENCE

    def test_deleting_absent_key_is_quiet(self):
        doc, root = _root({"a": 1})
        result = apply_portable_delta(root, {"b": [2, 0, 0]})
        assert result.ok
        assert result.mutations == []
        assert serialize(root) == {"a": 1}

    def test_one_transaction_per_call(self):
        doc, root = _root({"a": 1, "l": [1, 2]})
        batches = []
        subscription = root.observe_deep(lambda events: batches.append(len(events)))
        apply_portable_delta(root, {"a": [1, 2], "b": [3], "l": {"_t": "a", "2": [3]}})
        root.unobserve(subscription)
        assert len(batches) == 1


# ═══════════════════════════════════════════════════════════════════
#  §3  MALFORMED DELTAS
# ═══════════════════════════════════════════════════════════════════

class TestMalformed:

    def test_deletion_sentinels_must_be_ints(self):
        assert is_deletion([1, 0, 0])
        assert not is_deletion([1, False, False])
        assert not is_deletion([1, 0.0, 0])
        assert not is_deletion([1, 0])

    def test_false_sentinel_is_not_a_deletion(self):
        doc, root = _root({"a": "x"})
        result = apply_portable_delta(root, {"a": ["x", False, False]})
        assert result.ok
        assert len(result.issues) == 1
        assert serialize(root) == {"a": "x"}

    def test_bad_entries_are_isolated(self, caplog):
        doc, root = _root({"a": 1})
        with caplog.at_level("WARNING", logger="ydiff.portable"):
            result = apply_portable_delta(root, {"a": "bogus", "b": [5], "c": [1, 2, 3]})
        assert result.ok
        assert len(result.issues) == 2
        assert all(isinstance(issue, InvalidDeltaShape) for issue in result.issues)
        assert {issue.path for issue in result.issues} == {("a",), ("c",)}
        assert serialize(root) == {"a": 1, "b": 5}
        assert "skipping" in caplog.text

    def test_non_ascii_digits_are_not_indexes(self):
        doc = Doc()
        arr = Array()
        doc["arr"] = arr
        arr.extend([1, 2])
        result = apply_portable_delta(arr, {"_t": "a", "\u00b2": [9], "_\u00b3": [1, 0, 0], "0": [1, 5]})
        assert result.ok
        assert len(result.issues) == 2
        assert serialize(arr) == [5, 2]

    def test_sequence_delta_without_marker(self):
        doc = Doc()
        arr = Array()
        doc["arr"] = arr
        arr.extend([1])
        result = apply_portable_delta(arr, {"0": [0]})
        assert result.ok
        assert len(result.issues) == 1
        assert serialize(arr) == [1]

    def test_moves_are_reported(self):
        doc = Doc()
        arr = Array()
        doc["arr"] = arr
        arr.extend([1, 2, 3])
        result = apply_portable_delta(arr, {"_t": "a", "_0": ["", 2, 3], "3": [4]})
        assert len(result.issues) == 1
        assert result.issues[0].path == ("_0",)
        assert serialize(arr) == [1, 2, 3, 4]

    def test_out_of_range_indexes(self):
        doc = Doc()
        arr = Array()
        doc["arr"] = arr
        arr.extend([1])
        result = apply_portable_delta(arr, {"_t": "a", "_5": [9, 0, 0], "7": [2], "3": [1, 2]})
        assert result.ok
        assert len(result.issues) == 3
        assert serialize(arr) == [1]

    def test_nested_delta_for_wrong_kind(self):
        doc, root = _root({"a": 1, "l": [1]})
        result = apply_portable_delta(root, {"a": {"x": [1]}, "l": {"k": [1]}})
        assert result.ok
        assert len(result.issues) == 2
        assert serialize(root) == {"a": 1, "l": [1]}

    def test_sequence_delta_for_map_node(self):
        doc, root = _root({"a": 1})
        result = apply_portable_delta(root, {"_t": "a", "0": [1]})
        assert len(result.issues) == 1

    def test_bad_text_deltas(self):
        doc = Doc()
        text = Text()
        doc["text"] = text
        text += "abc"
        for delta in ({"0": ["x"]}, ["a", "b", "c", "d"], [5]):
            result = apply_portable_delta(text, delta)
            assert len(result.issues) == 1, delta
        assert str(text) == "abc"

    def test_leaf_root(self):
        result = apply_portable_delta(5, {"a": [1]})
        assert isinstance(result.error, TypeMismatch)

    def test_unsupported_live_object(self):
        result = apply_portable_delta(object(), {"a": [1]})
        assert isinstance(result.error, UnsupportedLiveKind)
        with pytest.raises(UnsupportedLiveKind):
            result.raise_for_error()


# ═══════════════════════════════════════════════════════════════════
#  §4  WIRE FORM
# ═══════════════════════════════════════════════════════════════════

class TestWireForm:

    def test_canonical_json(self):
        assert dumps_delta({"b": [1], "a": [1, 2]}) == '{"a":[1,2],"b":[1]}'
        assert dumps_delta({"_t": "a", "0": ["é"]}) == '{"0":["é"],"_t":"a"}'
        assert dumps_delta(None) == "null"

    def test_loads(self):
        assert loads_delta('{"a":[1,2]}') == {"a": [1, 2]}
        assert loads_delta("null") is None
        with pytest.raises(InvalidDeltaShape):
            loads_delta("3")

    def test_stored_delta_applies_later(self):
        old = {"todo": ["milk", "eggs"], "done": False}
        new = {"todo": ["milk", "bread", "eggs"], "done": True}
        wire = dumps_delta(diff(old, new))
        doc, root = _root(old)
        apply_portable_delta(root, loads_delta(wire)).raise_for_error()
        assert serialize(root) == new

    def test_from_python(self):
        assert from_python({1: (1, 2), "b": None}) == {"1": [1, 2], "b": None}
        loop = []
        loop.append(loop)
        with pytest.raises(ValueError):
            from_python(loop)

    def test_to_json_of_live_node(self):
        doc, root = _root({"a": [1, "x"]})
        assert to_json(root, sort_keys=True) in ('{"a": [1, "x"]}', '{"a": [1.0, "x"]}')
