"""Tests for embedded JSON helpers."""

import pytest

from stockwatch.ingest.json_extractor import (
    MAX_JSON_DEPTH,
    element_store_name,
    extract_balanced,
    extract_script_states,
    find_array_literals,
    to_number,
    walk_keyed_arrays,
)


def nest(levels, leaf):
    obj = leaf
    for _ in range(levels):
        obj = {"child": obj}
    return obj


class TestWalkKeyedArrays:
    def test_finds_arrays_under_matching_keys(self):
        obj = {"a": {"nearbyStores": ["Poole"]}, "other": [1], "StoreList": [2]}
        found = list(walk_keyed_arrays(obj, "store"))
        assert ["Poole"] in found
        assert [2] in found
        assert [1] not in found

    def test_shallow_nesting_is_walked(self):
        obj = nest(5, {"stores": ["Poole"]})
        assert list(walk_keyed_arrays(obj, "store")) == [["Poole"]]

    def test_deep_nesting_is_cut_off(self):
        obj = nest(20, {"stores": ["Poole"]})
        assert list(walk_keyed_arrays(obj, "store")) == []

    def test_cap_is_inclusive(self):
        assert list(walk_keyed_arrays(nest(MAX_JSON_DEPTH, {"stores": [1]}), "store")) == [[1]]
        assert list(walk_keyed_arrays(nest(MAX_JSON_DEPTH + 1, {"stores": [1]}), "store")) == []

    def test_scalars_yield_nothing(self):
        assert list(walk_keyed_arrays("stores", "store")) == []
        assert list(walk_keyed_arrays(None, "store")) == []


class TestExtractBalanced:
    def test_nested_literal(self):
        text = 'x = [[1, 2], {"a": [3]}] tail'
        assert extract_balanced(text, 4) == '[[1, 2], {"a": [3]}]'

    def test_brackets_inside_strings_ignored(self):
        text = '["a]", "b\\"]"]'
        assert extract_balanced(text, 0) == text

    @pytest.mark.parametrize("text,start", [("[1, 2", 0), ("[1}", 0), ("abc", 0), ("[]", 5)])
    def test_unusable_input_returns_none(self, text, start):
        assert extract_balanced(text, start) is None


class TestFindArrayLiterals:
    def test_keys_with_colon_or_equals(self):
        text = 'var a = {"stores": ["P"], mystores: ["Q"]}; stores = [1, 2];'
        assert find_array_literals(text, ("stores",)) == [["P"], [1, 2]]

    def test_single_quoted_key(self):
        assert find_array_literals("{'stores': [\"P\"]}", ("stores",)) == [["P"]]

    def test_unparseable_literal_skipped(self):
        assert find_array_literals("stores: [P, Q]", ("stores",)) == []


class TestScalars:
    @pytest.mark.parametrize("value,expected", [
        (5, 5),
        (2.5, 2.5),
        ("1,234.5", 1234.5),
        (" 7 ", 7.0),
        (True, 1.0),
        (None, 0),
        ("abc", 0),
        ([1], 0),
    ])
    def test_to_number(self, value, expected):
        assert to_number(value) == expected

    def test_to_number_default(self):
        assert to_number("n/a", default=-1) == -1

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan"), "Infinity", "nan", "1e999"])
    def test_non_finite_uses_default(self, value):
        assert to_number(value, default=-1) == -1

    @pytest.mark.parametrize("element,expected", [
        ("Poole", "Poole"),
        ("  ", None),
        ({"storeName": "Poole", "name": "ignored"}, "Poole"),
        ({"location": "Boscombe"}, "Boscombe"),
        ({"id": 4, "town": "Wimborne"}, "Wimborne"),
        ({"id": 4, "code": "ab"}, None),
        (42, None),
    ])
    def test_element_store_name(self, element, expected):
        assert element_store_name(element) == expected


class TestScriptStates:
    def test_collects_json_blocks_and_assignments(self):
        markup = (
            '<script id="__NEXT_DATA__" type="application/json">{"page": 1}</script>'
            '<script type="application/ld+json">{"@type": "Product"}</script>'
            '<script>window.__NUXT__ = {"state": {"stores": []}};</script>'
            "<script>console.log('no state here')</script>"
        )
        states = extract_script_states(markup)
        assert {"page": 1} in states
        assert {"@type": "Product"} in states
        assert {"state": {"stores": []}} in states
        assert len(states) == 3

    def test_invalid_json_block_skipped(self):
        markup = '<script type="application/json">{broken</script>'
        assert extract_script_states(markup) == []
