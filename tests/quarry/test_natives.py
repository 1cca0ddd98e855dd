"""Tests for the core native filters."""

import logging
import math

import pytest

from quarry import QuarryNatives


class TestQuarryNativesRegistry:
    """Test the native table itself."""

    def test_names_and_arities_are_unique(self):
        """Test that no (name, arity) pair is registered twice."""
        natives = QuarryNatives().get_natives()
        keys = [(native.name, native.arity) for native in natives]
        assert len(keys) == len(set(keys))

    def test_path_capable_natives(self):
        """Test which natives can be used in path mode."""
        natives = {(n.name, n.arity): n for n in QuarryNatives().get_natives()}
        for key in [("empty", 0), ("error", 0), ("error", 1), ("first", 1), ("last", 1), ("limit", 2),
                    ("recurse", 1), ("getpath", 1)]:
            assert natives[key].paths is not None, key

        assert natives[("length", 0)].paths is None
        assert natives[("path", 1)].path_args == (0,)


class TestQuarryNativesBasics:
    """Test type, length, keys and conversions."""

    def test_length(self, quarry, helpers):
        """Test length of each type."""
        helpers.assert_outputs(quarry, "[.[] | length]", [None, -5, "abc", [1, 2], {"a": 1}], [[0, 5, 3, 2, 1]])
        helpers.assert_error(quarry, "true | length", None, "has no length")

    def test_keys_and_has(self, quarry, helpers):
        """Test keys, keys_unsorted and has."""
        value = {"b": 1, "a": 2}
        helpers.assert_outputs(quarry, "keys, keys_unsorted", value, [["a", "b"], ["b", "a"]])
        helpers.assert_outputs(quarry, 'has("a"), has("z")', value, [True, False])
        helpers.assert_outputs(quarry, "has(0), has(5)", [1], [True, False])

    def test_type_and_not(self, quarry, helpers):
        """Test type names and boolean negation."""
        helpers.assert_outputs(quarry, "[.[] | type]", [None, True, 1, "s", [], {}],
                               [["null", "boolean", "number", "string", "array", "object"]])
        helpers.assert_outputs(quarry, "[.[] | not]", [None, False, 0], [[True, True, False]])

    def test_conversions(self, quarry, helpers):
        """Test tostring, tonumber, tojson and fromjson."""
        helpers.assert_outputs(quarry, "[.[] | tostring]", [1, "a", [1]], [["1", "a", "[1]"]])
        helpers.assert_outputs(quarry, '"12", "1.5", 3 | tonumber', None, [12, 1.5, 3])
        helpers.assert_error(quarry, '"abc" | tonumber', None, "Cannot parse")
        helpers.assert_outputs(quarry, "tojson", {"a": [1, None]}, ['{"a":[1,null]}'])
        helpers.assert_outputs(quarry, "fromjson", '{"a": [1, null]}', [{"a": [1, None]}])

    def test_add(self, quarry, helpers):
        """Test summing and concatenating."""
        helpers.assert_outputs(quarry, "add", [1, 2, 3], [6])
        helpers.assert_outputs(quarry, "add", [[1], [2]], [[1, 2]])
        helpers.assert_outputs(quarry, "add", [], [None])

    def test_contains(self, quarry, helpers):
        """Test containment."""
        helpers.assert_outputs(quarry, 'contains("bar")', "foobar", [True])
        helpers.assert_outputs(quarry, 'contains({"a": [1]})', {"a": [1, 2], "b": 3}, [True])


class TestQuarryNativesStrings:
    """Test string natives."""

    def test_case(self, quarry, helpers):
        """Test ASCII case conversion leaves other characters alone."""
        helpers.assert_outputs(quarry, "ascii_downcase, ascii_upcase", "AbÉ", ["abÉ", "ABÉ"])

    def test_explode_implode(self, quarry, helpers):
        """Test conversion to and from codepoints."""
        helpers.assert_outputs(quarry, "explode", "aé", [[97, 233]])
        helpers.assert_outputs(quarry, "implode", [97, 233], ["aé"])

    def test_trimming_and_affixes(self, quarry, helpers):
        """Test ltrimstr, rtrimstr, startswith and endswith."""
        helpers.assert_outputs(quarry, 'ltrimstr("foo"), rtrimstr("bar")', "foobar", ["bar", "foo"])
        helpers.assert_outputs(quarry, 'ltrimstr("x")', 5, [5])
        helpers.assert_outputs(quarry, 'startswith("foo"), endswith("foo")', "foobar", [True, False])
        helpers.assert_error(quarry, 'startswith("a")', 1, "requires string inputs")

    def test_split_and_join(self, quarry, helpers):
        """Test split and join."""
        helpers.assert_outputs(quarry, 'split(", ")', "a, b, c", [["a", "b", "c"]])
        helpers.assert_outputs(quarry, 'join("-")', ["a", 1, None, True], ["a-1--true"])
        helpers.assert_outputs(quarry, 'join("-")', [], [""])
        helpers.assert_error(quarry, 'join("-")', [[1]], "Cannot join")


class TestQuarryNativesMath:
    """Test numeric natives."""

    def test_rounding(self, quarry, helpers):
        """Test floor, ceil, round and fabs."""
        helpers.assert_outputs(quarry, "floor, ceil, round, fabs", -2.5, [-3, -2, -3, 2.5])
        helpers.assert_outputs(quarry, "sqrt", 16, [4.0])

    def test_special_values(self, quarry):
        """Test infinite, nan and isnan."""
        result = quarry.evaluate("infinite, (nan | isnan), (1 | isnan)", None)
        assert result[0] == math.inf
        assert result[1:] == [True, False]

    def test_number_required(self, quarry, helpers):
        """Test the error for a non-number."""
        helpers.assert_error(quarry, "floor", "a", "number required")

    def test_square_root_of_negative_is_nan(self, quarry):
        """Test that sqrt of a negative number is nan rather than an error."""
        result = quarry.evaluate('try (-1 | sqrt) catch "caught"', None)
        assert len(result) == 1
        assert math.isnan(result[0])

    def test_rounding_leaves_non_finite_values(self, quarry):
        """Test that floor, ceil and round pass infinities and nan through."""
        assert quarry.evaluate("infinite | floor, ceil, round", None) == [math.inf] * 3
        assert quarry.evaluate("-infinite | floor", None) == [-math.inf]
        assert all(math.isnan(item) for item in quarry.evaluate("nan | floor, ceil, round", None))

    def test_out_of_range_argument(self, quarry, helpers):
        """Test that a value a math function cannot take is an error element."""
        helpers.assert_error(quarry, "fabs", 10 ** 400, "out of range for fabs")
        helpers.assert_outputs(quarry, 'try fabs catch "caught"', 10 ** 400, ["caught"])


class TestQuarryNativesArrays:
    """Test sorting and grouping."""

    def test_sort(self, quarry, helpers):
        """Test sorting by the total order."""
        helpers.assert_outputs(quarry, "sort", [3, "a", None, 1], [[None, 1, 3, "a"]])
        helpers.assert_error(quarry, "sort", {"a": 1}, "cannot be sorted")

    def test_sort_by_is_stable(self, quarry, helpers):
        """Test sorting by a key, keeping equal elements in order."""
        value = [{"k": 2, "n": 1}, {"k": 1, "n": 2}, {"k": 2, "n": 3}]
        helpers.assert_outputs(quarry, "[sort_by(.k)[] | .n]", value, [[2, 1, 3]])

    def test_group_and_unique_by(self, quarry, helpers):
        """Test grouping by a key."""
        value = [1, 2, 3, 4, 5]
        helpers.assert_outputs(quarry, "group_by(. % 2)", value, [[[2, 4], [1, 3, 5]]])
        helpers.assert_outputs(quarry, "unique_by(. % 2)", value, [[2, 1]])

    def test_min_and_max_by(self, quarry, helpers):
        """Test extremes by a key; ties pick the first minimum and last maximum."""
        value = [{"a": 1, "i": 0}, {"a": 3, "i": 1}, {"a": 1, "i": 2}, {"a": 3, "i": 3}]
        helpers.assert_outputs(quarry, "min_by(.a).i, max_by(.a).i", value, [0, 3])
        helpers.assert_outputs(quarry, "min_by(.a)", [], [None])

    def test_reverse(self, quarry, helpers):
        """Test reversing arrays, strings and null."""
        helpers.assert_outputs(quarry, "reverse", [1, 2, 3], [[3, 2, 1]])
        helpers.assert_outputs(quarry, "reverse", "abc", ["cba"])
        helpers.assert_outputs(quarry, "reverse", None, [[]])


class TestQuarryNativesGenerators:
    """Test generators and stream natives."""

    def test_range(self, quarry, helpers):
        """Test range over every combination of bounds."""
        helpers.assert_outputs(quarry, "[range(1; 4)]", None, [[1, 2, 3]])
        helpers.assert_outputs(quarry, "[range(0, 1; 3, 4)]", None, [[0, 1, 2, 0, 1, 2, 3, 1, 2, 1, 2, 3]])
        helpers.assert_error(quarry, 'range(0; "a")', None, "Range bounds must be numeric")

    def test_first_last_limit(self, quarry, helpers):
        """Test taking parts of a stream."""
        helpers.assert_outputs(quarry, "first(.[]), last(.[])", [1, 2, 3], [1, 3])
        helpers.assert_outputs(quarry, "[first(empty)]", None, [[]])
        helpers.assert_outputs(quarry, "[limit(2; .[])], [limit(0; .[])]", [1, 2, 3], [[1, 2], []])

    def test_first_stops_pulling(self, quarry, helpers):
        """Test that first does not evaluate past the first output."""
        helpers.assert_outputs(quarry, 'first(1, error("never"))', None, [1])

    def test_recurse(self, quarry, helpers):
        """Test recurse with a function."""
        helpers.assert_outputs(quarry, "[recurse(if . < 3 then . + 1 else empty end)]", 0, [[0, 1, 2, 3]])

    def test_recurse_is_iterative(self, quarry, helpers):
        """Test that recurse handles long chains without deep recursion."""
        helpers.assert_outputs(quarry, "[recurse(if . < 5000 then . + 1 else empty end)] | length", 0, [5001])


class TestQuarryNativesPaths:
    """Test path natives."""

    def test_paths(self, quarry, helpers):
        """Test listing every path."""
        helpers.assert_outputs(quarry, "[paths]", {"a": [1], "b": 2}, [[["a"], ["a", 0], ["b"]]])

    def test_getpath_setpath_delpaths(self, quarry, helpers):
        """Test reading, writing and deleting by path."""
        value = {"a": {"b": 1}}
        helpers.assert_outputs(quarry, 'getpath(["a", "b"]), getpath(["x", "y"])', value, [1, None])
        helpers.assert_outputs(quarry, 'setpath(["a", "c"]; 2)', value, [{"a": {"b": 1, "c": 2}}])
        helpers.assert_outputs(quarry, 'delpaths([["a", "b"]])', value, [{"a": {}}])
        helpers.assert_error(quarry, 'getpath("a")', value, "Path must be specified as an array")

    def test_entries(self, quarry, helpers):
        """Test to_entries and from_entries."""
        helpers.assert_outputs(quarry, "to_entries", {"a": 1}, [[{"key": "a", "value": 1}]])
        value = [{"key": "a", "value": 1}, {"k": "b", "v": 2}, {"name": 1, "value": None}, {"key": False}]
        helpers.assert_outputs(quarry, "from_entries", value, [{"a": 1, "b": 2, "1": None, "false": None}])


class TestQuarryNativesLogging:
    """Test debug and stderr."""

    def test_debug(self, quarry, helpers, caplog):
        """Test that debug logs the value and passes it on."""
        with caplog.at_level(logging.DEBUG, logger="QuarryNatives"):
            helpers.assert_outputs(quarry, "debug", [1], [[1]])

        assert '["DEBUG:",[1]]' in caplog.text

    def test_stderr(self, quarry, helpers, caplog):
        """Test that stderr logs compact JSON."""
        with caplog.at_level(logging.INFO, logger="QuarryNatives"):
            helpers.assert_outputs(quarry, "stderr", {"a": 1}, [{"a": 1}])

        assert '{"a":1}' in caplog.text


@pytest.mark.parametrize("text, value, expected", [
    ("error", "boom", "boom"),
    ('error("x")', None, "x"),
    ("error(null)", None, "null (not a string)"),
])
def test_error_messages(quarry, text, value, expected):
    """Test the message of a raised error."""
    result = list(quarry.run(text, value))
    assert result[-1].message == expected
