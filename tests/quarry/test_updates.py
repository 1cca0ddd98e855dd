"""Tests for path mode and assignment operators."""

from quarry import QuarryPathError


class TestQuarryPaths:
    """Test path(f) and path-mode evaluation."""

    def test_simple_paths(self, quarry, helpers):
        """Test paths of fields, indices, iteration and slices."""
        helpers.assert_outputs(quarry, "path(.a[0].b)", None, [["a", 0, "b"]])
        helpers.assert_outputs(quarry, "[path(.a[])]", {"a": [1, 2]}, [[["a", 0], ["a", 1]]])
        helpers.assert_outputs(quarry, "path(.[1:2])", [1, 2, 3], [[{"start": 1, "end": 2}]])

    def test_paths_through_control_flow(self, quarry, helpers):
        """Test paths through select, alternative, if and recursion."""
        value = {"a": 1, "b": None, "c": [3]}
        helpers.assert_outputs(quarry, "[path(.[] | select(. != null))]", value, [[["a"], ["c"]]])
        helpers.assert_outputs(quarry, "path(.b // .a)", value, [["a"]])
        helpers.assert_outputs(quarry, 'path(if .a == 1 then .c else .b end)', value, [["c"]])
        helpers.assert_outputs(quarry, "[path(..)]", {"a": [1]}, [[[], ["a"], ["a", 0]]])

    def test_recursive_descent_paths_on_branching_input(self, quarry, helpers):
        """Test that every path of `..` leads from the root to its own value."""
        helpers.assert_outputs(quarry, "[path(..)]", [1, [2]], [[[], [0], [1], [1, 0]]])
        value = {"a": {"b": 1}, "c": [2, [3]]}
        helpers.assert_outputs(quarry, "[path(..)]", value, [
            [[], ["a"], ["a", "b"], ["c"], ["c", 0], ["c", 1], ["c", 1, 0]]
        ])
        helpers.assert_outputs(quarry, "[path(..)] == [[]] + [paths]", value, [True])
        helpers.assert_outputs(quarry, "[path(..) as $p | getpath($p)] == [..]", value, [True])

    def test_paths_through_natives(self, quarry, helpers):
        """Test natives that support path mode."""
        value = {"a": [1, 2, 3]}
        helpers.assert_outputs(quarry, "path(first(.a[]))", value, [["a", 0]])
        helpers.assert_outputs(quarry, "path(last(.a[]))", value, [["a", 2]])
        helpers.assert_outputs(quarry, "[path(limit(2; .a[]))]", value, [[["a", 0], ["a", 1]]])
        helpers.assert_outputs(quarry, 'path(getpath(["a", 1]))', value, [["a", 1]])
        helpers.assert_outputs(quarry, "[path(empty)]", value, [[]])

    def test_path_through_variable_binding(self, quarry, helpers):
        """Test that bound variables can be used inside a path."""
        helpers.assert_outputs(quarry, '"b" as $k | path(.a[$k])', None, [["a", "b"]])

    def test_path_error_at_run_time(self, quarry, helpers):
        """Test that a catch handler's value cannot be used as a path."""
        error = helpers.assert_error(quarry, 'path(try error("x") catch .)', None, "Invalid path expression")
        assert isinstance(error, QuarryPathError)


class TestQuarryUpdates:
    """Test the assignment operators."""

    def test_update_assignment(self, quarry, helpers):
        """Test `|=` on several paths."""
        helpers.assert_outputs(quarry, ".a |= . + 1", {"a": 1, "b": 2}, [{"a": 2, "b": 2}])
        helpers.assert_outputs(quarry, ".[] |= . * 2", [1, 2, 3], [[2, 4, 6]])
        helpers.assert_outputs(quarry, ".a.b |= 5", None, [{"a": {"b": 5}}])

    def test_update_uses_first_output(self, quarry, helpers):
        """Test that only the first output of the rhs is used."""
        helpers.assert_outputs(quarry, ".a |= (1, 2)", {"a": 0}, [{"a": 1}])

    def test_update_with_empty_deletes(self, quarry, helpers):
        """Test that an empty rhs removes the location."""
        helpers.assert_outputs(quarry, "(.[] | select(. >= 2)) |= empty", [1, 5, 3, 0], [[1, 0]])
        helpers.assert_outputs(quarry, ".a |= empty", {"a": 1, "b": 2}, [{"b": 2}])

    def test_plain_assignment(self, quarry, helpers):
        """Test that `=` evaluates the rhs on the original input, once per output."""
        helpers.assert_outputs(quarry, ".a = .b", {"a": 1, "b": 2}, [{"a": 2, "b": 2}])
        helpers.assert_outputs(quarry, ".a = (1, 2)", {}, [{"a": 1}, {"a": 2}])
        helpers.assert_outputs(quarry, ".[] = 0", [1, 2], [[0, 0]])

    def test_arithmetic_assignment(self, quarry, helpers):
        """Test `+=` and friends, with the rhs computed on the original input."""
        helpers.assert_outputs(quarry, ".a += .b", {"a": 1, "b": 2}, [{"a": 3, "b": 2}])
        helpers.assert_outputs(quarry, ".[] -= 1", [5, 6], [[4, 5]])
        helpers.assert_outputs(quarry, ".a *= 2 | .a /= 4 | .a %= 1", {"a": 3}, [{"a": 0}])

    def test_alternative_assignment(self, quarry, helpers):
        """Test `//=` keeps truthy values."""
        helpers.assert_outputs(quarry, ".[] //= 0", [None, 1, False], [[0, 1, 0]])

    def test_update_of_slice(self, quarry, helpers):
        """Test replacing a slice."""
        helpers.assert_outputs(quarry, ".[1:3] = [9]", [1, 2, 3, 4], [[1, 9, 4]])

    def test_update_through_recursion(self, quarry, helpers):
        """Test updating every number found by recursive descent."""
        helpers.assert_outputs(quarry, "(.. | numbers) |= . + 1", {"a": [1, {"b": 2}]}, [{"a": [2, {"b": 3}]}])

    def test_update_through_recursion_on_branching_input(self, quarry, helpers):
        """Test updating and deleting below several nested branches."""
        helpers.assert_outputs(quarry, "(.. | numbers) |= . + 1", [1, [2]], [[2, [3]]])
        helpers.assert_outputs(quarry, "(.. | numbers) |= . * 10", {"a": [1, [2, {"b": 3}]], "c": 4}, [
            {"a": [10, [20, {"b": 30}]], "c": 40}
        ])
        helpers.assert_outputs(quarry, "del(.. | select(. == 2))", {"a": [1, 2], "b": 2, "c": {"d": 2}}, [
            {"a": [1], "c": {}}
        ])
        helpers.assert_outputs(quarry, "del(.. | numbers)", [1, [2, "x"], 3], [[["x"]]])

    def test_deep_recursive_path(self, quarry, helpers):
        """Test path mode through a recursive definition thousands of levels deep."""
        value = 0
        for _ in range(3000):
            value = {"next": value}

        text = 'def down: if type == "object" then .next | down else . end; path(down) | length'
        helpers.assert_outputs(quarry, text, value, [3000])

    def test_update_through_deep_recursive_path(self, quarry, helpers):
        """Test updating the end of a long chain found by a recursive definition."""
        text = 'def down: if type == "object" then .next | down else . end; down |= . + 1'
        value = 0
        for _ in range(500):
            value = {"next": value}

        result = quarry.evaluate(text, value)[0]
        for _ in range(500):
            result = result["next"]

        assert result == 1

    def test_update_error_in_rhs(self, quarry, helpers):
        """Test that a failing rhs becomes an error element."""
        helpers.assert_error(quarry, '.a |= error("bad")', {"a": 1}, "bad")
