"""Tests for the persistent environment."""

import pytest

from quarry import QuarryEnvironment


class TestQuarryEnvironment:
    """Test structural sharing and the four environment operations."""

    def test_cons_leaves_original_untouched(self):
        """Test that cons returns a new environment and never mutates the old one."""
        env = QuarryEnvironment.from_values([1, 2])
        extended = env.cons(3)

        assert list(env) == [2, 1]
        assert list(extended) == [3, 2, 1]

    def test_cons_then_skip_is_the_original(self):
        """Test that skipping a fresh binding gives back the very same node."""
        env = QuarryEnvironment.from_values(["a", "b"])
        assert env.cons(5).skip(1) is env

    def test_branches_share_tail(self):
        """Test that two branches built from one environment do not see each other."""
        env = QuarryEnvironment.from_values([1])
        left = env.cons("left")
        right = env.cons("right")

        assert list(left) == ["left", 1]
        assert list(right) == ["right", 1]
        assert left.tail is right.tail

    def test_cons_many_order(self):
        """Test that the last pushed value becomes the newest binding."""
        env = QuarryEnvironment.empty().cons_many([1, 2, 3])
        assert list(env) == [3, 2, 1]
        assert env.get(0) == 3
        assert env.get(2) == 1

    def test_pop_many_returns_newest_first_and_shared_rest(self):
        """Test splitting the newest bindings off without copying the remainder."""
        env = QuarryEnvironment.from_values([1, 2, 3])
        popped, rest = env.pop_many(2)

        assert popped == [3, 2]
        assert list(rest) == [1]
        assert rest is env.skip(2)

    def test_pop_then_push_back_reversed_restores_order(self):
        """Test that re-pushing popped values oldest first rebuilds the same bindings."""
        env = QuarryEnvironment.from_values([1, 2, 3, 4])
        popped, rest = env.pop_many(2)
        rebuilt = rest.cons_many(reversed(popped))
        assert list(rebuilt) == list(env)

    def test_skip_beyond_depth_fails(self):
        """Test that skipping more bindings than exist raises."""
        env = QuarryEnvironment.from_values([1])
        with pytest.raises(IndexError):
            env.skip(2)

        with pytest.raises(IndexError):
            env.pop_many(3)

    def test_empty_environment(self):
        """Test the empty environment."""
        env = QuarryEnvironment.empty()
        assert env.is_empty()
        assert len(env) == 0
        assert list(env) == []
        assert len(env.cons(None)) == 1
