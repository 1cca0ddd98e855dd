"""Tests for the lazy shared list and the shared input iterator."""

from quarry import QuarryLazyList, QuarrySharedIterator


def counting_producer(values, log):
    """Yield values, recording each one produced."""
    for value in values:
        log.append(value)
        yield value


class TestQuarryLazyList:
    """Test memoization of a single producer across consumers."""

    def test_producer_runs_once_for_many_consumers(self):
        """Test that replaying the list does not re-run the producer."""
        log = []
        lazy = QuarryLazyList(counting_producer([1, 2, 3], log))

        assert list(lazy) == [1, 2, 3]
        assert list(lazy) == [1, 2, 3]
        assert log == [1, 2, 3]

    def test_elements_are_produced_on_demand(self):
        """Test that only the requested prefix is produced."""
        log = []
        lazy = QuarryLazyList(counting_producer(range(1000), log))

        first = next(iter(lazy))
        assert first == 0
        assert lazy.cached_count() == 1
        assert not lazy.is_exhausted()

    def test_interleaved_cursors(self):
        """Test that every cursor sees the whole sequence from its own position."""
        lazy = QuarryLazyList(iter("abc"))
        first = iter(lazy)
        second = iter(lazy)

        assert next(first) == "a"
        assert next(first) == "b"
        assert next(second) == "a"
        assert list(first) == ["c"]
        assert list(second) == ["b", "c"]
        assert lazy.is_exhausted()

    def test_empty_producer(self):
        """Test a producer with no elements."""
        lazy = QuarryLazyList(iter(()))
        assert list(lazy) == []
        assert lazy.is_exhausted()


class TestQuarrySharedIterator:
    """Test that consumers share, rather than replay, the input stream."""

    def test_consumers_take_distinct_elements(self):
        """Test that an element taken by one holder is gone for the others."""
        shared = QuarrySharedIterator([1, 2, 3])
        holder_a = shared
        holder_b = shared

        assert holder_a.next_item() == 1
        assert next(holder_b) == 2
        assert list(holder_a) == [3]
        assert list(holder_b) == []

    def test_default_when_exhausted(self):
        """Test next_item's default value."""
        shared = QuarrySharedIterator()
        marker = object()
        assert shared.next_item(marker) is marker
