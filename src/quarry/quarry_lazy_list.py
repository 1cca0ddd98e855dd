"""Memoizing lazy sequence shared between several consumers."""

from typing import Any, Iterator, List


class QuarryLazyList:
    """
    Pull-based cache in front of a single producer.

    Each iteration over the list gets its own cursor into a shared cache, and the
    producer is only advanced when a cursor runs past the end of what has been
    produced so far.  The producer therefore runs at most once however many
    consumers replay the sequence, which matters when it pulls external input or
    is expensive to re-run.
    """

    def __init__(self, producer: Iterator[Any]) -> None:
        """
        Initialize lazy list.

        Args:
            producer: Iterator providing the elements on demand
        """
        self._producer: Iterator[Any] | None = producer
        self._cache: List[Any] = []

    def _fill(self, index: int) -> bool:
        """Make sure element index is cached; return False if the producer runs dry first."""
        while len(self._cache) <= index:
            if self._producer is None:
                return False

            try:
                self._cache.append(next(self._producer))

            except StopIteration:
                self._producer = None
                return False

        return True

    def is_exhausted(self) -> bool:
        """Check if the producer has finished (all elements are cached)."""
        return self._producer is None

    def cached_count(self) -> int:
        """Number of elements produced so far."""
        return len(self._cache)

    def __iter__(self) -> Iterator[Any]:
        index = 0
        while self._fill(index):
            yield self._cache[index]
            index += 1

    def __repr__(self) -> str:
        state = "exhausted" if self._producer is None else "pending"
        return f"QuarryLazyList(cached={len(self._cache)}, {state})"
