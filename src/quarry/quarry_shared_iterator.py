"""Shared handle on the external input stream."""

from typing import Any, Iterable, Iterator


class QuarrySharedIterator:
    """
    Iterator that many holders can pull from, each pull consuming one element.

    Unlike `QuarryLazyList` nothing is cached: an element taken by one consumer is
    gone for every other consumer.  This is the behaviour `input` and `inputs`
    need, since the external inputs are shared by the whole execution.
    """

    def __init__(self, source: Iterable[Any] = ()) -> None:
        """
        Initialize shared iterator.

        Args:
            source: Values (or error elements) to hand out on demand
        """
        self._iterator: Iterator[Any] = iter(source)

    def next_item(self, default: Any = None) -> Any:
        """Take the next element, or return default when exhausted."""
        return next(self._iterator, default)

    def __iter__(self) -> Iterator[Any]:
        return self

    def __next__(self) -> Any:
        return next(self._iterator)
