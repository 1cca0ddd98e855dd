"""Persistent environment of variable bindings for Quarry filter evaluation."""

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Tuple


@dataclass(frozen=True, eq=False)
class QuarryEnvironment:
    """
    Immutable, structurally shared list of bound values, newest binding first.

    Every operation returns a new environment and leaves the receiver untouched,
    so an environment can be shared freely by all the backtracking branches that
    observe it.  Variables are addressed by their distance from the head; the
    compiler guarantees that every such distance is in range.
    """
    head: Any = None
    tail: 'QuarryEnvironment | None' = None
    depth: int = 0

    @staticmethod
    def empty() -> 'QuarryEnvironment':
        """Return the empty environment."""
        return _EMPTY

    @staticmethod
    def from_values(values: Iterable[Any]) -> 'QuarryEnvironment':
        """
        Build an environment by pushing values in order.

        The first value ends up as the oldest binding.
        """
        return _EMPTY.cons_many(values)

    def is_empty(self) -> bool:
        """Check if the environment has no bindings."""
        return self.depth == 0

    def cons(self, value: Any) -> 'QuarryEnvironment':
        """Return a new environment with value as the newest binding."""
        return QuarryEnvironment(value, self, self.depth + 1)

    def cons_many(self, values: Iterable[Any]) -> 'QuarryEnvironment':
        """Push each value in turn; the last value becomes the newest binding."""
        env = self
        for value in values:
            env = QuarryEnvironment(value, env, env.depth + 1)

        return env

    def skip(self, count: int) -> 'QuarryEnvironment':
        """
        Return the environment without its count most recent bindings.

        Args:
            count: Number of bindings to drop

        Raises:
            IndexError: If fewer than count bindings exist
        """
        if count > self.depth:
            raise IndexError(f"Cannot skip {count} bindings of an environment of depth {self.depth}")

        env = self
        for _ in range(count):
            assert env.tail is not None
            env = env.tail

        return env

    def pop_many(self, count: int) -> Tuple[List[Any], 'QuarryEnvironment']:
        """
        Split off the count most recent bindings.

        Returns:
            Tuple of (values newest first, remaining environment).  The remainder is
            shared, not copied.

        Raises:
            IndexError: If fewer than count bindings exist
        """
        if count > self.depth:
            raise IndexError(f"Cannot pop {count} bindings of an environment of depth {self.depth}")

        popped = []
        env = self
        for _ in range(count):
            assert env.tail is not None
            popped.append(env.head)
            env = env.tail

        return popped, env

    def get(self, index: int) -> Any:
        """Return the binding index positions below the head (0 is the newest)."""
        return self.skip(index).head

    def __len__(self) -> int:
        return self.depth

    def __iter__(self) -> Iterator[Any]:
        env = self
        while env.depth > 0:
            yield env.head
            assert env.tail is not None
            env = env.tail

    def __repr__(self) -> str:
        return f"QuarryEnvironment(depth={self.depth})"


_EMPTY = QuarryEnvironment()
