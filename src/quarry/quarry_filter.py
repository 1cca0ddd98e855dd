"""
Combinator representation of compiled Quarry filters.

A compiled filter is a tree of combinator nodes plus a recursion table: an
ordered tuple of (arity, node) entries that recursive calls address by index.
Nodes are immutable and hold no back-references, so the table is the only way
one part of a filter reaches another.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Tuple

from quarry.quarry_environment import QuarryEnvironment
from quarry.quarry_shared_iterator import QuarrySharedIterator


@dataclass(frozen=True)
class QuarryNative:
    """
    A filter implemented in Python.

    `run(evaluator, args, ctx, value)` yields the outputs for one input value.
    `paths(evaluator, args, ctx, value_path)` yields (value, path) pairs when
    the native can be used in a path expression.  Arguments are passed
    unevaluated, as combinator nodes.
    """
    name: str
    arity: int
    run: Callable[..., Iterator[Any]]
    paths: Callable[..., Iterator[Any]] | None = None
    path_args: Tuple[int, ...] = ()  # Arguments always evaluated in path mode
    path_through_args: Tuple[int, ...] = ()  # Arguments evaluated in path mode when the call is

    def __repr__(self) -> str:
        return f"QuarryNative({self.name}/{self.arity})"


class QuarryFilterNode:
    """Base class for combinator nodes."""


@dataclass(frozen=True)
class QuarryId(QuarryFilterNode):
    """Yields the input unchanged."""


@dataclass(frozen=True)
class QuarryRecurseAll(QuarryFilterNode):
    """Yields the input and, depth-first, every value nested inside it."""


@dataclass(frozen=True)
class QuarryLiteral(QuarryFilterNode):
    """Yields a fixed value."""
    value: Any


@dataclass(frozen=True)
class QuarryArray(QuarryFilterNode):
    """Collects all outputs of body into an array."""
    body: QuarryFilterNode | None


@dataclass(frozen=True)
class QuarryObject(QuarryFilterNode):
    """Builds objects from the Cartesian product of key and value outputs."""
    entries: Tuple[Tuple[QuarryFilterNode, QuarryFilterNode], ...]


@dataclass(frozen=True)
class QuarryNeg(QuarryFilterNode):
    body: QuarryFilterNode


@dataclass(frozen=True)
class QuarryPipe(QuarryFilterNode):
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryComma(QuarryFilterNode):
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryAlt(QuarryFilterNode):
    """`lhs // rhs`: truthy outputs of lhs, or else all outputs of rhs."""
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryMath(QuarryFilterNode):
    """Arithmetic operator; rhs is the outer loop of the Cartesian product."""
    op: str
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryOrd(QuarryFilterNode):
    """Comparison operator."""
    op: str
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryLogic(QuarryFilterNode):
    """Short-circuiting `and` / `or`."""
    op: str
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryIfThenElse(QuarryFilterNode):
    cond: QuarryFilterNode
    then_branch: QuarryFilterNode
    else_branch: QuarryFilterNode


@dataclass(frozen=True)
class QuarryTry(QuarryFilterNode):
    """Feeds each error of body to catch (or drops it when catch is None)."""
    body: QuarryFilterNode
    catch: QuarryFilterNode | None


@dataclass(frozen=True)
class QuarryBind(QuarryFilterNode):
    """`source as $x | body`: body runs with each source output as the newest binding."""
    source: QuarryFilterNode
    body: QuarryFilterNode


@dataclass(frozen=True)
class QuarryReduce(QuarryFilterNode):
    """`reduce source as $x (init; update)`; update sees $x as the newest binding."""
    source: QuarryFilterNode
    init: QuarryFilterNode
    update: QuarryFilterNode


@dataclass(frozen=True)
class QuarryForeach(QuarryFilterNode):
    """`foreach source as $x (init; update; extract)`."""
    source: QuarryFilterNode
    init: QuarryFilterNode
    update: QuarryFilterNode
    extract: QuarryFilterNode | None


@dataclass(frozen=True)
class QuarryPathPart:
    """
    One step of a path expression.

    kind is 'index' (first is the key expression), 'slice' (first and second are
    the optional bounds) or 'iterate'.  Key and bound expressions are evaluated
    against the input of the whole path expression, not the value being indexed.
    """
    kind: str
    first: QuarryFilterNode | None = None
    second: QuarryFilterNode | None = None
    optional: bool = False


@dataclass(frozen=True)
class QuarryPathExpr(QuarryFilterNode):
    head: QuarryFilterNode
    parts: Tuple[QuarryPathPart, ...]


@dataclass(frozen=True)
class QuarryUpdate(QuarryFilterNode):
    """Assignment: op is one of `=`, `|=`, `+=`, `-=`, `*=`, `/=`, `%=`, `//=`."""
    op: str
    lhs: QuarryFilterNode
    rhs: QuarryFilterNode


@dataclass(frozen=True)
class QuarryVar(QuarryFilterNode):
    """Variable reference as a distance from the newest binding."""
    offset: int


@dataclass(frozen=True)
class QuarrySkipVars(QuarryFilterNode):
    """Runs body with the count newest bindings removed."""
    count: int
    body: QuarryFilterNode


@dataclass(frozen=True)
class QuarryCallDef(QuarryFilterNode):
    """Inlined call: pushes every combination of the value arguments, then runs body."""
    args: Tuple[QuarryFilterNode, ...]
    body: QuarryFilterNode


@dataclass(frozen=True)
class QuarryRecCall(QuarryFilterNode):
    """
    Call of recursion table entry id.

    The value arguments are pushed, then the skip bindings beneath them are
    dropped so that repeated recursion does not deepen the environment.
    """
    id: int
    args: Tuple[QuarryFilterNode, ...]
    skip: int


@dataclass(frozen=True)
class QuarryNativeCall(QuarryFilterNode):
    native: QuarryNative
    args: Tuple[QuarryFilterNode, ...] = ()


@dataclass(frozen=True)
class QuarryContext:
    """Evaluation context: variable bindings, external inputs and the recursion table."""
    vars: QuarryEnvironment
    inputs: QuarrySharedIterator
    recs: Tuple[Tuple[int, QuarryFilterNode], ...] = ()

    def cons_var(self, value: Any) -> 'QuarryContext':
        """Return a context with value bound as the newest variable."""
        return QuarryContext(self.vars.cons(value), self.inputs, self.recs)

    def cons_many(self, values: Iterable[Any]) -> 'QuarryContext':
        """Return a context with values bound in order, the last one newest."""
        return QuarryContext(self.vars.cons_many(values), self.inputs, self.recs)

    def skip_vars(self, count: int) -> 'QuarryContext':
        """Return a context without the count newest bindings."""
        if count == 0:
            return self

        return QuarryContext(self.vars.skip(count), self.inputs, self.recs)

    def save_skip_vars(self, save: int, skip: int) -> 'QuarryContext':
        """
        Drop skip bindings that lie beneath the save newest ones.

        The save newest bindings are popped, skip more are removed, and the saved
        ones are pushed back in their original order.
        """
        if skip == 0:
            return self

        saved, rest = self.vars.pop_many(save)
        env = rest.skip(skip).cons_many(reversed(saved))
        return QuarryContext(env, self.inputs, self.recs)


@dataclass(frozen=True)
class QuarryFilter:
    """A compiled filter: root combinator tree and the recursion table it uses."""
    root: QuarryFilterNode
    recs: Tuple[Tuple[int, QuarryFilterNode], ...] = ()

    @staticmethod
    def identity() -> 'QuarryFilter':
        """Return the filter that yields its input unchanged."""
        return QuarryFilter(QuarryId())

    def is_identity(self) -> bool:
        return isinstance(self.root, QuarryId) and not self.recs

    def run(self, variables: Iterable[Any] = (), inputs: Any = (), value: Any = None) -> Iterator[Any]:
        """
        Run the filter against one input value.

        Args:
            variables: Values of the global variables, in declaration order
            inputs: External input stream for `input`/`inputs`; either a
                QuarrySharedIterator or any iterable
            value: The value to filter

        Returns:
            Lazy stream of output values and QuarryEvalError elements
        """
        # Imported here because the evaluator depends on the node types above
        from quarry.quarry_evaluator import QuarryEvaluator  # pylint: disable=import-outside-toplevel

        if not isinstance(inputs, QuarrySharedIterator):
            inputs = QuarrySharedIterator(inputs)

        logging.getLogger("QuarryFilter").debug("Running filter with %d recursion table entries", len(self.recs))
        ctx = QuarryContext(QuarryEnvironment.from_values(variables), inputs, self.recs)
        return QuarryEvaluator().run(self.root, ctx, value)
