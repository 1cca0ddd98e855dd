"""Quarry AST node hierarchy - parsed filters with source location metadata.

The parser produces these nodes and the MIR resolver consumes them.  Nodes are
immutable and carry the line and column at which they start so that resolution
errors can point back at the offending text.
"""

from dataclasses import dataclass, field
from typing import Any, Tuple


@dataclass(frozen=True)
class QuarryASTNode:
    """
    Base class for all Quarry AST nodes.

    Source location fields are keyword-only so that subclasses can declare their
    own positional fields.
    """
    line: int | None = field(default=None, kw_only=True)
    column: int | None = field(default=None, kw_only=True)


@dataclass(frozen=True)
class QuarryASTIdentity(QuarryASTNode):
    """The identity filter `.`."""


@dataclass(frozen=True)
class QuarryASTRecurseAll(QuarryASTNode):
    """The recursive descent filter `..`."""


@dataclass(frozen=True)
class QuarryASTLiteral(QuarryASTNode):
    """A constant value: number, string, null, true or false."""
    value: Any


@dataclass(frozen=True)
class QuarryASTIndex(QuarryASTNode):
    """Path step `[e]` (or `.name`, which indexes with a string literal)."""
    index: QuarryASTNode
    optional: bool = False


@dataclass(frozen=True)
class QuarryASTSlice(QuarryASTNode):
    """Path step `[start:end]`; either bound may be omitted."""
    start: QuarryASTNode | None
    end: QuarryASTNode | None
    optional: bool = False


@dataclass(frozen=True)
class QuarryASTIterate(QuarryASTNode):
    """Path step `[]`."""
    optional: bool = False


@dataclass(frozen=True)
class QuarryASTPath(QuarryASTNode):
    """A term followed by one or more path steps, e.g. `.a[0][]`."""
    head: QuarryASTNode
    steps: Tuple[QuarryASTNode, ...]


@dataclass(frozen=True)
class QuarryASTArray(QuarryASTNode):
    """Array construction `[e]`, or `[]` when body is None."""
    body: QuarryASTNode | None


@dataclass(frozen=True)
class QuarryASTObject(QuarryASTNode):
    """Object construction; each entry is a (key, value) pair of expressions."""
    entries: Tuple[Tuple[QuarryASTNode, QuarryASTNode], ...]


@dataclass(frozen=True)
class QuarryASTNeg(QuarryASTNode):
    """Unary minus."""
    operand: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTPipe(QuarryASTNode):
    """`lhs | rhs`."""
    lhs: QuarryASTNode
    rhs: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTComma(QuarryASTNode):
    """`lhs, rhs`."""
    lhs: QuarryASTNode
    rhs: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTBinaryOp(QuarryASTNode):
    """Arithmetic (`+ - * / %`) or comparison (`== != < <= > >=`) operator."""
    op: str
    lhs: QuarryASTNode
    rhs: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTLogic(QuarryASTNode):
    """Short-circuiting `and` / `or`."""
    op: str
    lhs: QuarryASTNode
    rhs: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTAlternative(QuarryASTNode):
    """`lhs // rhs`."""
    lhs: QuarryASTNode
    rhs: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTUpdate(QuarryASTNode):
    """Assignment operators: `=`, `|=`, `+=`, `-=`, `*=`, `/=`, `%=` and `//=`."""
    op: str
    lhs: QuarryASTNode
    rhs: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTIf(QuarryASTNode):
    """`if cond then a else b end`; elif chains nest in else_branch."""
    condition: QuarryASTNode
    then_branch: QuarryASTNode
    else_branch: QuarryASTNode | None


@dataclass(frozen=True)
class QuarryASTTry(QuarryASTNode):
    """`try body catch handler`; `e?` is a try without handler."""
    body: QuarryASTNode
    handler: QuarryASTNode | None


@dataclass(frozen=True)
class QuarryASTBind(QuarryASTNode):
    """`source as $name | body`."""
    source: QuarryASTNode
    name: str
    body: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTReduce(QuarryASTNode):
    """`reduce source as $name (init; update)`."""
    source: QuarryASTNode
    name: str
    init: QuarryASTNode
    update: QuarryASTNode


@dataclass(frozen=True)
class QuarryASTForeach(QuarryASTNode):
    """`foreach source as $name (init; update; extract)`."""
    source: QuarryASTNode
    name: str
    init: QuarryASTNode
    update: QuarryASTNode
    extract: QuarryASTNode | None


@dataclass(frozen=True)
class QuarryASTVariable(QuarryASTNode):
    """Variable reference `$name` (stored without the `$`)."""
    name: str


@dataclass(frozen=True)
class QuarryASTCall(QuarryASTNode):
    """Call of a named filter, `name` or `name(a; b)`."""
    name: str
    args: Tuple[QuarryASTNode, ...] = ()


@dataclass(frozen=True)
class QuarryASTDef(QuarryASTNode):
    """
    Filter definition `def name(params): body;`.

    Params keep their `$` prefix for value parameters, so `def f(g; $x)` has
    params ('g', '$x').
    """
    name: str
    params: Tuple[str, ...]
    body: QuarryASTNode

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass(frozen=True)
class QuarryASTLocalDef(QuarryASTNode):
    """A definition visible to the rest of the pipe: `def f: ...; body`."""
    definition: QuarryASTDef
    body: QuarryASTNode
