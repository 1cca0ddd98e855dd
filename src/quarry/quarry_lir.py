"""
Low-level lowering of resolved Quarry filters.

Lowering replaces the resolver's definition calls and variable references with
plain combinators:

- Non-recursive definitions are inlined at every call site.
- Definitions that take part in a cycle of the call graph are lowered once per
  distinct instantiation into the recursion table and called by index.
- Filter parameters are call-by-name: each reference to one lowers the caller's
  argument in the caller's scope, wrapped in a skip of the bindings made since
  the call.
- Variable references become offsets from the newest binding.

Each instantiation of a definition body is tracked by a frame that knows how
far the definition's nominal variable positions are shifted in the actual
environment at run time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Set, Tuple

from quarry.quarry_dependency_analyzer import QuarryDependencyAnalyzer
from quarry.quarry_error import QuarryCompileError
from quarry.quarry_filter import (
    QuarryFilter, QuarryFilterNode, QuarryId, QuarryRecurseAll, QuarryLiteral, QuarryArray,
    QuarryObject, QuarryNeg, QuarryPipe, QuarryComma, QuarryAlt, QuarryMath, QuarryOrd, QuarryLogic,
    QuarryIfThenElse, QuarryTry, QuarryBind, QuarryReduce, QuarryForeach, QuarryPathPart,
    QuarryPathExpr, QuarryUpdate, QuarryVar, QuarrySkipVars, QuarryCallDef, QuarryRecCall,
    QuarryNativeCall
)
from quarry.quarry_mir import QuarryMir, QuarryMirDef, QuarryMirVar, QuarryMirParam, QuarryMirCall
from quarry.quarry_value import to_json


@dataclass(eq=False)
class QuarryLirFrame:
    """One instantiation of a definition body during lowering."""
    definition: QuarryMirDef
    parent: 'QuarryLirFrame | None'  # Instantiation of the lexically enclosing definition
    closures: Tuple['QuarryLirClosure', ...]  # Arguments for the filter parameters
    shift: int  # Actual environment position minus nominal position
    serial: int


@dataclass(eq=False)
class QuarryLirClosure:
    """A filter argument: the argument term, the frame it belongs to and its depth."""
    term: QuarryFilterNode
    frame: QuarryLirFrame
    depth: int
    serial: int


class QuarryLir:
    """Lowers resolved definitions into a combinator tree and a recursion table."""

    def __init__(self, errs: List[QuarryCompileError]) -> None:
        """
        Initialize lowering.

        Args:
            errs: Collection that lowering errors are appended to
        """
        self._logger = logging.getLogger("QuarryLir")
        self._errors = errs
        self._analyzer = QuarryDependencyAnalyzer()
        self._recursive: Set[int] = set()
        self._serial = 0

        self._recs: List[Tuple[int, QuarryFilterNode] | None] = []

        # (parent frame, definition, closures) -> (table id, actual base depth)
        self._entries: Dict[Tuple[int, int, Tuple[int, ...]], Tuple[int, int]] = {}

        # (parent frame, definition) -> frames of entries currently being lowered
        self._in_progress: Dict[Tuple[int, int], List[QuarryLirFrame]] = {}

        self._closures: Dict[Tuple[int, int], QuarryLirClosure] = {}
        self._path_problems: Dict[int, str | None] = {}

        self._dispatch: Dict[type, Callable[[Any, QuarryLirFrame, int], QuarryFilterNode]] = {
            QuarryId: lambda node, frame, depth: node,
            QuarryRecurseAll: lambda node, frame, depth: node,
            QuarryLiteral: lambda node, frame, depth: node,
            QuarryArray: self._lower_array,
            QuarryObject: self._lower_object,
            QuarryNeg: lambda node, frame, depth: QuarryNeg(self._lower(node.body, frame, depth)),
            QuarryPipe: self._lower_binary,
            QuarryComma: self._lower_binary,
            QuarryAlt: self._lower_binary,
            QuarryMath: self._lower_operator,
            QuarryOrd: self._lower_operator,
            QuarryLogic: self._lower_operator,
            QuarryIfThenElse: self._lower_if,
            QuarryTry: self._lower_try,
            QuarryBind: self._lower_bind,
            QuarryReduce: self._lower_reduce,
            QuarryForeach: self._lower_foreach,
            QuarryPathExpr: self._lower_path,
            QuarryUpdate: self._lower_update,
            QuarryNativeCall: self._lower_native_call,
            QuarryMirVar: self._lower_var,
            QuarryMirParam: self._lower_param,
            QuarryMirCall: self._lower_call,
        }

    def lower(self, mir: QuarryMir) -> QuarryFilter:
        """
        Lower the resolved main body and everything it reaches.

        Args:
            mir: Resolver whose finish() has been called

        Returns:
            The compiled filter
        """
        graph = {definition.id: set(definition.calls) for definition in mir.definitions}
        self._recursive = self._analyzer.recursive_definitions(graph)

        root = mir.root
        assert root.body is not None, "finish() must be called before lowering"
        frame = QuarryLirFrame(root, None, (), 0, self._next_serial())
        node = self._lower(root.body, frame, mir.global_count)

        recs = []
        for entry in self._recs:
            assert entry is not None
            recs.append(entry)

        self._logger.debug("Lowered filter with %d recursion table entries", len(recs))
        return QuarryFilter(node, tuple(recs))

    def _next_serial(self) -> int:
        self._serial += 1
        return self._serial

    def _lower(self, node: QuarryFilterNode, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return self._dispatch[type(node)](node, frame, depth)

    def _lower_array(self, node: QuarryArray, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        if node.body is None:
            return node

        return QuarryArray(self._lower(node.body, frame, depth))

    def _lower_object(self, node: QuarryObject, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return QuarryObject(tuple(
            (self._lower(key, frame, depth), self._lower(value, frame, depth)) for key, value in node.entries
        ))

    def _lower_binary(self, node: Any, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return type(node)(self._lower(node.lhs, frame, depth), self._lower(node.rhs, frame, depth))

    def _lower_operator(self, node: Any, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return type(node)(node.op, self._lower(node.lhs, frame, depth), self._lower(node.rhs, frame, depth))

    def _lower_if(self, node: QuarryIfThenElse, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return QuarryIfThenElse(
            self._lower(node.cond, frame, depth),
            self._lower(node.then_branch, frame, depth),
            self._lower(node.else_branch, frame, depth)
        )

    def _lower_try(self, node: QuarryTry, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        catch = None if node.catch is None else self._lower(node.catch, frame, depth)
        return QuarryTry(self._lower(node.body, frame, depth), catch)

    def _lower_bind(self, node: QuarryBind, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return QuarryBind(self._lower(node.source, frame, depth), self._lower(node.body, frame, depth + 1))

    def _lower_reduce(self, node: QuarryReduce, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        return QuarryReduce(
            self._lower(node.source, frame, depth),
            self._lower(node.init, frame, depth),
            self._lower(node.update, frame, depth + 1)
        )

    def _lower_foreach(self, node: QuarryForeach, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        extract = None if node.extract is None else self._lower(node.extract, frame, depth + 1)
        return QuarryForeach(
            self._lower(node.source, frame, depth),
            self._lower(node.init, frame, depth),
            self._lower(node.update, frame, depth + 1),
            extract
        )

    def _lower_path(self, node: QuarryPathExpr, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        parts = []
        for part in node.parts:
            first = None if part.first is None else self._lower(part.first, frame, depth)
            second = None if part.second is None else self._lower(part.second, frame, depth)
            parts.append(QuarryPathPart(part.kind, first, second, part.optional))

        return QuarryPathExpr(self._lower(node.head, frame, depth), tuple(parts))

    def _lower_update(self, node: QuarryUpdate, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        lhs = self._lower(node.lhs, frame, depth)
        self._check_path(lhs, f"the left-hand side of '{node.op}'")
        return QuarryUpdate(node.op, lhs, self._lower(node.rhs, frame, depth))

    def _lower_native_call(self, node: QuarryNativeCall, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        args = tuple(self._lower(arg, frame, depth) for arg in node.args)
        for index in node.native.path_args:
            self._check_path(args[index], f"the argument of '{node.native.name}'")

        return QuarryNativeCall(node.native, args)

    def _find_frame(self, frame: QuarryLirFrame, definition: QuarryMirDef | None) -> QuarryLirFrame:
        """Find the instantiation of definition that frame is lexically nested in."""
        current: QuarryLirFrame | None = frame
        while current is not None and current.definition is not definition:
            current = current.parent

        assert current is not None, f"No enclosing instantiation of {definition}"
        return current

    def _lower_var(self, node: QuarryMirVar, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        owner = self._find_frame(frame, node.owner)
        offset = depth - 1 - (node.position + owner.shift)
        assert offset >= 0, f"Variable offset {offset} out of range"
        return QuarryVar(offset)

    def _lower_param(self, node: QuarryMirParam, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        closure = self._find_frame(frame, node.owner).closures[node.index]
        lowered = self._lower(closure.term, closure.frame, closure.depth)
        assert depth >= closure.depth, "Filter argument used outside its scope"
        if depth == closure.depth:
            return lowered

        return QuarrySkipVars(depth - closure.depth, lowered)

    def _closure(self, term: QuarryFilterNode, frame: QuarryLirFrame, depth: int) -> QuarryLirClosure:
        # Passing a parameter straight through reuses the caller's argument
        if isinstance(term, QuarryMirParam):
            return self._find_frame(frame, term.owner).closures[term.index]

        key = (id(term), frame.serial)
        closure = self._closures.get(key)
        if closure is None:
            closure = QuarryLirClosure(term, frame, depth, self._next_serial())
            self._closures[key] = closure

        return closure

    def _lower_call(self, node: QuarryMirCall, frame: QuarryLirFrame, depth: int) -> QuarryFilterNode:
        target = node.target
        assert target.body is not None
        parent = self._find_frame(frame, target.parent)
        closures = tuple(self._closure(node.args[i], frame, depth) for i in target.filter_params)
        value_args = tuple(self._lower(node.args[i], frame, depth) for i in target.value_params)

        if target.id in self._recursive:
            return self._lower_recursive_call(target, parent, closures, value_args, depth)

        callee = QuarryLirFrame(target, parent, closures, depth - target.base, self._next_serial())
        body = self._lower(target.body, callee, depth + len(value_args))
        if not value_args:
            return body

        return QuarryCallDef(value_args, body)

    def _lower_recursive_call(
        self,
        target: QuarryMirDef,
        parent: QuarryLirFrame,
        closures: Tuple[QuarryLirClosure, ...],
        value_args: Tuple[QuarryFilterNode, ...],
        depth: int
    ) -> QuarryFilterNode:
        key = (parent.serial, target.id, tuple(closure.serial for closure in closures))
        entry = self._entries.get(key)
        if entry is None:
            entry = self._lower_entry(key, target, parent, closures)
            if entry is None:
                return QuarryId()

        rec_id, base = entry
        assert depth >= base
        return QuarryRecCall(rec_id, value_args, depth - base)

    def _lower_entry(
        self,
        key: Tuple[int, int, Tuple[int, ...]],
        target: QuarryMirDef,
        parent: QuarryLirFrame,
        closures: Tuple[QuarryLirClosure, ...]
    ) -> Tuple[int, int] | None:
        """Lower a new recursion table entry; returns (id, base depth) or None on error."""
        assert target.body is not None
        active = self._in_progress.setdefault((parent.serial, target.id), [])

        # A filter argument built inside an instantiation that is still being
        # lowered would need a fresh instantiation on every recursive call
        for frame in active:
            if any(closure.frame.serial >= frame.serial for closure in closures):
                self._errors.append(QuarryCompileError(
                    QuarryCompileError.RECURSIVE_ARGUMENT,
                    f"Recursive call of '{target.name}/{target.arity}' builds a new filter argument",
                    name=target.name,
                    arity=target.arity,
                    suggestion="Pass filter parameters to recursive calls unchanged, or use a $parameter",
                    example=f"def {target.name}(f): ... {target.name}(f) ...;"
                ))
                return None

        base = max([target.base + parent.shift] + [closure.depth for closure in closures])
        rec_id = len(self._recs)
        self._recs.append(None)
        self._entries[key] = (rec_id, base)

        count = len(target.value_params)
        frame = QuarryLirFrame(target, parent, closures, base - target.base, self._next_serial())
        active.append(frame)
        try:
            body = self._lower(target.body, frame, base + count)

        finally:
            active.pop()

        self._recs[rec_id] = (count, body)
        return rec_id, base

    def _check_path(self, node: QuarryFilterNode, where: str) -> None:
        problem = self._path_problem(node)
        if problem is None:
            return

        self._errors.append(QuarryCompileError(
            QuarryCompileError.INVALID_PATH,
            f"Invalid path expression: {problem} in {where} does not refer to part of the input",
            suggestion="Use a path such as .a, .[0], .[] or a pipe of them",
            example=".items[] |= . + 1"
        ))

    def _path_problem(self, node: QuarryFilterNode) -> str | None:
        """Describe the first construct that cannot be evaluated as a path, if any."""
        if isinstance(node, (QuarryId, QuarryRecurseAll)):
            return None

        if isinstance(node, QuarryPathExpr):
            return self._path_problem(node.head)

        if isinstance(node, (QuarryPipe, QuarryComma, QuarryAlt)):
            return self._path_problem(node.lhs) or self._path_problem(node.rhs)

        if isinstance(node, QuarryIfThenElse):
            return self._path_problem(node.then_branch) or self._path_problem(node.else_branch)

        if isinstance(node, QuarryTry):
            return self._path_problem(node.body) or (None if node.catch is None else self._path_problem(node.catch))

        if isinstance(node, (QuarryBind, QuarrySkipVars, QuarryCallDef)):
            return self._path_problem(node.body)

        if isinstance(node, QuarryReduce):
            return self._path_problem(node.init) or self._path_problem(node.update)

        if isinstance(node, QuarryForeach):
            extract = None if node.extract is None else self._path_problem(node.extract)
            return self._path_problem(node.init) or self._path_problem(node.update) or extract

        if isinstance(node, QuarryRecCall):
            return self._rec_path_problem(node.id)

        if isinstance(node, QuarryNativeCall):
            if node.native.paths is None:
                return f"call to '{node.native.name}/{node.native.arity}'"

            for index in node.native.path_through_args:
                problem = self._path_problem(node.args[index])
                if problem is not None:
                    return problem

            return None

        return self._describe(node)

    def _rec_path_problem(self, rec_id: int) -> str | None:
        if rec_id in self._path_problems:
            return self._path_problems[rec_id]

        entry = self._recs[rec_id]
        if entry is None:
            # Still being lowered; its body is checked where it is used
            return None

        # Assume valid while checking, so that recursion terminates
        self._path_problems[rec_id] = None
        problem = self._path_problem(entry[1])
        self._path_problems[rec_id] = problem
        return problem

    @staticmethod
    def _describe(node: QuarryFilterNode) -> str:
        if isinstance(node, QuarryLiteral):
            return f"literal {to_json(node.value)}"

        if isinstance(node, QuarryVar):
            return "variable"

        if isinstance(node, QuarryArray):
            return "array construction"

        if isinstance(node, QuarryObject):
            return "object construction"

        if isinstance(node, QuarryNeg):
            return "negation"

        if isinstance(node, QuarryMath):
            return f"arithmetic '{node.op}'"

        if isinstance(node, QuarryOrd):
            return f"comparison '{node.op}'"

        if isinstance(node, QuarryLogic):
            return f"'{node.op}'"

        if isinstance(node, QuarryUpdate):
            return f"assignment '{node.op}'"

        return type(node).__name__
