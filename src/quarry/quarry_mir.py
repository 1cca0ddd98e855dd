"""
Mid-level resolution of parsed Quarry filters.

The resolver turns AST nodes into combinator nodes whose calls and variable
references have been bound to specific definitions.  Names are resolved against
a visibility stack that is scanned newest-first, so a definition (or native)
hides earlier ones with the same name and arity for all the text that follows
it, while text resolved before the insertion keeps its original binding.

Three kinds of node exist only at this level and are replaced during lowering:
QuarryMirVar, QuarryMirParam and QuarryMirCall.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set, Tuple

from quarry.quarry_ast import (
    QuarryASTNode, QuarryASTIdentity, QuarryASTRecurseAll, QuarryASTLiteral, QuarryASTIndex,
    QuarryASTSlice, QuarryASTIterate, QuarryASTPath, QuarryASTArray, QuarryASTObject, QuarryASTNeg,
    QuarryASTPipe, QuarryASTComma, QuarryASTBinaryOp, QuarryASTLogic, QuarryASTAlternative,
    QuarryASTUpdate, QuarryASTIf, QuarryASTTry, QuarryASTBind, QuarryASTReduce, QuarryASTForeach,
    QuarryASTVariable, QuarryASTCall, QuarryASTDef, QuarryASTLocalDef
)
from quarry.quarry_error import QuarryCompileError, ErrorMessageBuilder
from quarry.quarry_filter import (
    QuarryFilterNode, QuarryNative, QuarryId, QuarryRecurseAll, QuarryLiteral, QuarryArray,
    QuarryObject, QuarryNeg, QuarryPipe, QuarryComma, QuarryAlt, QuarryMath, QuarryOrd, QuarryLogic,
    QuarryIfThenElse, QuarryTry, QuarryBind, QuarryReduce, QuarryForeach, QuarryPathPart,
    QuarryPathExpr, QuarryUpdate, QuarryNativeCall
)
from quarry.quarry_value import is_number


COMPARISON_OPERATORS = frozenset({'==', '!=', '<', '<=', '>', '>='})


@dataclass(eq=False)
class QuarryMirDef:
    """
    A resolved filter definition.

    Variables are numbered by nominal position: globals first, then every
    binding visible where the definition appears (base of them), then the
    definition's own value parameters and local bindings.
    """
    id: int
    name: str
    params: Tuple[str, ...]
    parent: 'QuarryMirDef | None'
    base: int
    body: QuarryFilterNode | None = None
    calls: Set[int] = field(default_factory=set)  # Ids of definitions called from body

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def filter_params(self) -> Tuple[int, ...]:
        """Positions of the call-by-name parameters in params."""
        return tuple(i for i, p in enumerate(self.params) if not p.startswith('$'))

    @property
    def value_params(self) -> Tuple[int, ...]:
        """Positions of the `$name` parameters in params."""
        return tuple(i for i, p in enumerate(self.params) if p.startswith('$'))

    def __repr__(self) -> str:
        return f"QuarryMirDef({self.name}/{self.arity}, id={self.id})"


@dataclass(frozen=True, eq=False)
class QuarryMirVar(QuarryFilterNode):
    """Variable bound by owner at a nominal position."""
    owner: QuarryMirDef
    position: int


@dataclass(frozen=True, eq=False)
class QuarryMirParam(QuarryFilterNode):
    """Reference to the index-th filter parameter of owner."""
    owner: QuarryMirDef
    index: int


@dataclass(frozen=True, eq=False)
class QuarryMirCall(QuarryFilterNode):
    """Call of a definition; args follow the definition's parameter order."""
    target: QuarryMirDef
    args: Tuple[QuarryFilterNode, ...]


class QuarryMir:
    """Definitions table and name/variable resolver."""

    def __init__(self, global_vars: List[str] | None = None) -> None:
        """
        Initialize the resolver.

        Args:
            global_vars: Names (without `$`) of variables visible everywhere
        """
        self._logger = logging.getLogger("QuarryMir")
        self.root = QuarryMirDef(id=0, name="<main>", params=(), parent=None, base=0)
        self.definitions: List[QuarryMirDef] = [self.root]

        # Visible (name, arity, target) triples, newest last
        self._scope: List[Tuple[str, int, Any]] = []

        # Nominal variable stack: names and the definitions that bind them
        self._vars: List[str] = list(global_vars or [])
        self._var_owners: List[QuarryMirDef] = [self.root] * len(self._vars)
        self.global_count = len(self._vars)
        self._current = self.root
        self._errors: List[QuarryCompileError] = []

        self._dispatch: Dict[type, Callable[[Any], QuarryFilterNode]] = {
            QuarryASTIdentity: lambda node: QuarryId(),
            QuarryASTRecurseAll: lambda node: QuarryRecurseAll(),
            QuarryASTLiteral: lambda node: QuarryLiteral(node.value),
            QuarryASTPath: self._resolve_path,
            QuarryASTArray: self._resolve_array,
            QuarryASTObject: self._resolve_object,
            QuarryASTNeg: self._resolve_neg,
            QuarryASTPipe: lambda node: QuarryPipe(self._resolve(node.lhs), self._resolve(node.rhs)),
            QuarryASTComma: lambda node: QuarryComma(self._resolve(node.lhs), self._resolve(node.rhs)),
            QuarryASTBinaryOp: self._resolve_binary,
            QuarryASTLogic: lambda node: QuarryLogic(node.op, self._resolve(node.lhs), self._resolve(node.rhs)),
            QuarryASTAlternative: lambda node: QuarryAlt(self._resolve(node.lhs), self._resolve(node.rhs)),
            QuarryASTUpdate: lambda node: QuarryUpdate(node.op, self._resolve(node.lhs), self._resolve(node.rhs)),
            QuarryASTIf: self._resolve_if,
            QuarryASTTry: self._resolve_try,
            QuarryASTBind: self._resolve_bind,
            QuarryASTReduce: self._resolve_reduce,
            QuarryASTForeach: self._resolve_foreach,
            QuarryASTVariable: self._resolve_variable,
            QuarryASTCall: self._resolve_call,
            QuarryASTLocalDef: self._resolve_local_def,
        }

    def insert_native(self, native: QuarryNative) -> None:
        """Make a native filter visible to everything resolved after this point."""
        self._scope.append((native.name, native.arity, native))

    def insert_definition(self, definition: QuarryASTDef, errs: List[QuarryCompileError]) -> QuarryMirDef:
        """
        Resolve a top-level definition and make it visible to later text.

        Args:
            definition: Parsed definition
            errs: Collection that resolution errors are appended to

        Returns:
            The resolved definition
        """
        self._errors = errs
        resolved = self._define(definition)
        self._logger.debug("Inserted definition %s/%d", definition.name, definition.arity)
        return resolved

    def finish(self, body: QuarryASTNode, errs: List[QuarryCompileError]) -> QuarryMirDef:
        """
        Resolve the main body against everything inserted so far.

        Args:
            body: Parsed main filter
            errs: Collection that resolution errors are appended to

        Returns:
            The root definition, whose body is the resolved main filter
        """
        self._errors = errs
        self.root.body = self._resolve(body)
        return self.root

    def _error(self, kind: str, message: str, node: QuarryASTNode, **kwargs: Any) -> QuarryFilterNode:
        self._errors.append(QuarryCompileError(kind, message, line=node.line, column=node.column, **kwargs))
        return QuarryId()

    def _resolve(self, node: QuarryASTNode) -> QuarryFilterNode:
        return self._dispatch[type(node)](node)

    def _define(self, definition: QuarryASTDef) -> QuarryMirDef:
        """Resolve a definition's body; the definition stays visible afterwards."""
        resolved = QuarryMirDef(
            id=len(self.definitions),
            name=definition.name,
            params=definition.params,
            parent=self._current,
            base=len(self._vars)
        )
        self.definitions.append(resolved)

        # Visible to its own body, so it may call itself
        self._scope.append((definition.name, definition.arity, resolved))
        mark = len(self._scope)

        for index, position in enumerate(resolved.filter_params):
            self._scope.append((definition.params[position], 0, QuarryMirParam(resolved, index)))

        # A `$name` parameter can also be called as the filter `name`
        for position in resolved.value_params:
            name = definition.params[position][1:]
            self._vars.append(name)
            self._var_owners.append(resolved)
            self._scope.append((name, 0, QuarryMirVar(resolved, len(self._vars) - 1)))

        previous = self._current
        self._current = resolved
        try:
            resolved.body = self._resolve(definition.body)

        finally:
            self._current = previous
            del self._scope[mark:]
            del self._vars[resolved.base:]
            del self._var_owners[resolved.base:]

        return resolved

    def _push_var(self, name: str) -> None:
        self._vars.append(name)
        self._var_owners.append(self._current)

    def _pop_var(self) -> None:
        self._vars.pop()
        self._var_owners.pop()

    def _with_var(self, name: str, node: QuarryASTNode) -> QuarryFilterNode:
        """Resolve node with $name bound as the newest variable."""
        self._push_var(name)
        try:
            return self._resolve(node)

        finally:
            self._pop_var()

    def _resolve_path(self, node: QuarryASTPath) -> QuarryFilterNode:
        parts = []
        for step in node.steps:
            if isinstance(step, QuarryASTIndex):
                parts.append(QuarryPathPart('index', self._resolve(step.index), optional=step.optional))

            elif isinstance(step, QuarryASTSlice):
                start = None if step.start is None else self._resolve(step.start)
                end = None if step.end is None else self._resolve(step.end)
                parts.append(QuarryPathPart('slice', start, end, optional=step.optional))

            else:
                assert isinstance(step, QuarryASTIterate)
                parts.append(QuarryPathPart('iterate', optional=step.optional))

        return QuarryPathExpr(self._resolve(node.head), tuple(parts))

    def _resolve_array(self, node: QuarryASTArray) -> QuarryFilterNode:
        return QuarryArray(None if node.body is None else self._resolve(node.body))

    def _resolve_object(self, node: QuarryASTObject) -> QuarryFilterNode:
        return QuarryObject(tuple((self._resolve(k), self._resolve(v)) for k, v in node.entries))

    def _resolve_neg(self, node: QuarryASTNeg) -> QuarryFilterNode:
        operand = self._resolve(node.operand)
        if isinstance(operand, QuarryLiteral) and is_number(operand.value):
            return QuarryLiteral(-operand.value)

        return QuarryNeg(operand)

    def _resolve_binary(self, node: QuarryASTBinaryOp) -> QuarryFilterNode:
        lhs = self._resolve(node.lhs)
        rhs = self._resolve(node.rhs)
        if node.op in COMPARISON_OPERATORS:
            return QuarryOrd(node.op, lhs, rhs)

        return QuarryMath(node.op, lhs, rhs)

    def _resolve_if(self, node: QuarryASTIf) -> QuarryFilterNode:
        else_branch = QuarryId() if node.else_branch is None else self._resolve(node.else_branch)
        return QuarryIfThenElse(self._resolve(node.condition), self._resolve(node.then_branch), else_branch)

    def _resolve_try(self, node: QuarryASTTry) -> QuarryFilterNode:
        handler = None if node.handler is None else self._resolve(node.handler)
        return QuarryTry(self._resolve(node.body), handler)

    def _resolve_bind(self, node: QuarryASTBind) -> QuarryFilterNode:
        source = self._resolve(node.source)
        return QuarryBind(source, self._with_var(node.name, node.body))

    def _resolve_reduce(self, node: QuarryASTReduce) -> QuarryFilterNode:
        source = self._resolve(node.source)
        init = self._resolve(node.init)
        return QuarryReduce(source, init, self._with_var(node.name, node.update))

    def _resolve_foreach(self, node: QuarryASTForeach) -> QuarryFilterNode:
        source = self._resolve(node.source)
        init = self._resolve(node.init)
        update = self._with_var(node.name, node.update)
        extract = None if node.extract is None else self._with_var(node.name, node.extract)
        return QuarryForeach(source, init, update, extract)

    def _resolve_variable(self, node: QuarryASTVariable) -> QuarryFilterNode:
        for position in range(len(self._vars) - 1, -1, -1):
            if self._vars[position] == node.name:
                return QuarryMirVar(self._var_owners[position], position)

        if node.name == '__loc__':
            return QuarryLiteral({"file": "<stdin>", "line": node.line or 1})

        return self._error(
            QuarryCompileError.UNBOUND_VARIABLE,
            f"Unbound variable: ${node.name}",
            node,
            name=node.name,
            suggestion=ErrorMessageBuilder.format_suggestion(node.name, list(dict.fromkeys(self._vars))),
            example=f". as ${node.name} | ${node.name}"
        )

    def _resolve_call(self, node: QuarryASTCall) -> QuarryFilterNode:
        arity = len(node.args)
        for name, entry_arity, target in reversed(self._scope):
            if name != node.name or entry_arity != arity:
                continue

            if isinstance(target, (QuarryMirParam, QuarryMirVar)):
                return target

            args = tuple(self._resolve(arg) for arg in node.args)
            if isinstance(target, QuarryNative):
                return QuarryNativeCall(target, args)

            self._current.calls.add(target.id)
            return QuarryMirCall(target, args)

        # Arguments are still resolved so that their own errors get reported
        for arg in node.args:
            self._resolve(arg)

        arities = sorted({a for n, a, _ in self._scope if n == node.name})
        if arities:
            available = ", ".join(f"{node.name}/{a}" for a in arities)
            return self._error(
                QuarryCompileError.ARITY,
                f"Wrong number of arguments for '{node.name}': no definition of {node.name}/{arity}",
                node,
                name=node.name,
                arity=arity,
                received=f"{arity} argument(s)",
                expected=f"One of: {available}"
            )

        return self._error(
            QuarryCompileError.UNDEFINED_FILTER,
            f"Undefined filter: {node.name}/{arity}",
            node,
            name=node.name,
            arity=arity,
            suggestion=ErrorMessageBuilder.format_suggestion(node.name, list(dict.fromkeys(n for n, _, _ in self._scope)))
        )

    def _resolve_local_def(self, node: QuarryASTLocalDef) -> QuarryFilterNode:
        mark = len(self._scope)
        self._define(node.definition)
        try:
            return self._resolve(node.body)

        finally:
            del self._scope[mark:]
