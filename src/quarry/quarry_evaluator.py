"""
Lazy, backtracking evaluator for compiled Quarry filters.

Every combinator maps an input value to a lazy stream of outputs.  A stream
element is either a value or a QuarryEvalError.  Inside a combinator, errors
are raised; run() turns a raised error into one final error element of the
stream that raised it, so an error ends only the branch that produced it.
Combinators hand sub-streams they pass on unchanged back to run() as tail
calls, which keeps deep recursive filters off the Python call stack.
"""

from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple

from quarry.quarry_error import QuarryEvalError, check, suppress_errors
from quarry.quarry_filter import (
    QuarryFilterNode, QuarryContext, QuarryId, QuarryRecurseAll, QuarryLiteral, QuarryArray,
    QuarryObject, QuarryNeg, QuarryPipe, QuarryComma, QuarryAlt, QuarryMath, QuarryOrd, QuarryLogic,
    QuarryIfThenElse, QuarryTry, QuarryBind, QuarryReduce, QuarryForeach, QuarryPathPart,
    QuarryPathExpr, QuarryUpdate, QuarryVar, QuarrySkipVars, QuarryCallDef, QuarryRecCall,
    QuarryNativeCall
)
from quarry.quarry_lazy_list import QuarryLazyList
from quarry.quarry_path_evaluator import QuarryPathEvaluator
from quarry.quarry_tail_call import QuarryTailCall, run_with_tail_calls
from quarry.quarry_value import (
    MATH_OPERATORS, negate, compare, equals, is_truthy, index, slice_value, iterate, type_name
)


ORD_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '==': equals,
    '!=': lambda a, b: not equals(a, b),
    '<': lambda a, b: compare(a, b) < 0,
    '<=': lambda a, b: compare(a, b) <= 0,
    '>': lambda a, b: compare(a, b) > 0,
    '>=': lambda a, b: compare(a, b) >= 0,
}


class QuarryEvaluator:
    """Evaluates combinator trees in value mode."""

    def __init__(self) -> None:
        self.path_evaluator = QuarryPathEvaluator(self)
        self._dispatch: Dict[type, Callable[[Any, QuarryContext, Any], Iterator[Any]]] = {
            QuarryId: self._run_id,
            QuarryRecurseAll: self._run_recurse_all,
            QuarryLiteral: self._run_literal,
            QuarryArray: self._run_array,
            QuarryObject: self._run_object,
            QuarryNeg: self._run_neg,
            QuarryPipe: self._run_pipe,
            QuarryComma: self._run_comma,
            QuarryAlt: self._run_alt,
            QuarryMath: self._run_math,
            QuarryOrd: self._run_ord,
            QuarryLogic: self._run_logic,
            QuarryIfThenElse: self._run_if,
            QuarryTry: self._run_try,
            QuarryBind: self._run_bind,
            QuarryReduce: self._run_reduce,
            QuarryForeach: self._run_foreach,
            QuarryPathExpr: self._run_path_expr,
            QuarryUpdate: self._run_update,
            QuarryVar: self._run_var,
            QuarrySkipVars: self._run_skip_vars,
            QuarryCallDef: self._run_call_def,
            QuarryRecCall: self._run_rec_call,
            QuarryNativeCall: self._run_native,
        }

    def run(self, f: QuarryFilterNode, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        """
        Evaluate a combinator against one input value.

        Args:
            f: Combinator to evaluate
            ctx: Variables, external inputs and recursion table
            value: Input value

        Returns:
            Lazy stream of values and QuarryEvalError elements
        """
        return run_with_tail_calls(self._start, f, ctx, value)

    def _start(self, f: QuarryFilterNode, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return self._dispatch[type(f)](f, ctx, value)

    def paths(self, f: QuarryFilterNode, ctx: QuarryContext, value_path: Tuple[Any, Tuple[Any, ...]]) -> Iterator[Any]:
        """Evaluate a combinator in path mode; see QuarryPathEvaluator.paths()."""
        return self.path_evaluator.paths(f, ctx, value_path)

    def cartesian(self, args: Sequence[QuarryFilterNode], ctx: QuarryContext, value: Any) -> Iterator[Tuple[Any, ...]]:
        """
        Yield every combination of the outputs of args, first argument outermost.

        All arguments but the first are memoized, so each runs at most once
        however many outputs the arguments before it have.

        Raises:
            QuarryEvalError: The first error element met in any argument
        """
        if not args:
            yield ()
            return

        rest = [QuarryLazyList(self.run(arg, ctx, value)) for arg in args[1:]]

        def combine(position: int) -> Iterator[Tuple[Any, ...]]:
            if position == len(rest):
                yield ()
                return

            for item in rest[position]:
                check(item)
                for tail in combine(position + 1):
                    yield (item,) + tail

        for first in self.run(args[0], ctx, value):
            check(first)
            for tail in combine(0):
                yield (first,) + tail

    def _products(
        self,
        lhs: QuarryFilterNode,
        rhs: QuarryFilterNode,
        ctx: QuarryContext,
        value: Any
    ) -> Iterator[Tuple[Any, Any]]:
        """Pairs of outputs for a binary operator; rhs is the outer loop."""
        lefts = QuarryLazyList(self.run(lhs, ctx, value))
        for right in self.run(rhs, ctx, value):
            check(right)
            for left in lefts:
                yield check(left), right

    def _run_id(self, f: QuarryId, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        yield value

    def _run_recurse_all(self, f: QuarryRecurseAll, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        stack: List[Iterator[Any]] = [iter((value,))]
        while stack:
            for item in stack[-1]:
                yield item
                if isinstance(item, (list, dict)):
                    stack.append(iterate(item))

                break

            else:
                stack.pop()

    def _run_literal(self, f: QuarryLiteral, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        yield f.value

    def _run_array(self, f: QuarryArray, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        if f.body is None:
            yield []
            return

        yield [check(item) for item in self.run(f.body, ctx, value)]

    def _run_object(self, f: QuarryObject, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        def build(position: int, fields: Tuple[Tuple[str, Any], ...]) -> Iterator[Any]:
            if position == len(f.entries):
                yield dict(fields)
                return

            key_filter, value_filter = f.entries[position]
            for key in self.run(key_filter, ctx, value):
                check(key)
                if not isinstance(key, str):
                    raise QuarryEvalError(f"Object keys must be strings, not {type_name(key)}")

                for item in self.run(value_filter, ctx, value):
                    check(item)
                    yield from build(position + 1, fields + ((key, item),))

        yield from build(0, ())

    def _run_neg(self, f: QuarryNeg, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for item in self.run(f.body, ctx, value):
            yield negate(check(item))

    def _run_pipe(self, f: QuarryPipe, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for item in self.run(f.lhs, ctx, value):
            check(item)
            yield QuarryTailCall(f.rhs, ctx, item)

    def _run_comma(self, f: QuarryComma, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        yield QuarryTailCall(f.lhs, ctx, value)
        yield QuarryTailCall(f.rhs, ctx, value)

    def _run_alt(self, f: QuarryAlt, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        found = False
        for item in self.run(f.lhs, ctx, value):
            if isinstance(item, QuarryEvalError) or not is_truthy(item):
                continue

            found = True
            yield item

        if not found:
            yield QuarryTailCall(f.rhs, ctx, value)

    def _run_math(self, f: QuarryMath, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        operator = MATH_OPERATORS[f.op]
        for left, right in self._products(f.lhs, f.rhs, ctx, value):
            yield operator(left, right)

    def _run_ord(self, f: QuarryOrd, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        operator = ORD_OPERATORS[f.op]
        for left, right in self._products(f.lhs, f.rhs, ctx, value):
            yield operator(left, right)

    def _run_logic(self, f: QuarryLogic, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        # `and` stops at a falsy lhs, `or` at a truthy one
        stop_on = f.op == 'or'
        for left in self.run(f.lhs, ctx, value):
            if is_truthy(check(left)) == stop_on:
                yield stop_on
                continue

            for right in self.run(f.rhs, ctx, value):
                yield is_truthy(check(right))

    def _run_if(self, f: QuarryIfThenElse, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for cond in self.run(f.cond, ctx, value):
            branch = f.then_branch if is_truthy(check(cond)) else f.else_branch
            yield QuarryTailCall(branch, ctx, value)

    def _run_try(self, f: QuarryTry, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for item in self.run(f.body, ctx, value):
            if not isinstance(item, QuarryEvalError):
                yield item
                continue

            if f.catch is not None:
                yield QuarryTailCall(f.catch, ctx, item.as_value())

    def _run_bind(self, f: QuarryBind, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for item in self.run(f.source, ctx, value):
            yield QuarryTailCall(f.body, ctx.cons_var(check(item)), value)

    def _run_reduce(self, f: QuarryReduce, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for acc in self.run(f.init, ctx, value):
            check(acc)
            for item in self.run(f.source, ctx, value):
                inner = ctx.cons_var(check(item))
                result = None
                for result in self.run(f.update, inner, acc):
                    check(result)

                acc = result

            yield acc

    def _run_foreach(self, f: QuarryForeach, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for acc in self.run(f.init, ctx, value):
            check(acc)
            for item in self.run(f.source, ctx, value):
                inner = ctx.cons_var(check(item))
                for acc in self.run(f.update, inner, acc):
                    check(acc)
                    if f.extract is None:
                        yield acc

                    else:
                        yield QuarryTailCall(f.extract, inner, acc)

    def _run_path_expr(self, f: QuarryPathExpr, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for head in self.run(f.head, ctx, value):
            yield from self._apply_parts(f.parts, 0, ctx, value, check(head))

    def _apply_parts(
        self,
        parts: Tuple[QuarryPathPart, ...],
        position: int,
        ctx: QuarryContext,
        root: Any,
        current: Any
    ) -> Iterator[Any]:
        if position == len(parts):
            yield current
            return

        part = parts[position]
        stream = self._part_values(part, ctx, root, current)
        if part.optional:
            stream = suppress_errors(stream)

        for item in stream:
            yield from self._apply_parts(parts, position + 1, ctx, root, item)

    def _part_values(self, part: QuarryPathPart, ctx: QuarryContext, root: Any, current: Any) -> Iterator[Any]:
        if part.kind == 'iterate':
            yield from iterate(current)
            return

        if part.kind == 'index':
            assert part.first is not None
            for key in self.run(part.first, ctx, root):
                yield index(current, check(key))

            return

        for start, end in self.slice_bounds(part, ctx, root):
            yield slice_value(current, start, end)

    def slice_bounds(self, part: QuarryPathPart, ctx: QuarryContext, root: Any) -> Iterator[Tuple[Any, Any]]:
        """Yield (start, end) for each combination of a slice's bounds; missing bounds are null."""
        ends = [None] if part.second is None else QuarryLazyList(self.run(part.second, ctx, root))
        starts = iter((None,)) if part.first is None else self.run(part.first, ctx, root)
        for start in starts:
            check(start)
            for end in ends:
                yield start, check(end)

    def _run_update(self, f: QuarryUpdate, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return self.path_evaluator.update(f, ctx, value)

    def _run_var(self, f: QuarryVar, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        yield ctx.vars.get(f.offset)

    def _run_skip_vars(self, f: QuarrySkipVars, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        yield QuarryTailCall(f.body, ctx.skip_vars(f.count), value)

    def _run_call_def(self, f: QuarryCallDef, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for values in self.cartesian(f.args, ctx, value):
            yield QuarryTailCall(f.body, ctx.cons_many(values), value)

    def _run_rec_call(self, f: QuarryRecCall, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        arity, body = ctx.recs[f.id]
        for values in self.cartesian(f.args, ctx, value):
            inner = ctx.cons_many(values).save_skip_vars(arity, f.skip)
            yield QuarryTailCall(body, inner, value)

    def _run_native(self, f: QuarryNativeCall, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return f.native.run(self, f.args, ctx, value)

