"""
Path-mode evaluation of compiled Quarry filters.

In path mode a combinator maps a (value, path) pair to a lazy stream of
(value, path) pairs, where each path is a tuple of keys, indices and slice steps
leading from the root input to the value.  Assignment operators use this to
find the locations they update.  Like value mode, path mode hands sub-streams
it passes on unchanged back to paths() as tail calls.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Tuple

from quarry.quarry_error import QuarryEvalError, QuarryPathError, check, suppress_errors
from quarry.quarry_filter import (
    QuarryFilterNode, QuarryContext, QuarryId, QuarryRecurseAll, QuarryPipe, QuarryComma, QuarryAlt,
    QuarryIfThenElse, QuarryTry, QuarryBind, QuarryReduce, QuarryForeach, QuarryPathPart,
    QuarryPathExpr, QuarryUpdate, QuarrySkipVars, QuarryCallDef, QuarryRecCall, QuarryNativeCall
)
from quarry.quarry_value import (
    MATH_OPERATORS, describe, is_truthy, index, slice_value, slice_step, iterate_with_keys,
    get_path, set_path, delete_paths
)
from quarry.quarry_tail_call import QuarryTailCall, run_with_tail_calls

if TYPE_CHECKING:
    from quarry.quarry_evaluator import QuarryEvaluator


ValuePath = Tuple[Any, Tuple[Any, ...]]

# Returned by an update function to request deletion of the path
_DELETE = object()


class QuarryPathEvaluator:
    """Evaluates combinator trees in path mode and applies assignments."""

    def __init__(self, evaluator: 'QuarryEvaluator') -> None:
        """
        Initialize path evaluator.

        Args:
            evaluator: Value-mode evaluator used for sub-expressions such as
                indices, conditions and bound variables
        """
        self._evaluator = evaluator
        self._dispatch: Dict[type, Callable[[Any, QuarryContext, ValuePath], Iterator[Any]]] = {
            QuarryId: self._paths_id,
            QuarryRecurseAll: self._paths_recurse_all,
            QuarryPipe: self._paths_pipe,
            QuarryComma: self._paths_comma,
            QuarryAlt: self._paths_alt,
            QuarryIfThenElse: self._paths_if,
            QuarryTry: self._paths_try,
            QuarryBind: self._paths_bind,
            QuarryReduce: self._paths_reduce,
            QuarryForeach: self._paths_foreach,
            QuarryPathExpr: self._paths_path_expr,
            QuarrySkipVars: self._paths_skip_vars,
            QuarryCallDef: self._paths_call_def,
            QuarryRecCall: self._paths_rec_call,
            QuarryNativeCall: self._paths_native,
        }

    def paths(self, f: QuarryFilterNode, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        """
        Evaluate a combinator in path mode.

        Args:
            f: Combinator to evaluate
            ctx: Evaluation context
            value_path: The current value and the path that leads to it

        Returns:
            Lazy stream of (value, path) pairs and QuarryEvalError elements
        """
        return run_with_tail_calls(self._start, f, ctx, value_path)

    def _start(self, f: QuarryFilterNode, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        return self._dispatch.get(type(f), self._paths_invalid)(f, ctx, value_path)

    def update(self, f: QuarryUpdate, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        """
        Apply an assignment operator to value.

        `|=` replaces each addressed value with the first output of the right-hand
        side run on it, deleting the location when there is no output.  The other
        operators run the right-hand side once on value and produce one result
        per output.

        Raises:
            QuarryEvalError: If a path or the right-hand side fails
        """
        if f.op == '|=':
            def first_output(old: Any) -> Any:
                for item in self._evaluator.run(f.rhs, ctx, old):
                    return check(item)

                return _DELETE

            yield self._modify(f.lhs, ctx, value, first_output)
            return

        for operand in self._evaluator.run(f.rhs, ctx, value):
            check(operand)
            yield self._modify(f.lhs, ctx, value, self._assigner(f.op, operand))

    @staticmethod
    def _assigner(op: str, operand: Any) -> Callable[[Any], Any]:
        if op == '=':
            return lambda old: operand

        if op == '//=':
            return lambda old: old if is_truthy(old) else operand

        operator = MATH_OPERATORS[op[:-1]]
        return lambda old: operator(old, operand)

    def _modify(self, lhs: QuarryFilterNode, ctx: QuarryContext, value: Any, update: Callable[[Any], Any]) -> Any:
        """Replace the value at every path of lhs; deletions are applied last."""
        result = value
        deletions: List[Tuple[Any, ...]] = []
        for item in self.paths(lhs, ctx, (value, ())):
            path = check(item)[1]
            new_value = update(get_path(result, path))
            if new_value is _DELETE:
                deletions.append(path)

            else:
                result = set_path(result, path, new_value)

        if deletions:
            result = delete_paths(result, deletions)

        return result

    def _paths_invalid(self, f: QuarryFilterNode, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for item in self._evaluator.run(f, ctx, value_path[0]):
            raise QuarryPathError(f"Invalid path expression with result {describe(check(item))}")

        return iter(())

    def _paths_id(self, f: QuarryId, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        yield value_path

    def _paths_recurse_all(self, f: QuarryRecurseAll, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        stack: List[Iterator[ValuePath]] = [iter((value_path,))]
        while stack:
            for item in stack[-1]:
                yield item
                value, path = item
                if isinstance(value, (list, dict)):
                    stack.append(self._children(value, path))

                break

            else:
                stack.pop()

    @staticmethod
    def _children(value: Any, path: Tuple[Any, ...]) -> Iterator[ValuePath]:
        for key, child in iterate_with_keys(value):
            yield child, path + (key,)

    def _paths_pipe(self, f: QuarryPipe, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for item in self.paths(f.lhs, ctx, value_path):
            yield QuarryTailCall(f.rhs, ctx, check(item))

    def _paths_comma(self, f: QuarryComma, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        yield QuarryTailCall(f.lhs, ctx, value_path)
        yield QuarryTailCall(f.rhs, ctx, value_path)

    def _paths_alt(self, f: QuarryAlt, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        found = False
        for item in self.paths(f.lhs, ctx, value_path):
            if isinstance(item, QuarryEvalError) or not is_truthy(item[0]):
                continue

            found = True
            yield item

        if not found:
            yield QuarryTailCall(f.rhs, ctx, value_path)

    def _paths_if(self, f: QuarryIfThenElse, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for cond in self._evaluator.run(f.cond, ctx, value_path[0]):
            branch = f.then_branch if is_truthy(check(cond)) else f.else_branch
            yield QuarryTailCall(branch, ctx, value_path)

    def _paths_try(self, f: QuarryTry, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for item in self.paths(f.body, ctx, value_path):
            if not isinstance(item, QuarryEvalError):
                yield item
                continue

            # A handler's outputs are new values, not locations in the input
            if f.catch is not None:
                for handled in self._evaluator.run(f.catch, ctx, item.as_value()):
                    raise QuarryPathError(f"Invalid path expression with result {describe(check(handled))}")

    def _paths_bind(self, f: QuarryBind, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for item in self._evaluator.run(f.source, ctx, value_path[0]):
            yield QuarryTailCall(f.body, ctx.cons_var(check(item)), value_path)

    def _paths_reduce(self, f: QuarryReduce, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for acc in self.paths(f.init, ctx, value_path):
            check(acc)
            for item in self._evaluator.run(f.source, ctx, value_path[0]):
                inner = ctx.cons_var(check(item))
                result = (None, acc[1])
                for result in self.paths(f.update, inner, acc):
                    check(result)

                acc = result

            yield acc

    def _paths_foreach(self, f: QuarryForeach, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for acc in self.paths(f.init, ctx, value_path):
            check(acc)
            for item in self._evaluator.run(f.source, ctx, value_path[0]):
                inner = ctx.cons_var(check(item))
                for acc in self.paths(f.update, inner, acc):
                    check(acc)
                    if f.extract is None:
                        yield acc

                    else:
                        yield QuarryTailCall(f.extract, inner, acc)

    def _paths_path_expr(self, f: QuarryPathExpr, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        root = value_path[0]
        for head in self.paths(f.head, ctx, value_path):
            yield from self._apply_parts(f.parts, 0, ctx, root, check(head))

    def _apply_parts(
        self,
        parts: Tuple[QuarryPathPart, ...],
        position: int,
        ctx: QuarryContext,
        root: Any,
        current: ValuePath
    ) -> Iterator[Any]:
        if position == len(parts):
            yield current
            return

        part = parts[position]
        stream = self._part_paths(part, ctx, root, current)
        if part.optional:
            stream = suppress_errors(stream)

        for item in stream:
            yield from self._apply_parts(parts, position + 1, ctx, root, item)

    def _part_paths(self, part: QuarryPathPart, ctx: QuarryContext, root: Any, current: ValuePath) -> Iterator[Any]:
        value, path = current
        if part.kind == 'iterate':
            for key, child in iterate_with_keys(value):
                yield child, path + (key,)

            return

        if part.kind == 'index':
            assert part.first is not None
            for key in self._evaluator.run(part.first, ctx, root):
                yield index(value, check(key)), path + (key,)

            return

        for start, end in self._evaluator.slice_bounds(part, ctx, root):
            yield slice_value(value, start, end), path + (slice_step(start, end),)

    def _paths_skip_vars(self, f: QuarrySkipVars, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        yield QuarryTailCall(f.body, ctx.skip_vars(f.count), value_path)

    def _paths_call_def(self, f: QuarryCallDef, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        for values in self._evaluator.cartesian(f.args, ctx, value_path[0]):
            yield QuarryTailCall(f.body, ctx.cons_many(values), value_path)

    def _paths_rec_call(self, f: QuarryRecCall, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        arity, body = ctx.recs[f.id]
        for values in self._evaluator.cartesian(f.args, ctx, value_path[0]):
            inner = ctx.cons_many(values).save_skip_vars(arity, f.skip)
            yield QuarryTailCall(body, inner, value_path)

    def _paths_native(self, f: QuarryNativeCall, ctx: QuarryContext, value_path: ValuePath) -> Iterator[Any]:
        if f.native.paths is None:
            raise QuarryPathError(
                f"Invalid path expression: '{f.native.name}/{f.native.arity}' cannot be used as a path",
                suggestion="Only path expressions such as .a, .[0], .[], select(...) or recurse can be updated"
            )

        return f.native.paths(self._evaluator, f.args, ctx, value_path)
