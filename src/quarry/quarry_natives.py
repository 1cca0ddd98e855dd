"""Core native filters for Quarry."""

import logging
import math
from typing import Any, Callable, Iterator, List, Sequence, Tuple

from quarry.quarry_error import QuarryEvalError, check
from quarry.quarry_filter import QuarryContext, QuarryFilterNode, QuarryNative
from quarry.quarry_value import (
    compare, compare_key, contains, delete_paths, describe, from_json, get_path, has_key,
    is_number, is_truthy, iterate, iterate_with_keys, keys, length, set_path, sort_values,
    split_string, to_json, to_string, type_name, add
)


Args = Sequence[QuarryFilterNode]

# Marks "no element" where None is a valid value
_MISSING = object()


def _number_function(name: str, function: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        if not is_number(value):
            raise QuarryEvalError(f"{describe(value)} number required", context=f"In {name}")

        try:
            return function(value)

        except (ValueError, OverflowError) as e:
            raise QuarryEvalError(f"{describe(value)} is out of range for {name}", context=str(e)) from e

    return apply


def _integral(function: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """Wrap a rounding function so that infinities and nan come back unchanged."""
    def apply(value: Any) -> Any:
        if isinstance(value, float) and not math.isfinite(value):
            return value

        return function(value)

    return apply


def _round(value: Any) -> Any:
    # Halves round away from zero
    rounded = math.floor(abs(value) + 0.5)
    return rounded if value >= 0 else -rounded


def _sqrt(value: Any) -> Any:
    return math.nan if value < 0 else math.sqrt(value)


def _require_array(value: Any, action: str) -> List[Any]:
    if not isinstance(value, list):
        raise QuarryEvalError(f"{describe(value)} cannot be {action}, as it is not an array")

    return value


def _require_path(path: Any) -> List[Any]:
    if not isinstance(path, list):
        raise QuarryEvalError("Path must be specified as an array", received=describe(path))

    return path


class QuarryNatives:
    """Built-in filters implemented in Python."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("QuarryNatives")

    def get_natives(self) -> List[QuarryNative]:
        """Return every core native, in registration order."""
        simple = {
            'not': lambda v: not is_truthy(v),
            'length': length,
            'keys': keys,
            'keys_unsorted': lambda v: keys(v, sort=False),
            'type': type_name,
            'add': self._add,
            'tostring': to_string,
            'tonumber': self._tonumber,
            'tojson': to_json,
            'fromjson': self._fromjson,
            'ascii_downcase': lambda v: self._ascii(v, str.lower),
            'ascii_upcase': lambda v: self._ascii(v, str.upper),
            'explode': self._explode,
            'implode': self._implode,
            'floor': _number_function('floor', _integral(math.floor)),
            'sqrt': _number_function('sqrt', _sqrt),
            'round': _number_function('round', _integral(_round)),
            'ceil': _number_function('ceil', _integral(math.ceil)),
            'fabs': _number_function('fabs', math.fabs),
            'infinite': lambda v: math.inf,
            'nan': lambda v: math.nan,
            'isnan': _number_function('isnan', math.isnan),
            'sort': lambda v: sort_values(_require_array(v, "sorted")),
            'reverse': self._reverse,
            'to_entries': self._to_entries,
            'from_entries': self._from_entries,
        }

        with_values = {
            ('has', 1): has_key,
            ('contains', 1): contains,
            ('ltrimstr', 1): self._ltrimstr,
            ('rtrimstr', 1): self._rtrimstr,
            ('startswith', 1): lambda v, s: self._affix(v, s, "startswith", str.startswith),
            ('endswith', 1): lambda v, s: self._affix(v, s, "endswith", str.endswith),
            ('split', 1): self._split,
            ('join', 1): self._join,
            ('setpath', 2): lambda v, p, x: set_path(v, _require_path(p), x),
            ('delpaths', 1): self._delpaths,
        }

        natives = [QuarryNative(name, 0, self._simple(function)) for name, function in simple.items()]
        natives.extend(
            QuarryNative(name, arity, self._with_values(function)) for (name, arity), function in with_values.items()
        )

        natives.extend([
            QuarryNative('empty', 0, self._empty, paths=self._empty),
            QuarryNative('error', 0, self._error, paths=self._error),
            QuarryNative('error', 1, self._error_with, paths=self._error_with_paths),
            QuarryNative('getpath', 1, self._with_values(self._getpath), paths=self._getpath_paths),
            QuarryNative('range', 2, self._range),
            QuarryNative('first', 1, self._first, paths=self._first_paths, path_through_args=(0,)),
            QuarryNative('last', 1, self._last, paths=self._last_paths, path_through_args=(0,)),
            QuarryNative('limit', 2, self._limit, paths=self._limit_paths, path_through_args=(1,)),
            QuarryNative('recurse', 1, self._recurse, paths=self._recurse_paths, path_through_args=(0,)),
            QuarryNative('path', 1, self._path, path_args=(0,)),
            QuarryNative('paths', 0, self._paths),
            QuarryNative('sort_by', 1, self._by(self._sort_by)),
            QuarryNative('group_by', 1, self._by(self._group_by)),
            QuarryNative('unique_by', 1, self._by(self._unique_by)),
            QuarryNative('min_by', 1, self._by(lambda pairs: self._extreme_by(pairs, False))),
            QuarryNative('max_by', 1, self._by(lambda pairs: self._extreme_by(pairs, True))),
            QuarryNative('input', 0, self._input),
            QuarryNative('inputs', 0, self._inputs),
            QuarryNative('debug', 0, self._debug),
            QuarryNative('stderr', 0, self._stderr),
        ])
        return natives

    @staticmethod
    def _simple(function: Callable[[Any], Any]) -> Callable[..., Iterator[Any]]:
        """Wrap a function of the input value as a native with one output."""
        def run(evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
            yield function(value)

        return run

    @staticmethod
    def _with_values(function: Callable[..., Any]) -> Callable[..., Iterator[Any]]:
        """Wrap a function whose arguments are values: one output per argument combination."""
        def run(evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
            for values in evaluator.cartesian(args, ctx, value):
                yield function(value, *values)

        return run

    @staticmethod
    def _by(function: Callable[[List[Tuple[List[Any], Any]]], Any]) -> Callable[..., Iterator[Any]]:
        """Wrap a function of (key, element) pairs, the key being all outputs of the argument."""
        def run(evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
            pairs = []
            for element in _require_array(value, "sorted"):
                key = [check(item) for item in evaluator.run(args[0], ctx, element)]
                pairs.append((key, element))

            yield function(pairs)

        return run

    @staticmethod
    def _add(value: Any) -> Any:
        result = None
        for item in iterate(value):
            result = add(result, item)

        return result

    @staticmethod
    def _tonumber(value: Any) -> Any:
        if is_number(value):
            return value

        if not isinstance(value, str):
            raise QuarryEvalError(f"{describe(value)} cannot be parsed as a number")

        try:
            result = from_json(value)

        except QuarryEvalError:
            result = None

        if not is_number(result):
            raise QuarryEvalError(f"Cannot parse '{value}' as a number")

        return result

    @staticmethod
    def _fromjson(value: Any) -> Any:
        if not isinstance(value, str):
            raise QuarryEvalError(f"{describe(value)} cannot be parsed as JSON, as it is not a string")

        return from_json(value)

    @staticmethod
    def _ascii(value: Any, convert: Callable[[str], str]) -> str:
        if not isinstance(value, str):
            raise QuarryEvalError(f"{describe(value)} cannot be case-converted, as it is not a string")

        return "".join(convert(c) if c.isascii() else c for c in value)

    @staticmethod
    def _explode(value: Any) -> List[int]:
        if not isinstance(value, str):
            raise QuarryEvalError(f"{describe(value)} cannot be exploded, as it is not a string")

        return [ord(c) for c in value]

    @staticmethod
    def _implode(value: Any) -> str:
        if not isinstance(value, list) or not all(isinstance(c, int) and not isinstance(c, bool) for c in value):
            raise QuarryEvalError(f"{describe(value)} cannot be imploded, as it is not an array of codepoints")

        try:
            return "".join(chr(c) for c in value)

        except (ValueError, OverflowError) as e:
            raise QuarryEvalError(f"{describe(value)} contains an invalid codepoint") from e

    @staticmethod
    def _reverse(value: Any) -> Any:
        if value is None:
            return []

        if isinstance(value, (list, str)):
            return value[::-1]

        raise QuarryEvalError(f"{describe(value)} cannot be reversed")

    @staticmethod
    def _to_entries(value: Any) -> List[Any]:
        if isinstance(value, dict):
            return [{"key": k, "value": v} for k, v in value.items()]

        if isinstance(value, list):
            return [{"key": i, "value": v} for i, v in enumerate(value)]

        raise QuarryEvalError(f"{describe(value)} has no keys")

    @staticmethod
    def _from_entries(value: Any) -> Any:
        result = {}
        for entry in iterate(value):
            if not isinstance(entry, dict):
                raise QuarryEvalError(f"Cannot use {describe(entry)} as an object entry")

            key = _MISSING
            for name in ("key", "k", "name", "Name", "K", "Key"):
                if entry.get(name) is not None:
                    key = entry[name]
                    break

            if key is _MISSING:
                key = None

            if not isinstance(key, str):
                if isinstance(key, (list, dict)):
                    raise QuarryEvalError(f"Cannot use {describe(key)} as object key")

                key = to_json(key)

            item = None
            for name in ("value", "v", "Value"):
                if name in entry:
                    item = entry[name]
                    break

            result[key] = item

        return result

    @staticmethod
    def _ltrimstr(value: Any, prefix: Any) -> Any:
        if isinstance(value, str) and isinstance(prefix, str) and value.startswith(prefix):
            return value[len(prefix):]

        return value

    @staticmethod
    def _rtrimstr(value: Any, suffix: Any) -> Any:
        if isinstance(value, str) and isinstance(suffix, str) and suffix and value.endswith(suffix):
            return value[:-len(suffix)]

        return value

    @staticmethod
    def _affix(value: Any, affix: Any, name: str, test: Callable[[str, str], bool]) -> bool:
        if not isinstance(value, str) or not isinstance(affix, str):
            raise QuarryEvalError(f"{name}() requires string inputs")

        return test(value, affix)

    @staticmethod
    def _split(value: Any, separator: Any) -> List[str]:
        if not isinstance(value, str) or not isinstance(separator, str):
            raise QuarryEvalError("split input and separator must be strings")

        return split_string(value, separator)

    @staticmethod
    def _join(value: Any, separator: Any) -> str:
        parts = []
        for item in iterate(value):
            if item is None:
                parts.append("")

            elif isinstance(item, str):
                parts.append(item)

            elif isinstance(item, (bool, int, float)):
                parts.append(to_json(item))

            else:
                raise QuarryEvalError(f"Cannot join with {describe(item)}")

        if parts and not isinstance(separator, str):
            raise QuarryEvalError(f"Cannot join with separator {describe(separator)}")

        return separator.join(parts) if parts else ""

    @staticmethod
    def _getpath(value: Any, path: Any) -> Any:
        return get_path(value, _require_path(path))

    @staticmethod
    def _delpaths(value: Any, paths: Any) -> Any:
        if not isinstance(paths, list):
            raise QuarryEvalError("Paths must be specified as an array", received=describe(paths))

        return delete_paths(value, [_require_path(p) for p in paths])

    def _empty(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return iter(())

    def _error(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        raise QuarryEvalError(value=value)

    def _error_with(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for message in evaluator.run(args[0], ctx, value):
            raise QuarryEvalError(value=check(message))

        return iter(())

    def _error_with_paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value_path: Any) -> Iterator[Any]:
        return self._error_with(evaluator, args, ctx, value_path[0])

    def _getpath_paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value_path: Any) -> Iterator[Any]:
        value, path = value_path
        for item in evaluator.run(args[0], ctx, value):
            steps = _require_path(check(item))
            yield get_path(value, steps), path + tuple(steps)

    def _range(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for start, stop in evaluator.cartesian(args, ctx, value):
            if not is_number(start) or not is_number(stop):
                raise QuarryEvalError("Range bounds must be numeric")

            current = start
            while current < stop:
                yield current
                current += 1

    def _first(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for item in evaluator.run(args[0], ctx, value):
            yield item
            return

    def _first_paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value_path: Any) -> Iterator[Any]:
        for item in evaluator.paths(args[0], ctx, value_path):
            yield item
            return

    @staticmethod
    def _last_of(stream: Iterator[Any]) -> Iterator[Any]:
        last = _MISSING
        for last in stream:
            pass

        if last is not _MISSING:
            yield last

    def _last(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return self._last_of(evaluator.run(args[0], ctx, value))

    def _last_paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value_path: Any) -> Iterator[Any]:
        return self._last_of(evaluator.paths(args[0], ctx, value_path))

    @staticmethod
    def _take(evaluator: Any, count_filter: QuarryFilterNode, ctx: QuarryContext, value: Any,
              stream: Callable[[], Iterator[Any]]) -> Iterator[Any]:
        for (count,) in evaluator.cartesian((count_filter,), ctx, value):
            if not is_number(count):
                raise QuarryEvalError(f"Invalid limit {describe(count)}: number required")

            if count <= 0:
                continue

            taken = 0
            for item in stream():
                yield item
                taken += 1
                if taken >= count:
                    break

    def _limit(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return self._take(evaluator, args[0], ctx, value, lambda: evaluator.run(args[1], ctx, value))

    def _limit_paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value_path: Any) -> Iterator[Any]:
        return self._take(evaluator, args[0], ctx, value_path[0], lambda: evaluator.paths(args[1], ctx, value_path))

    @staticmethod
    def _depth_first(start: Any, children: Callable[[Any], Iterator[Any]]) -> Iterator[Any]:
        """Yield start and everything reachable through children, depth-first, without recursion."""
        stack: List[Iterator[Any]] = [iter((start,))]
        while stack:
            for item in stack[-1]:
                yield item
                if not isinstance(item, QuarryEvalError):
                    stack.append(children(item))

                break

            else:
                stack.pop()

    def _recurse(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return self._depth_first(value, lambda item: evaluator.run(args[0], ctx, item))

    def _recurse_paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value_path: Any) -> Iterator[Any]:
        return self._depth_first(value_path, lambda item: evaluator.paths(args[0], ctx, item))

    def _path(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        for item in evaluator.paths(args[0], ctx, (value, ())):
            yield list(check(item)[1])

    def _paths(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        def children(item: Tuple[Any, Tuple[Any, ...]]) -> Iterator[Any]:
            child_value, path = item
            if isinstance(child_value, (list, dict)):
                return ((child, path + (key,)) for key, child in iterate_with_keys(child_value))

            return iter(())

        for _, path in self._depth_first((value, ()), children):
            if path:
                yield list(path)

    @staticmethod
    def _sort_by(pairs: List[Tuple[List[Any], Any]]) -> List[Any]:
        return [element for _, element in sorted(pairs, key=lambda pair: compare_key(pair[0]))]

    @staticmethod
    def _group_by(pairs: List[Tuple[List[Any], Any]]) -> List[List[Any]]:
        groups: List[List[Any]] = []
        previous: Any = _MISSING
        for key, element in sorted(pairs, key=lambda pair: compare_key(pair[0])):
            if previous is not _MISSING and compare(previous, key) == 0:
                groups[-1].append(element)

            else:
                groups.append([element])

            previous = key

        return groups

    def _unique_by(self, pairs: List[Tuple[List[Any], Any]]) -> List[Any]:
        return [group[0] for group in self._group_by(pairs)]

    @staticmethod
    def _extreme_by(pairs: List[Tuple[List[Any], Any]], maximum: bool) -> Any:
        best: Any = _MISSING
        best_key: List[Any] = []
        for key, element in pairs:
            order = compare(key, best_key)
            if best is _MISSING or (order >= 0 if maximum else order < 0):
                best, best_key = element, key

        return None if best is _MISSING else best

    def _input(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        item = ctx.inputs.next_item(_MISSING)
        if item is _MISSING:
            raise QuarryEvalError("No more inputs")

        yield check(item)

    def _inputs(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        return iter(ctx.inputs)

    def _debug(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        self._logger.debug("%s", to_json(["DEBUG:", value]))
        yield value

    def _stderr(self, evaluator: Any, args: Args, ctx: QuarryContext, value: Any) -> Iterator[Any]:
        self._logger.info("%s", to_json(value))
        yield value
