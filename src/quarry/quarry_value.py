"""
Quarry value operations.

Quarry values are plain Python JSON data: None, bool, int, float, str, list and
dict with string keys.  Values are treated as immutable; every operation here
that "changes" a value returns a new container and leaves its arguments alone.

All failures are reported by raising QuarryEvalError, which the evaluator turns
into an error element of the output stream.
"""

import json
import math
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple

from quarry.quarry_error import QuarryEvalError


# Rank of each type in the total order used by comparisons and sorting
_TYPE_ORDER = {
    'null': 0,
    'false': 1,
    'true': 2,
    'number': 3,
    'string': 4,
    'array': 5,
    'object': 6,
}

# Largest double, printed in place of infinity
_MAX_DOUBLE = 1.7976931348623157e+308

# Bounds on the size of values built by repetition and by assigning past the end
_MAX_STRING_LENGTH = 2 ** 28
_MAX_ARRAY_INDEX = 2 ** 29

# Largest integer; infinities stand for it where an integer is needed
_MAX_INT = 2 ** 63 - 1


def _is_finite(value: Any) -> bool:
    return isinstance(value, int) or math.isfinite(value)


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _to_int(value: Any) -> int:
    """Truncate a number to an integer, clamping infinities."""
    if isinstance(value, int):
        return value

    if math.isinf(value):
        return _MAX_INT if value > 0 else -_MAX_INT

    return int(value)


def is_number(value: Any) -> bool:
    """Check if a value is a number (booleans are not numbers)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value: Any) -> str:
    """Return the Quarry type name of a value."""
    if value is None:
        return "null"

    if isinstance(value, bool):
        return "boolean"

    if isinstance(value, (int, float)):
        return "number"

    if isinstance(value, str):
        return "string"

    if isinstance(value, list):
        return "array"

    if isinstance(value, dict):
        return "object"

    raise QuarryEvalError(f"Unsupported value of Python type {type(value).__name__}")


def is_truthy(value: Any) -> bool:
    """Only null and false are falsy."""
    return value is not None and value is not False


def format_number(value: Any) -> str:
    """Format a number the way JSON output presents it."""
    if isinstance(value, int):
        return str(value)

    if math.isnan(value):
        return "null"

    if math.isinf(value):
        return repr(_MAX_DOUBLE if value > 0 else -_MAX_DOUBLE)

    if value.is_integer() and abs(value) < 1e17:
        return str(int(value))

    return repr(value)


def to_json(value: Any) -> str:
    """Serialize a value to compact JSON text."""
    if value is None:
        return "null"

    if value is True:
        return "true"

    if value is False:
        return "false"

    if is_number(value):
        return format_number(value)

    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)

    if isinstance(value, list):
        return "[" + ",".join(to_json(v) for v in value) + "]"

    if isinstance(value, dict):
        return "{" + ",".join(json.dumps(k, ensure_ascii=False) + ":" + to_json(v) for k, v in value.items()) + "}"

    raise QuarryEvalError(f"Cannot serialize Python type {type(value).__name__}")


def from_json(text: str) -> Any:
    """Parse JSON text into a value."""
    try:
        return json.loads(text)

    except ValueError as e:
        raise QuarryEvalError(f"{text} (while parsing '{text}')", context=str(e)) from e


def to_string(value: Any) -> str:
    """Strings stay as they are, everything else becomes JSON text."""
    if isinstance(value, str):
        return value

    return to_json(value)


def describe(value: Any, limit: int = 11) -> str:
    """Describe a value for error messages, e.g. 'number (42)'."""
    text = to_json(value)
    if len(text) > limit:
        text = text[:limit - 1] + "..."

    return f"{type_name(value)} ({text})"


def _order_rank(value: Any) -> int:
    if value is None:
        return _TYPE_ORDER['null']

    if value is False:
        return _TYPE_ORDER['false']

    if value is True:
        return _TYPE_ORDER['true']

    return _TYPE_ORDER[type_name(value)]


def compare(a: Any, b: Any) -> int:
    """
    Compare two values in the total order.

    null < false < true < numbers < strings < arrays < objects.  Arrays compare
    element-wise, objects first by their sorted key lists and then by the values
    under those keys.

    Returns:
        Negative, zero or positive like a classic cmp function
    """
    rank_a = _order_rank(a)
    rank_b = _order_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1

    if is_number(a):
        # NaN sorts below every number, itself included
        if math.isnan(a):
            return -1

        if math.isnan(b):
            return 1

        return (a > b) - (a < b)

    if isinstance(a, str):
        return (a > b) - (a < b)

    if isinstance(a, list):
        for x, y in zip(a, b):
            c = compare(x, y)
            if c != 0:
                return c

        return (len(a) > len(b)) - (len(a) < len(b))

    if isinstance(a, dict):
        keys_a = sorted(a.keys())
        keys_b = sorted(b.keys())
        c = compare(keys_a, keys_b)
        if c != 0:
            return c

        for key in keys_a:
            c = compare(a[key], b[key])
            if c != 0:
                return c

        return 0

    # null, true and false are alone in their rank
    return 0


def equals(a: Any, b: Any) -> bool:
    """Structural equality in the sense of the total order."""
    return compare(a, b) == 0


compare_key = cmp_to_key(compare)


def sort_values(values: Sequence[Any]) -> List[Any]:
    """Return the values sorted by the total order."""
    return sorted(values, key=compare_key)


def add(a: Any, b: Any) -> Any:
    """Implement `a + b`."""
    if a is None:
        return b

    if b is None:
        return a

    if is_number(a) and is_number(b):
        return a + b

    if isinstance(a, str) and isinstance(b, str):
        return a + b

    if isinstance(a, list) and isinstance(b, list):
        return a + b

    if isinstance(a, dict) and isinstance(b, dict):
        return {**a, **b}

    raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be added")


def subtract(a: Any, b: Any) -> Any:
    """Implement `a - b`."""
    if is_number(a) and is_number(b):
        return a - b

    if isinstance(a, list) and isinstance(b, list):
        return [x for x in a if not any(equals(x, y) for y in b)]

    raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be subtracted")


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(a)
    for key, value in b.items():
        existing = result.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            result[key] = _deep_merge(existing, value)

        else:
            result[key] = value

    return result


def _repeat_string(s: str, n: Any) -> Any:
    if _is_nan(n) or n <= 0:
        return None

    if not _is_finite(n) or len(s) * n > _MAX_STRING_LENGTH:
        raise QuarryEvalError("Repeat string result too long", received=f"{describe(s)} repeated {to_json(n)} times")

    return s * math.ceil(n)


def multiply(a: Any, b: Any) -> Any:
    """Implement `a * b`."""
    if is_number(a) and is_number(b):
        return a * b

    if isinstance(a, str) and is_number(b):
        return _repeat_string(a, b)

    if is_number(a) and isinstance(b, str):
        return _repeat_string(b, a)

    if isinstance(a, dict) and isinstance(b, dict):
        return _deep_merge(a, b)

    raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be multiplied")


def divide(a: Any, b: Any) -> Any:
    """Implement `a / b`."""
    if is_number(a) and is_number(b):
        if b == 0:
            raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be divided because the divisor is zero")

        if isinstance(a, int) and isinstance(b, int) and a % b == 0:
            return a // b

        return a / b

    if isinstance(a, str) and isinstance(b, str):
        return split_string(a, b)

    raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be divided")


def modulo(a: Any, b: Any) -> Any:
    """Implement `a % b` with truncation towards zero like C."""
    if is_number(a) and is_number(b):
        if _is_nan(a) or _is_nan(b):
            return math.nan

        int_a = _to_int(a)
        int_b = _to_int(b)
        if int_b == 0:
            raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be divided because the divisor is zero")

        remainder = abs(int_a) % abs(int_b)
        return -remainder if int_a < 0 else remainder

    raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot be divided")


def negate(value: Any) -> Any:
    """Implement unary minus."""
    if is_number(value):
        return -value

    raise QuarryEvalError(f"{describe(value)} cannot be negated")


def split_string(s: str, separator: str) -> List[str]:
    """Split a string; an empty input gives an empty array."""
    if s == "":
        return []

    if separator == "":
        return list(s)

    return s.split(separator)


def length(value: Any) -> Any:
    """Implement the `length` builtin."""
    if value is None:
        return 0

    if isinstance(value, bool):
        raise QuarryEvalError(f"{describe(value)} has no length")

    if is_number(value):
        return abs(value)

    if isinstance(value, (str, list, dict)):
        return len(value)

    raise QuarryEvalError(f"{describe(value)} has no length")


def keys(value: Any, sort: bool = True) -> List[Any]:
    """Implement `keys` and `keys_unsorted`."""
    if isinstance(value, dict):
        return sorted(value.keys()) if sort else list(value.keys())

    if isinstance(value, list):
        return list(range(len(value)))

    raise QuarryEvalError(f"{describe(value)} has no keys")


def has_key(value: Any, key: Any) -> bool:
    """Implement `has(key)`."""
    if isinstance(value, dict) and isinstance(key, str):
        return key in value

    if isinstance(value, list) and is_number(key):
        return 0 <= key < len(value)

    raise QuarryEvalError(f"Cannot check whether {type_name(value)} has a {type_name(key)} key")


def contains(a: Any, b: Any) -> bool:
    """Implement `contains(b)`."""
    if isinstance(a, dict) and isinstance(b, dict):
        return all(key in a and contains(a[key], value) for key, value in b.items())

    if isinstance(a, list) and isinstance(b, list):
        return all(any(contains(x, y) for x in a) for y in b)

    if isinstance(a, str) and isinstance(b, str):
        return b in a

    if type_name(a) == type_name(b):
        return equals(a, b)

    raise QuarryEvalError(f"{describe(a)} and {describe(b)} cannot have their containment checked")


def _index_description(key: Any) -> str:
    if isinstance(key, str):
        return json.dumps(key, ensure_ascii=False)

    return type_name(key)


def _array_position(array_length: int, key: Any) -> int | None:
    """Resolve a (possibly negative or fractional) array index, None if out of range."""
    if not _is_finite(key):
        return None

    position = math.floor(key)
    if position < 0:
        position += array_length

    if 0 <= position < array_length:
        return position

    return None


def _subarray_indices(haystack: List[Any], needle: List[Any]) -> List[int]:
    if not needle:
        return []

    width = len(needle)
    return [
        i for i in range(len(haystack) - width + 1)
        if all(equals(haystack[i + j], needle[j]) for j in range(width))
    ]


def index(value: Any, key: Any) -> Any:
    """Implement `.[key]`."""
    if isinstance(value, dict) and isinstance(key, str):
        return value.get(key)

    if isinstance(value, list) and is_number(key):
        if isinstance(key, float) and math.isnan(key):
            return None

        position = _array_position(len(value), key)
        return None if position is None else value[position]

    if isinstance(value, list) and isinstance(key, list):
        return _subarray_indices(value, key)

    if isinstance(value, (list, str)) and isinstance(key, dict) and set(key.keys()) <= {"start", "end"}:
        return slice_value(value, key.get("start"), key.get("end"))

    if value is None and (key is None or isinstance(key, str) or is_number(key)):
        return None

    raise QuarryEvalError(f"Cannot index {type_name(value)} with {_index_description(key)}")


def _slice_index(size: int, bound: Any, to_int: Any) -> int:
    if _is_finite(bound):
        return to_int(bound)

    # nan counts as 0; infinities lie beyond either end
    if _is_nan(bound):
        return 0

    return size if bound > 0 else -size


def _slice_bounds(size: int, start: Any, end: Any) -> Tuple[int, int]:
    if start is None:
        start = 0

    if end is None:
        end = size

    if not is_number(start) or not is_number(end):
        raise QuarryEvalError("Start and end indices of an array slice must be numbers")

    start = _slice_index(size, start, math.floor)
    end = _slice_index(size, end, math.ceil)
    if start < 0:
        start += size

    if end < 0:
        end += size

    start = min(max(start, 0), size)
    end = min(max(end, start), size)
    return start, end


def slice_value(value: Any, start: Any, end: Any) -> Any:
    """Implement `.[start:end]`."""
    if value is None:
        return None

    if isinstance(value, (list, str)):
        lo, hi = _slice_bounds(len(value), start, end)
        return value[lo:hi]

    raise QuarryEvalError(f"Cannot index {type_name(value)} with object")


def iterate(value: Any) -> Iterator[Any]:
    """Implement `.[]` over array elements or object values."""
    if isinstance(value, list):
        return iter(value)

    if isinstance(value, dict):
        return iter(value.values())

    raise QuarryEvalError(f"Cannot iterate over {describe(value)}")


def iterate_with_keys(value: Any) -> Iterator[Tuple[Any, Any]]:
    """Like iterate(), but yielding (key or index, value) pairs."""
    if isinstance(value, list):
        return enumerate(value)

    if isinstance(value, dict):
        return iter(value.items())

    raise QuarryEvalError(f"Cannot iterate over {describe(value)}")


def slice_step(start: Any, end: Any) -> Dict[str, Any]:
    """Build the path step describing a slice."""
    return {"start": start, "end": end}


def _is_slice_step(step: Any) -> bool:
    return isinstance(step, dict) and set(step.keys()) <= {"start", "end"}


def get_path(value: Any, path: Sequence[Any]) -> Any:
    """Implement `getpath(path)`; missing parts of the path give null."""
    for step in path:
        if value is None:
            return None

        value = index(value, step)

    return value


def set_path(value: Any, path: Sequence[Any], new_value: Any) -> Any:
    """Implement `setpath(path; new_value)`, creating containers as needed."""
    if not path:
        return new_value

    step = path[0]
    rest = path[1:]

    if isinstance(step, str):
        if value is None:
            value = {}

        if not isinstance(value, dict):
            raise QuarryEvalError(f"Cannot index {type_name(value)} with {_index_description(step)}")

        result = dict(value)
        result[step] = set_path(value.get(step), rest, new_value)
        return result

    if is_number(step):
        if value is None:
            value = []

        if not isinstance(value, list):
            raise QuarryEvalError(f"Cannot index {type_name(value)} with number")

        if not _is_finite(step) or step > _MAX_ARRAY_INDEX:
            raise QuarryEvalError("Array index too large", received=to_json(step))

        position = math.floor(step)
        if position < 0:
            position += len(value)
            if position < 0:
                raise QuarryEvalError("Out of bounds negative array index")

        result = list(value)
        if position >= len(result):
            result.extend([None] * (position - len(result) + 1))

        result[position] = set_path(result[position], rest, new_value)
        return result

    if _is_slice_step(step):
        if value is None:
            value = []

        if not isinstance(value, list):
            raise QuarryEvalError(f"Cannot update field at object index of {type_name(value)}")

        lo, hi = _slice_bounds(len(value), step.get("start"), step.get("end"))
        replacement = set_path(value[lo:hi], rest, new_value)
        if not isinstance(replacement, list):
            raise QuarryEvalError("A slice of an array can only be assigned another array")

        return value[:lo] + replacement + value[hi:]

    raise QuarryEvalError(f"Invalid path component {describe(step)}")


def _delete_path(value: Any, path: Sequence[Any]) -> Any:
    if not path:
        return None

    if value is None:
        return None

    step = path[0]
    if len(path) > 1:
        child = index(value, step)
        if child is None:
            return value

        return set_path(value, [step], _delete_path(child, path[1:]))

    if isinstance(step, str):
        if not isinstance(value, dict):
            raise QuarryEvalError(f"Cannot delete field at object index of {type_name(value)}")

        return {k: v for k, v in value.items() if k != step}

    if is_number(step):
        if not isinstance(value, list):
            raise QuarryEvalError(f"Cannot delete field at index of {type_name(value)}")

        position = _array_position(len(value), step)
        if position is None:
            return value

        return value[:position] + value[position + 1:]

    if _is_slice_step(step):
        if not isinstance(value, list):
            raise QuarryEvalError(f"Cannot delete slice of {type_name(value)}")

        lo, hi = _slice_bounds(len(value), step.get("start"), step.get("end"))
        return value[:lo] + value[hi:]

    raise QuarryEvalError(f"Invalid path component {describe(step)}")


def delete_paths(value: Any, paths: Sequence[Sequence[Any]]) -> Any:
    """
    Implement `delpaths(paths)`.

    Paths are removed from the greatest to the least so that deleting one array
    element does not shift the positions named by the remaining paths.
    """
    for path in sorted(paths, key=lambda p: compare_key(list(p)), reverse=True):
        if not isinstance(path, (list, tuple)):
            raise QuarryEvalError(f"Path must be specified as an array, not {type_name(path)}")

        value = _delete_path(value, list(path))

    return value


def _in_range(verb: str, operator: Callable[[Any, Any], Any]) -> Callable[[Any, Any], Any]:
    """Report integers too large for a float as an evaluation error."""
    def apply(a: Any, b: Any) -> Any:
        try:
            return operator(a, b)

        except OverflowError as e:
            raise QuarryEvalError(
                f"{describe(a)} and {describe(b)} cannot be {verb} because the result is out of range"
            ) from e

    return apply


MATH_OPERATORS = {
    '+': _in_range('added', add),
    '-': _in_range('subtracted', subtract),
    '*': _in_range('multiplied', multiply),
    '/': _in_range('divided', divide),
    '%': _in_range('divided', modulo),
}
