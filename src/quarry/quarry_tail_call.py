"""
Tail calls between combinator streams.

A combinator that would pass every element of a sub-stream on unchanged yields
a QuarryTailCall instead of nesting that sub-stream inside its own generator.
The driver below keeps suspended streams on an explicit stack, so the depth of
Python frames does not grow with the depth of recursive filter calls.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterator, List

from quarry.quarry_error import QuarryEvalError
from quarry.quarry_filter import QuarryContext, QuarryFilterNode


@dataclass(frozen=True)
class QuarryTailCall:
    """Request to splice the stream of node, run on input, into the current stream."""
    node: QuarryFilterNode
    ctx: QuarryContext
    input: Any


def _recursion_error() -> QuarryEvalError:
    return QuarryEvalError(
        "Maximum recursion depth exceeded",
        suggestion="Recursive calls outside tail position (as in `f | .` or `[f]`) are limited in depth"
    )


def run_with_tail_calls(
    start: Callable[[QuarryFilterNode, QuarryContext, Any], Iterator[Any]],
    node: QuarryFilterNode,
    ctx: QuarryContext,
    value: Any
) -> Iterator[Any]:
    """
    Run a combinator, splicing in the streams of the tail calls it makes.

    Each stacked stream behaves as if it had been run on its own: an error it
    raises becomes one error element that ends that stream only, and the stream
    below it carries on.

    Args:
        start: Creates the stream of a combinator for an input
        node: Combinator to run
        ctx: Evaluation context
        value: Input

    Returns:
        Lazy stream of elements, free of QuarryTailCall requests
    """
    stack: List[Iterator[Any]] = []
    call: QuarryTailCall | None = QuarryTailCall(node, ctx, value)
    while True:
        if call is not None:
            try:
                stack.append(start(call.node, call.ctx, call.input))

            except QuarryEvalError as e:
                yield e

            except RecursionError:
                yield _recursion_error()

            call = None

        if not stack:
            return

        try:
            item = next(stack[-1])

        except StopIteration:
            stack.pop()
            continue

        except QuarryEvalError as e:
            stack.pop()
            yield e
            continue

        except RecursionError:
            stack.pop()
            yield _recursion_error()
            continue

        if isinstance(item, QuarryTailCall):
            call = item
            continue

        yield item
