"""Exception classes for Quarry with detailed context."""

import difflib
from typing import Any, Iterator, List


class QuarryError(Exception):
    """Base exception for Quarry errors with detailed context information."""

    def __init__(
        self,
        message: str,
        context: str | None = None,
        expected: str | None = None,
        received: str | None = None,
        suggestion: str | None = None,
        example: str | None = None,
        line: int | None = None,
        column: int | None = None,
        source: str | None = None
    ):
        """
        Initialize detailed error.

        Args:
            message: Core error description
            context: Additional context information
            expected: What was expected
            received: What was actually received
            suggestion: Suggestion for fixing the error
            example: Example of correct usage
            line: Line number (1-indexed)
            column: Column number (1-indexed)
            source: Source text for context display
        """
        self.message = message
        self.context = context
        self.expected = expected
        self.received = received
        self.suggestion = suggestion
        self.example = example
        self.line = line
        self.column = column
        self.source = source

        super().__init__(self._format_detailed_message())

    def _format_source_line(self) -> str | None:
        """Format the offending source line with a column marker."""
        if self.source is None or self.line is None:
            return None

        lines = self.source.split('\n')
        if not 1 <= self.line <= len(lines):
            return None

        prefix = f"  {self.line}: "
        result = prefix + lines[self.line - 1]
        if self.column is not None:
            result += "\n" + " " * (len(prefix) + self.column - 1) + "^"

        return result

    def _format_detailed_message(self) -> str:
        """Format the error message with all available details."""
        parts = [f"Error: {self.message}"]

        if self.line is not None and self.column is not None:
            parts.append(f"Location: Line {self.line}, Column {self.column}")

        source_line = self._format_source_line()
        if source_line is not None:
            parts.append(f"\nSource Context:\n{source_line}")

        if self.received:
            parts.append(f"Received: {self.received}")

        if self.expected:
            parts.append(f"Expected: {self.expected}")

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")

        if self.example:
            parts.append(f"Example: {self.example}")

        return "\n".join(parts)


class QuarryTokenError(QuarryError):
    """Tokenization errors with detailed context."""


class QuarryParseError(QuarryError):
    """Parsing errors with detailed context."""


class QuarryCompileError(QuarryError):
    """
    A problem found while resolving or lowering a filter.

    Compile errors are collected into a caller-supplied list rather than raised,
    so that a single compilation attempt can report every problem it finds.
    """

    UNDEFINED_FILTER = "undefined filter"
    ARITY = "arity"
    UNBOUND_VARIABLE = "unbound variable"
    INVALID_PATH = "invalid path expression"
    RECURSIVE_ARGUMENT = "recursive filter argument"

    def __init__(self, kind: str, message: str, name: str | None = None, arity: int | None = None, **kwargs: Any):
        """
        Initialize compile error.

        Args:
            kind: One of the class-level kind constants
            message: Core error description
            name: Filter or variable name involved, if any
            arity: Arity of the offending call, if any
            **kwargs: Additional error context
        """
        self.kind = kind
        self.name = name
        self.arity = arity
        super().__init__(message, **kwargs)


class QuarryCompileFailure(QuarryError):
    """Raised by the facade when compilation produced one or more errors."""

    def __init__(self, errors: List[QuarryCompileError]):
        self.errors = list(errors)
        summary = "; ".join(e.message for e in self.errors)
        super().__init__(
            message=f"Compilation failed with {len(self.errors)} error(s): {summary}",
            suggestion="Fix the reported names, arities or variables and compile again"
        )


class QuarryEvalError(QuarryError):
    """
    Run-time error element.

    Instances are yielded inside output streams in place of a value.  The optional
    payload is the value given to `error(v)`; `catch` handlers receive `as_value()`.
    """

    _NO_VALUE = object()

    def __init__(self, message: str | None = None, value: Any = _NO_VALUE, **kwargs: Any):
        """
        Initialize evaluation error.

        Args:
            message: Error description (derived from the payload if omitted)
            value: Payload value raised by the filter program, if any
            **kwargs: Additional error context
        """
        self._value = value
        if message is None:
            message = self._describe_payload(value)

        super().__init__(message, **kwargs)

    @staticmethod
    def _describe_payload(value: Any) -> str:
        if value is QuarryEvalError._NO_VALUE:
            return "error"

        if isinstance(value, str):
            return value

        # Imported here to keep the error module free of value-layer dependencies
        from quarry.quarry_value import to_json  # pylint: disable=import-outside-toplevel
        return f"{to_json(value)} (not a string)"

    def has_value(self) -> bool:
        """Return True if this error carries an explicit payload."""
        return self._value is not QuarryEvalError._NO_VALUE

    def as_value(self) -> Any:
        """Return the value a `catch` handler sees for this error."""
        if self.has_value():
            return self._value

        return self.message

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, QuarryEvalError):
            return NotImplemented

        return type(self) is type(other) and self.as_value() == other.as_value()

    def __hash__(self) -> int:
        return hash(type(self).__name__)


class QuarryPathError(QuarryEvalError):
    """Run-time failure to interpret an expression as a path."""


class ErrorMessageBuilder:
    """Helper class for building detailed error messages."""

    @staticmethod
    def suggest_similar_names(target: str, available: List[str], max_suggestions: int = 3) -> List[str]:
        """Suggest similar names using fuzzy matching."""
        if not target or not available:
            return []

        return difflib.get_close_matches(target, available, n=max_suggestions, cutoff=0.6)

    @staticmethod
    def format_suggestion(target: str, available: List[str]) -> str | None:
        """Build a 'Did you mean' suggestion string, or None if nothing is close."""
        matches = ErrorMessageBuilder.suggest_similar_names(target, available)
        if not matches:
            return None

        return "Did you mean " + " or ".join(f"'{m}'" for m in matches) + "?"


def check(item: Any) -> Any:
    """Return a stream element, raising it instead if it is an error."""
    if isinstance(item, QuarryEvalError):
        raise item

    return item


def suppress_errors(stream: Iterator[Any]) -> Iterator[Any]:
    """Pass values through until the stream fails, then stop quietly."""
    try:
        for item in stream:
            if isinstance(item, QuarryEvalError):
                return

            yield item

    except QuarryEvalError:
        return
