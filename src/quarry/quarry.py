"""Main Quarry class: compiles and runs jq-style filters."""

from typing import Any, Iterable, Iterator, List, Sequence, Tuple

from quarry.quarry_ast import QuarryASTDef, QuarryASTNode
from quarry.quarry_definitions import QuarryDefinitions
from quarry.quarry_error import QuarryCompileError, QuarryCompileFailure, QuarryEvalError
from quarry.quarry_filter import QuarryFilter
from quarry.quarry_lexer import QuarryLexer
from quarry.quarry_parser import QuarryParser
from quarry.quarry_std import QUARRY_STD


class Quarry:
    """
    Quarry filter engine.

    Filters are written in a jq-style language and run against plain Python JSON
    data.  Compilation problems are reported together, with suggestions for
    misspelt names, and run-time errors arrive as elements of the output stream.
    """

    def __init__(self, global_vars: Sequence[str] | None = None, include_std: bool = True):
        """
        Initialize Quarry.

        Args:
            global_vars: Names (without `$`) of variables supplied to every run
            include_std: Whether the standard library definitions are available
        """
        self.global_vars = list(global_vars or [])
        self.include_std = include_std
        self._std: List[QuarryASTDef] = []
        if include_std:
            self._std = QuarryParser(QuarryLexer().lex(QUARRY_STD), QUARRY_STD).parse_definitions()

    def parse(self, text: str) -> QuarryASTNode:
        """
        Parse filter text.

        Raises:
            QuarryTokenError: If the text cannot be lexed
            QuarryParseError: If the text cannot be parsed
        """
        return QuarryParser(QuarryLexer().lex(text), text).parse()

    def compile_with_errors(self, text: str) -> Tuple[QuarryFilter, List[QuarryCompileError]]:
        """
        Compile filter text, collecting rather than raising compile errors.

        Args:
            text: Filter text

        Returns:
            The compiled filter and the list of compile errors; when the list is
            non-empty the filter is the identity filter

        Raises:
            QuarryTokenError: If the text cannot be lexed
            QuarryParseError: If the text cannot be parsed
        """
        body = self.parse(text)

        errs: List[QuarryCompileError] = []
        definitions = QuarryDefinitions(self.global_vars)
        definitions.insert_core()
        definitions.insert_definitions(self._std, errs)
        compiled = definitions.finish(body, errs)
        return compiled, errs

    def compile(self, text: str) -> QuarryFilter:
        """
        Compile filter text.

        Raises:
            QuarryTokenError: If the text cannot be lexed
            QuarryParseError: If the text cannot be parsed
            QuarryCompileFailure: If names, arities, variables or paths are invalid
        """
        compiled, errs = self.compile_with_errors(text)
        if errs:
            raise QuarryCompileFailure(errs)

        return compiled

    def run(self, text: str, value: Any, variables: Iterable[Any] = (), inputs: Any = ()) -> Iterator[Any]:
        """
        Compile filter text and run it against value.

        Args:
            text: Filter text
            value: Input value
            variables: Values of the global variables, in declaration order
            inputs: Values handed out by `input` and `inputs`

        Returns:
            Lazy stream of output values and QuarryEvalError elements
        """
        return self.compile(text).run(variables, inputs, value)

    def evaluate(self, text: str, value: Any, variables: Iterable[Any] = (), inputs: Any = ()) -> List[Any]:
        """
        Compile filter text, run it against value and collect every output.

        Raises:
            QuarryEvalError: The first error element produced by the filter
        """
        results = []
        for item in self.run(text, value, variables, inputs):
            if isinstance(item, QuarryEvalError):
                raise item

            results.append(item)

        return results
