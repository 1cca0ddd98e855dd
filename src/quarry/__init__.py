"""Quarry: a jq-style filter engine with lazy, backtracking evaluation."""

# Main API
from quarry.quarry import Quarry

# Exceptions and error elements
from quarry.quarry_error import (
    QuarryError, QuarryTokenError, QuarryParseError, QuarryCompileError, QuarryCompileFailure,
    QuarryEvalError, QuarryPathError, ErrorMessageBuilder
)

# Compilation pipeline (for advanced usage)
from quarry.quarry_token import QuarryToken, QuarryTokenType
from quarry.quarry_lexer import QuarryLexer
from quarry.quarry_parser import QuarryParser
from quarry.quarry_definitions import QuarryDefinitions
from quarry.quarry_filter import QuarryFilter, QuarryNative, QuarryContext
from quarry.quarry_natives import QuarryNatives
from quarry.quarry_std import QUARRY_STD

# Runtime support
from quarry.quarry_evaluator import QuarryEvaluator
from quarry.quarry_environment import QuarryEnvironment
from quarry.quarry_lazy_list import QuarryLazyList
from quarry.quarry_shared_iterator import QuarrySharedIterator


__all__ = [
    # Main API
    "Quarry",

    # Exceptions
    "QuarryError", "QuarryTokenError", "QuarryParseError", "QuarryCompileError", "QuarryCompileFailure",
    "QuarryEvalError", "QuarryPathError", "ErrorMessageBuilder",

    # Compilation pipeline
    "QuarryToken", "QuarryTokenType", "QuarryLexer", "QuarryParser", "QuarryDefinitions",
    "QuarryFilter", "QuarryNative", "QuarryContext", "QuarryNatives", "QUARRY_STD",

    # Runtime support
    "QuarryEvaluator", "QuarryEnvironment", "QuarryLazyList", "QuarrySharedIterator"
]
