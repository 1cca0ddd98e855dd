"""Token types and token representation for Quarry filters."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class QuarryTokenType(Enum):
    """Token types for Quarry filters."""
    DOT = "."
    DOT_DOT = ".."
    FIELD = "FIELD"
    IDENTIFIER = "IDENTIFIER"
    KEYWORD = "KEYWORD"
    VARIABLE = "VARIABLE"
    NUMBER = "NUMBER"
    STRING = "STRING"
    OPERATOR = "OPERATOR"
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    LBRACE = "{"
    RBRACE = "}"
    PIPE = "|"
    COMMA = ","
    COLON = ":"
    SEMICOLON = ";"
    QUESTION = "?"
    EOF = "EOF"


# Reserved words; anything else that looks like an identifier names a filter
KEYWORDS = frozenset({
    'def', 'as', 'if', 'then', 'elif', 'else', 'end', 'reduce', 'foreach',
    'try', 'catch', 'and', 'or', 'label', 'import', 'include', '__loc__',
})

# Longest operators first so that the lexer can match greedily
OPERATORS = (
    '//=', '|=', '+=', '-=', '*=', '/=', '%=', '==', '!=', '<=', '>=', '//',
    '=', '<', '>', '+', '-', '*', '/', '%',
)


@dataclass
class QuarryToken:
    """
    Represents a single token in a Quarry filter.

    For STRING tokens the value is a tuple of parts: plain str chunks and, for each
    `\\(...)` interpolation, the list of tokens lexed from inside the parentheses.
    """
    type: QuarryTokenType
    value: Any
    line: int = 1
    column: int = 1

    def __repr__(self) -> str:
        return f"QuarryToken({self.type.name}, {self.value!r}, line={self.line}, col={self.column})"
