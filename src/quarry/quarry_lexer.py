"""Lexer for Quarry filters with detailed error messages."""

from typing import List, Tuple

from quarry.quarry_error import QuarryTokenError
from quarry.quarry_token import KEYWORDS, OPERATORS, QuarryToken, QuarryTokenType


_SINGLE_CHAR_TOKENS = {
    '(': QuarryTokenType.LPAREN,
    ')': QuarryTokenType.RPAREN,
    '[': QuarryTokenType.LBRACKET,
    ']': QuarryTokenType.RBRACKET,
    '{': QuarryTokenType.LBRACE,
    '}': QuarryTokenType.RBRACE,
    ',': QuarryTokenType.COMMA,
    ':': QuarryTokenType.COLON,
    ';': QuarryTokenType.SEMICOLON,
    '?': QuarryTokenType.QUESTION,
}

_SIMPLE_ESCAPES = {
    '"': '"',
    '\\': '\\',
    '/': '/',
    'b': '\b',
    'f': '\f',
    'n': '\n',
    'r': '\r',
    't': '\t',
}


def _is_identifier_start(char: str) -> bool:
    return char.isalpha() or char == '_'


def _is_identifier_char(char: str) -> bool:
    return char.isalnum() or char == '_'


class QuarryLexer:
    """Lexes Quarry filter text into tokens."""

    def __init__(self) -> None:
        self._text = ""
        self._pos = 0
        self._line = 1
        self._column = 1

    def lex(self, text: str) -> List[QuarryToken]:
        """
        Lex filter text.

        Args:
            text: The filter source to lex

        Returns:
            List of tokens, terminated by an EOF token

        Raises:
            QuarryTokenError: If the text contains something that is not a token
        """
        self._text = text
        self._pos = 0
        self._line = 1
        self._column = 1
        return self._lex_tokens(inside_interpolation=False)

    def _error(self, message: str, **kwargs: str) -> QuarryTokenError:
        return QuarryTokenError(message=message, line=self._line, column=self._column, source=self._text, **kwargs)

    def _advance(self, count: int = 1) -> None:
        for _ in range(count):
            if self._text[self._pos] == '\n':
                self._line += 1
                self._column = 1

            else:
                self._column += 1

            self._pos += 1

    def _peek(self, offset: int = 0) -> str:
        index = self._pos + offset
        return self._text[index] if index < len(self._text) else ""

    def _lex_tokens(self, inside_interpolation: bool) -> List[QuarryToken]:
        """Lex until end of input, or until the `)` closing a string interpolation."""
        tokens: List[QuarryToken] = []
        depth = 0

        while self._pos < len(self._text):
            char = self._text[self._pos]

            if char.isspace():
                self._advance()
                continue

            # Comments run to the end of the line
            if char == '#':
                while self._pos < len(self._text) and self._text[self._pos] != '\n':
                    self._advance()

                continue

            line, column = self._line, self._column

            if char == '"':
                parts = self._read_string()
                tokens.append(QuarryToken(QuarryTokenType.STRING, parts, line, column))
                continue

            if char == '.':
                tokens.append(self._read_dot(line, column))
                continue

            if char == '$':
                self._advance()
                if not _is_identifier_start(self._peek()):
                    raise self._error(
                        "Expected a variable name after '$'",
                        example="reduce .[] as $item (0; . + $item)"
                    )

                name = self._read_identifier()
                tokens.append(QuarryToken(QuarryTokenType.VARIABLE, name, line, column))
                continue

            if char.isdigit():
                tokens.append(QuarryToken(QuarryTokenType.NUMBER, self._read_number(), line, column))
                continue

            if _is_identifier_start(char):
                name = self._read_identifier()
                token_type = QuarryTokenType.KEYWORD if name in KEYWORDS else QuarryTokenType.IDENTIFIER
                tokens.append(QuarryToken(token_type, name, line, column))
                continue

            if char == '|' and self._peek(1) != '=':
                self._advance()
                tokens.append(QuarryToken(QuarryTokenType.PIPE, '|', line, column))
                continue

            if char in _SINGLE_CHAR_TOKENS:
                if inside_interpolation and char == ')':
                    if depth == 0:
                        self._advance()
                        tokens.append(QuarryToken(QuarryTokenType.EOF, None, line, column))
                        return tokens

                    depth -= 1

                elif inside_interpolation and char == '(':
                    depth += 1

                self._advance()
                tokens.append(QuarryToken(_SINGLE_CHAR_TOKENS[char], char, line, column))
                continue

            operator = self._match_operator()
            if operator is not None:
                self._advance(len(operator))
                tokens.append(QuarryToken(QuarryTokenType.OPERATOR, operator, line, column))
                continue

            if char == '@':
                raise self._error(
                    "Format strings are not supported",
                    received=f"Found: {self._text[self._pos:self._pos + 10]}",
                    suggestion="Use tostring or tojson instead"
                )

            raise self._error(
                f"Unexpected character: {char!r}",
                received=f"Character: {char!r}",
                expected="A filter, operator, literal or punctuation"
            )

        if inside_interpolation:
            raise self._error(
                "Unterminated string interpolation",
                expected="')' closing the interpolation",
                example='"total: \\(.a + .b)"'
            )

        tokens.append(QuarryToken(QuarryTokenType.EOF, None, self._line, self._column))
        return tokens

    def _match_operator(self) -> str | None:
        for operator in OPERATORS:
            if self._text.startswith(operator, self._pos):
                return operator

        return None

    def _read_dot(self, line: int, column: int) -> QuarryToken:
        if self._peek(1) == '.':
            self._advance(2)
            return QuarryToken(QuarryTokenType.DOT_DOT, '..', line, column)

        self._advance()
        if _is_identifier_start(self._peek()):
            name = self._read_identifier()
            return QuarryToken(QuarryTokenType.FIELD, name, line, column)

        return QuarryToken(QuarryTokenType.DOT, '.', line, column)

    def _read_identifier(self) -> str:
        start = self._pos
        while self._pos < len(self._text) and _is_identifier_char(self._text[self._pos]):
            self._advance()

        return self._text[start:self._pos]

    def _read_number(self) -> int | float:
        start = self._pos
        while self._peek().isdigit():
            self._advance()

        is_float = False
        if self._peek() == '.' and self._peek(1).isdigit():
            is_float = True
            self._advance()
            while self._peek().isdigit():
                self._advance()

        if self._peek() in ('e', 'E'):
            offset = 2 if self._peek(1) in ('+', '-') else 1
            if self._peek(offset).isdigit():
                is_float = True
                self._advance(offset)
                while self._peek().isdigit():
                    self._advance()

        text = self._text[start:self._pos]
        return float(text) if is_float else int(text)

    def _read_unicode_escape(self) -> Tuple[str, int]:
        """Read the four hex digits after '\\u'; returns (character code text, code point)."""
        digits = self._text[self._pos:self._pos + 4]
        if len(digits) < 4 or any(c not in "0123456789abcdefABCDEF" for c in digits):
            raise self._error(
                f"Invalid Unicode escape: \\u{digits}",
                expected="Four hexadecimal digits after \\u",
                example='"\\u00e9"'
            )

        self._advance(4)
        return digits, int(digits, 16)

    def _read_string(self) -> Tuple[object, ...]:
        """Read a string literal starting at the opening quote; returns its parts."""
        start_line, start_column = self._line, self._column
        self._advance()
        parts: List[object] = []
        chunk: List[str] = []

        while True:
            if self._pos >= len(self._text):
                raise QuarryTokenError(
                    message="Unterminated string literal",
                    line=start_line,
                    column=start_column,
                    source=self._text,
                    expected="Closing quote \" at end of string",
                    suggestion="Add closing quote \" at the end of the string"
                )

            char = self._text[self._pos]
            if char == '"':
                self._advance()
                break

            if char != '\\':
                chunk.append(char)
                self._advance()
                continue

            escape = self._peek(1)
            if escape in _SIMPLE_ESCAPES:
                chunk.append(_SIMPLE_ESCAPES[escape])
                self._advance(2)
                continue

            if escape == 'u':
                self._advance(2)
                _, code = self._read_unicode_escape()
                if 0xD800 <= code < 0xDC00 and self._peek() == '\\' and self._peek(1) == 'u':
                    self._advance(2)
                    _, low = self._read_unicode_escape()
                    code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)

                chunk.append(chr(code))
                continue

            if escape == '(':
                self._advance(2)
                if chunk:
                    parts.append("".join(chunk))
                    chunk = []

                parts.append(self._lex_tokens(inside_interpolation=True))
                continue

            raise self._error(
                f"Invalid escape sequence: \\{escape}",
                expected="Valid escape: \\n, \\t, \\r, \\b, \\f, \\\", \\\\, \\/, \\uXXXX or \\(...)",
                suggestion="Use a valid escape sequence or remove the backslash"
            )

        if chunk or not parts:
            parts.append("".join(chunk))

        return tuple(parts)
