"""Tests for the Quarry lexer."""

import pytest

from quarry import QuarryLexer, QuarryTokenError, QuarryTokenType


def token_types(text):
    return [token.type for token in QuarryLexer().lex(text)]


class TestQuarryLexer:
    """Test tokenization of filter text."""

    def test_paths(self):
        """Test dots, fields and recursive descent."""
        tokens = QuarryLexer().lex(". .foo ..")
        assert [t.type for t in tokens] == [
            QuarryTokenType.DOT, QuarryTokenType.FIELD, QuarryTokenType.DOT_DOT, QuarryTokenType.EOF
        ]
        assert tokens[1].value == "foo"

    def test_variables_keywords_and_identifiers(self):
        """Test that keywords are distinguished from filter names."""
        tokens = QuarryLexer().lex("reduce $x map")
        assert [(t.type, t.value) for t in tokens[:-1]] == [
            (QuarryTokenType.KEYWORD, "reduce"),
            (QuarryTokenType.VARIABLE, "x"),
            (QuarryTokenType.IDENTIFIER, "map"),
        ]

    def test_numbers(self):
        """Test integer and floating point literals."""
        tokens = QuarryLexer().lex("42 1.5 2e3")
        assert [t.value for t in tokens[:-1]] == [42, 1.5, 2000.0]
        assert isinstance(tokens[0].value, int)

    def test_operators_match_greedily(self):
        """Test that the longest operator wins and `|=` is not a pipe."""
        tokens = QuarryLexer().lex("//= // |= | ==")
        assert [t.value for t in tokens[:-1]] == ["//=", "//", "|=", "|", "=="]
        assert tokens[3].type == QuarryTokenType.PIPE

    def test_comments_are_skipped(self):
        """Test that comments run to the end of the line."""
        assert token_types("1 # a comment\n+ 2") == [
            QuarryTokenType.NUMBER, QuarryTokenType.OPERATOR, QuarryTokenType.NUMBER, QuarryTokenType.EOF
        ]

    def test_string_escapes(self):
        """Test escapes, including a surrogate pair."""
        tokens = QuarryLexer().lex(r'"a\n\"b\" \u00e9 \ud83d\ude00"')
        assert tokens[0].value == ('a\n"b" é 😀',)

    def test_string_interpolation(self):
        """Test that an interpolation holds its own token list."""
        tokens = QuarryLexer().lex(r'"x=\(.a + (1)) done"')
        parts = tokens[0].value
        assert parts[0] == "x="
        assert [t.type for t in parts[1]] == [
            QuarryTokenType.FIELD, QuarryTokenType.OPERATOR, QuarryTokenType.LPAREN,
            QuarryTokenType.NUMBER, QuarryTokenType.RPAREN, QuarryTokenType.EOF
        ]
        assert parts[2] == " done"

    def test_positions(self):
        """Test line and column tracking."""
        tokens = QuarryLexer().lex(".a |\n  .b")
        assert (tokens[2].line, tokens[2].column) == (2, 3)

    def test_unterminated_string(self):
        """Test the error for a missing closing quote."""
        with pytest.raises(QuarryTokenError, match="Unterminated string"):
            QuarryLexer().lex('"abc')

    def test_format_strings_are_rejected(self):
        """Test that @formats are reported as unsupported."""
        with pytest.raises(QuarryTokenError, match="Format strings are not supported"):
            QuarryLexer().lex("@base64")

    def test_unexpected_character(self):
        """Test the error for a character outside the language."""
        with pytest.raises(QuarryTokenError, match="Unexpected character"):
            QuarryLexer().lex(". ^ .")
