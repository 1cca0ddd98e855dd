"""Recursive-descent parser for Quarry filters with detailed error messages."""

from dataclasses import replace
from typing import Callable, List, Tuple

from quarry.quarry_ast import (
    QuarryASTNode, QuarryASTIdentity, QuarryASTRecurseAll, QuarryASTLiteral, QuarryASTIndex,
    QuarryASTSlice, QuarryASTIterate, QuarryASTPath, QuarryASTArray, QuarryASTObject, QuarryASTNeg,
    QuarryASTPipe, QuarryASTComma, QuarryASTBinaryOp, QuarryASTLogic, QuarryASTAlternative,
    QuarryASTUpdate, QuarryASTIf, QuarryASTTry, QuarryASTBind, QuarryASTReduce, QuarryASTForeach,
    QuarryASTVariable, QuarryASTCall, QuarryASTDef, QuarryASTLocalDef
)
from quarry.quarry_error import QuarryParseError
from quarry.quarry_token import QuarryToken, QuarryTokenType


ASSIGNMENT_OPERATORS = frozenset({'=', '|=', '+=', '-=', '*=', '/=', '%=', '//='})
COMPARISON_OPERATORS = frozenset({'==', '!=', '<', '<=', '>', '>='})
ADDITIVE_OPERATORS = frozenset({'+', '-'})
MULTIPLICATIVE_OPERATORS = frozenset({'*', '/', '%'})

# Identifiers that denote constants rather than filter calls
_CONSTANTS = {'null': None, 'true': True, 'false': False}


class QuarryParser:
    """
    Parses Quarry tokens into an AST.

    Operator precedence, loosest first: `|`, `,`, `//`, assignment operators,
    `or`, `and`, comparisons, `+ -`, `* / %`, unary minus, then postfix path
    steps and `?`.  `def` and `term as $x | body` extend as far right as
    possible, as in jq.
    """

    def __init__(self, tokens: List[QuarryToken], source: str = ""):
        """
        Initialize parser with tokens and the original filter text.

        Args:
            tokens: List of tokens to parse, terminated by an EOF token
            source: Original filter text for error context
        """
        self.tokens = tokens
        self.pos = 0
        self.source = source

    @property
    def current_token(self) -> QuarryToken:
        return self.tokens[self.pos]

    def parse(self) -> QuarryASTNode:
        """
        Parse a complete filter (leading definitions followed by a body).

        Returns:
            Root AST node

        Raises:
            QuarryParseError: If parsing fails
        """
        if self.current_token.type == QuarryTokenType.EOF:
            raise self._error(
                "Empty filter",
                expected="A filter expression",
                example=". or .name or map(. + 1)",
                suggestion="Use '.' to pass the input through unchanged"
            )

        node = self._parse_pipe()
        self._expect_end()
        return node

    def parse_definitions(self) -> List[QuarryASTDef]:
        """
        Parse a library: a sequence of definitions with no body.

        Returns:
            The definitions in source order

        Raises:
            QuarryParseError: If parsing fails
        """
        definitions = []
        while self._is_keyword('def'):
            definitions.append(self._parse_def())

        self._expect_end()
        return definitions

    def _error(self, message: str, token: QuarryToken | None = None, **kwargs: str) -> QuarryParseError:
        token = token or self.current_token
        return QuarryParseError(message=message, line=token.line, column=token.column, source=self.source, **kwargs)

    def _describe(self, token: QuarryToken) -> str:
        if token.type == QuarryTokenType.EOF:
            return "end of input"

        if token.type == QuarryTokenType.STRING:
            return "string literal"

        return f"'{token.value}'"

    def _advance(self) -> QuarryToken:
        token = self.tokens[self.pos]
        if token.type != QuarryTokenType.EOF:
            self.pos += 1

        return token

    def _peek(self, offset: int = 1) -> QuarryToken:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def _check(self, token_type: QuarryTokenType) -> bool:
        return self.current_token.type == token_type

    def _is_keyword(self, word: str) -> bool:
        return self.current_token.type == QuarryTokenType.KEYWORD and self.current_token.value == word

    def _is_operator(self, operators: frozenset) -> bool:
        return self.current_token.type == QuarryTokenType.OPERATOR and self.current_token.value in operators

    def _expect(self, token_type: QuarryTokenType, context: str) -> QuarryToken:
        if not self._check(token_type):
            raise self._error(
                f"Expected '{token_type.value}' {context}",
                received=f"Found: {self._describe(self.current_token)}",
                expected=f"'{token_type.value}'"
            )

        return self._advance()

    def _expect_keyword(self, word: str, context: str, example: str | None = None) -> None:
        if not self._is_keyword(word):
            raise self._error(
                f"Expected '{word}' {context}",
                received=f"Found: {self._describe(self.current_token)}",
                expected=f"'{word}'",
                example=example
            )

        self._advance()

    def _expect_end(self) -> None:
        if self._check(QuarryTokenType.EOF):
            return

        raise self._error(
            f"Unexpected {self._describe(self.current_token)} after complete filter",
            received=f"Found: {self._describe(self.current_token)}",
            expected="End of filter",
            suggestion="Check for unbalanced brackets or a missing operator"
        )

    def _binary_left(
        self,
        operand: Callable[[], QuarryASTNode],
        operators: frozenset,
        build: Callable[[str, QuarryASTNode, QuarryASTNode, QuarryToken], QuarryASTNode]
    ) -> QuarryASTNode:
        """Parse a left-associative chain of operators."""
        lhs = operand()
        while self._is_operator(operators):
            token = self._advance()
            rhs = operand()
            lhs = build(token.value, lhs, rhs, token)

        return lhs

    def _parse_pipe(self) -> QuarryASTNode:
        lhs = self._parse_comma()
        if not self._check(QuarryTokenType.PIPE):
            return lhs

        token = self._advance()
        rhs = self._parse_pipe()
        return QuarryASTPipe(lhs, rhs, line=token.line, column=token.column)

    def _parse_comma(self) -> QuarryASTNode:
        lhs = self._parse_alternative()
        while self._check(QuarryTokenType.COMMA):
            token = self._advance()
            rhs = self._parse_alternative()
            lhs = QuarryASTComma(lhs, rhs, line=token.line, column=token.column)

        return lhs

    def _parse_alternative(self) -> QuarryASTNode:
        lhs = self._parse_assignment()
        if not self._is_operator(frozenset({'//'})):
            return lhs

        token = self._advance()
        rhs = self._parse_alternative()
        return QuarryASTAlternative(lhs, rhs, line=token.line, column=token.column)

    def _parse_assignment(self) -> QuarryASTNode:
        lhs = self._parse_or()
        if not self._is_operator(ASSIGNMENT_OPERATORS):
            return lhs

        token = self._advance()
        rhs = self._parse_or()
        if self._is_operator(ASSIGNMENT_OPERATORS):
            raise self._error(
                "Assignment operators cannot be chained",
                received=f"Found: {self._describe(self.current_token)}",
                suggestion="Use parentheses to group the assignments",
                example="(.a = 1) | .b = 2"
            )

        return QuarryASTUpdate(token.value, lhs, rhs, line=token.line, column=token.column)

    def _parse_or(self) -> QuarryASTNode:
        lhs = self._parse_and()
        while self._is_keyword('or'):
            token = self._advance()
            rhs = self._parse_and()
            lhs = QuarryASTLogic('or', lhs, rhs, line=token.line, column=token.column)

        return lhs

    def _parse_and(self) -> QuarryASTNode:
        lhs = self._parse_comparison()
        while self._is_keyword('and'):
            token = self._advance()
            rhs = self._parse_comparison()
            lhs = QuarryASTLogic('and', lhs, rhs, line=token.line, column=token.column)

        return lhs

    def _parse_comparison(self) -> QuarryASTNode:
        lhs = self._parse_additive()
        if not self._is_operator(COMPARISON_OPERATORS):
            return lhs

        token = self._advance()
        rhs = self._parse_additive()
        if self._is_operator(COMPARISON_OPERATORS):
            raise self._error(
                "Comparison operators cannot be chained",
                received=f"Found: {self._describe(self.current_token)}",
                example=".a < .b and .b < .c"
            )

        return QuarryASTBinaryOp(token.value, lhs, rhs, line=token.line, column=token.column)

    def _parse_additive(self) -> QuarryASTNode:
        return self._binary_left(self._parse_multiplicative, ADDITIVE_OPERATORS, self._build_binary)

    def _parse_multiplicative(self) -> QuarryASTNode:
        return self._binary_left(self._parse_unary, MULTIPLICATIVE_OPERATORS, self._build_binary)

    @staticmethod
    def _build_binary(op: str, lhs: QuarryASTNode, rhs: QuarryASTNode, token: QuarryToken) -> QuarryASTNode:
        return QuarryASTBinaryOp(op, lhs, rhs, line=token.line, column=token.column)

    def _parse_unary(self) -> QuarryASTNode:
        if self._is_operator(frozenset({'-'})):
            token = self._advance()
            operand = self._parse_unary()
            return QuarryASTNeg(operand, line=token.line, column=token.column)

        return self._parse_postfix()

    def _parse_postfix(self, allow_bind: bool = True) -> QuarryASTNode:
        """Parse a term with its path steps, `?` suffixes and an optional `as $x | body`."""
        start = self.current_token
        head = self._parse_primary()
        steps: List[QuarryASTNode] = []
        if start.type in (QuarryTokenType.FIELD, QuarryTokenType.DOT) and isinstance(head, QuarryASTPath):
            steps = list(head.steps)
            head = head.head

        while True:
            token = self.current_token
            if token.type == QuarryTokenType.FIELD:
                self._advance()
                steps.append(QuarryASTIndex(QuarryASTLiteral(token.value), line=token.line, column=token.column))
                continue

            if token.type == QuarryTokenType.DOT and self._peek().type == QuarryTokenType.STRING:
                self._advance()
                key = self._parse_string(self._advance())
                steps.append(QuarryASTIndex(key, line=token.line, column=token.column))
                continue

            if token.type == QuarryTokenType.DOT and self._peek().type == QuarryTokenType.LBRACKET:
                self._advance()
                continue

            if token.type == QuarryTokenType.LBRACKET:
                steps.append(self._parse_bracket_step())
                continue

            if token.type == QuarryTokenType.QUESTION:
                self._advance()
                if steps:
                    steps[-1] = replace(steps[-1], optional=True)

                else:
                    head = QuarryASTTry(head, None, line=token.line, column=token.column)

                continue

            break

        term = head
        if steps:
            term = QuarryASTPath(head, tuple(steps), line=start.line, column=start.column)

        if allow_bind and self._is_keyword('as'):
            token = self._advance()
            name = self._expect(QuarryTokenType.VARIABLE, "after 'as'").value
            self._expect(QuarryTokenType.PIPE, f"after 'as ${name}'")
            body = self._parse_pipe()
            return QuarryASTBind(term, name, body, line=token.line, column=token.column)

        return term

    def _parse_bracket_step(self) -> QuarryASTNode:
        """Parse `[]`, `[e]`, `[e:]`, `[:e]` or `[e:e]`."""
        token = self._advance()
        if self._check(QuarryTokenType.RBRACKET):
            self._advance()
            return QuarryASTIterate(line=token.line, column=token.column)

        start = None
        if not self._check(QuarryTokenType.COLON):
            start = self._parse_pipe()

        if self._check(QuarryTokenType.COLON):
            self._advance()
            end = None
            if not self._check(QuarryTokenType.RBRACKET):
                end = self._parse_pipe()

            self._expect(QuarryTokenType.RBRACKET, "to close the slice")
            return QuarryASTSlice(start, end, line=token.line, column=token.column)

        self._expect(QuarryTokenType.RBRACKET, "to close the index")
        assert start is not None
        return QuarryASTIndex(start, line=token.line, column=token.column)

    def _parse_primary(self) -> QuarryASTNode:
        token = self.current_token

        if token.type == QuarryTokenType.NUMBER:
            self._advance()
            return QuarryASTLiteral(token.value, line=token.line, column=token.column)

        if token.type == QuarryTokenType.STRING:
            self._advance()
            return self._parse_string(token)

        if token.type == QuarryTokenType.DOT:
            self._advance()
            if self._check(QuarryTokenType.STRING):
                key = self._parse_string(self._advance())
                step = QuarryASTIndex(key, line=token.line, column=token.column)
                return QuarryASTPath(QuarryASTIdentity(), (step,), line=token.line, column=token.column)

            return QuarryASTIdentity(line=token.line, column=token.column)

        if token.type == QuarryTokenType.FIELD:
            self._advance()
            step = QuarryASTIndex(QuarryASTLiteral(token.value), line=token.line, column=token.column)
            return QuarryASTPath(QuarryASTIdentity(), (step,), line=token.line, column=token.column)

        if token.type == QuarryTokenType.DOT_DOT:
            self._advance()
            return QuarryASTRecurseAll(line=token.line, column=token.column)

        if token.type == QuarryTokenType.VARIABLE:
            self._advance()
            return QuarryASTVariable(token.value, line=token.line, column=token.column)

        if token.type == QuarryTokenType.LPAREN:
            self._advance()
            inner = self._parse_pipe()
            self._expect(QuarryTokenType.RPAREN, "to close the parenthesized expression")
            return inner

        if token.type == QuarryTokenType.LBRACKET:
            self._advance()
            if self._check(QuarryTokenType.RBRACKET):
                self._advance()
                return QuarryASTArray(None, line=token.line, column=token.column)

            body = self._parse_pipe()
            self._expect(QuarryTokenType.RBRACKET, "to close the array")
            return QuarryASTArray(body, line=token.line, column=token.column)

        if token.type == QuarryTokenType.LBRACE:
            return self._parse_object()

        if token.type == QuarryTokenType.IDENTIFIER:
            return self._parse_call()

        if token.type == QuarryTokenType.KEYWORD:
            return self._parse_keyword_term()

        raise self._error(
            f"Unexpected {self._describe(token)}",
            received=f"Found: {self._describe(token)}",
            expected="A filter: '.', a literal, a variable, a call, '(', '[' or '{'",
            example=".name, [.[] | . * 2], {a: .b}"
        )

    def _parse_keyword_term(self) -> QuarryASTNode:
        token = self.current_token
        word = token.value

        if word == 'def':
            definition = self._parse_def()
            body = self._parse_pipe()
            return QuarryASTLocalDef(definition, body, line=token.line, column=token.column)

        if word == 'if':
            return self._parse_if()

        if word == 'try':
            self._advance()
            body = self._parse_postfix(allow_bind=False)
            handler = None
            if self._is_keyword('catch'):
                self._advance()
                handler = self._parse_postfix(allow_bind=False)

            return QuarryASTTry(body, handler, line=token.line, column=token.column)

        if word == 'reduce':
            self._advance()
            source, name = self._parse_binding_source('reduce')
            self._expect(QuarryTokenType.LPAREN, "after the reduce binding")
            init = self._parse_pipe()
            self._expect(QuarryTokenType.SEMICOLON, "between the reduce initial value and update")
            update = self._parse_pipe()
            self._expect(QuarryTokenType.RPAREN, "to close the reduce")
            return QuarryASTReduce(source, name, init, update, line=token.line, column=token.column)

        if word == 'foreach':
            self._advance()
            source, name = self._parse_binding_source('foreach')
            self._expect(QuarryTokenType.LPAREN, "after the foreach binding")
            init = self._parse_pipe()
            self._expect(QuarryTokenType.SEMICOLON, "between the foreach initial value and update")
            update = self._parse_pipe()
            extract = None
            if self._check(QuarryTokenType.SEMICOLON):
                self._advance()
                extract = self._parse_pipe()

            self._expect(QuarryTokenType.RPAREN, "to close the foreach")
            return QuarryASTForeach(source, name, init, update, extract, line=token.line, column=token.column)

        if word in ('label', 'import', 'include'):
            raise self._error(
                f"'{word}' is not supported",
                context="Quarry filters have no labels and no module system"
            )

        raise self._error(
            f"Unexpected keyword '{word}'",
            received=f"Found: '{word}'",
            expected="A filter expression",
            suggestion=f"'{word}' is reserved and cannot start a filter"
        )

    def _parse_binding_source(self, construct: str) -> Tuple[QuarryASTNode, str]:
        source = self._parse_postfix(allow_bind=False)
        self._expect_keyword('as', f"after the {construct} source", example=f"{construct} .[] as $x (...)")
        name = self._expect(QuarryTokenType.VARIABLE, "after 'as'").value
        return source, name

    def _parse_if(self) -> QuarryASTNode:
        token = self._advance()
        condition = self._parse_pipe()
        self._expect_keyword('then', "after the if condition", example="if . > 0 then \"pos\" else \"neg\" end")
        then_branch = self._parse_pipe()

        else_branch: QuarryASTNode | None = None
        if self._is_keyword('elif'):
            else_branch = self._parse_if()
            return QuarryASTIf(condition, then_branch, else_branch, line=token.line, column=token.column)

        if self._is_keyword('else'):
            self._advance()
            else_branch = self._parse_pipe()

        self._expect_keyword('end', "to close the if", example="if . then 1 else 2 end")
        return QuarryASTIf(condition, then_branch, else_branch, line=token.line, column=token.column)

    def _parse_def(self) -> QuarryASTDef:
        token = self._advance()
        name_token = self.current_token
        if name_token.type != QuarryTokenType.IDENTIFIER:
            raise self._error(
                "Expected a filter name after 'def'",
                received=f"Found: {self._describe(name_token)}",
                example="def double: . * 2;"
            )

        self._advance()
        params: List[str] = []
        if self._check(QuarryTokenType.LPAREN):
            self._advance()
            while True:
                param = self.current_token
                if param.type == QuarryTokenType.IDENTIFIER:
                    params.append(param.value)

                elif param.type == QuarryTokenType.VARIABLE:
                    params.append('$' + param.value)

                else:
                    raise self._error(
                        f"Expected a parameter name in definition of '{name_token.value}'",
                        received=f"Found: {self._describe(param)}",
                        example="def f(g; $x): g + $x;"
                    )

                self._advance()
                if self._check(QuarryTokenType.SEMICOLON):
                    self._advance()
                    continue

                self._expect(QuarryTokenType.RPAREN, "to close the parameter list")
                break

        self._expect(QuarryTokenType.COLON, f"after the name of definition '{name_token.value}'")
        body = self._parse_pipe()
        self._expect(QuarryTokenType.SEMICOLON, f"to end definition '{name_token.value}'")
        return QuarryASTDef(name_token.value, tuple(params), body, line=token.line, column=token.column)

    def _parse_call(self) -> QuarryASTNode:
        token = self._advance()
        if token.value in _CONSTANTS:
            return QuarryASTLiteral(_CONSTANTS[token.value], line=token.line, column=token.column)

        args: List[QuarryASTNode] = []
        if self._check(QuarryTokenType.LPAREN):
            self._advance()
            args.append(self._parse_pipe())
            while self._check(QuarryTokenType.SEMICOLON):
                self._advance()
                args.append(self._parse_pipe())

            self._expect(QuarryTokenType.RPAREN, f"to close the arguments of '{token.value}'")

        return QuarryASTCall(token.value, tuple(args), line=token.line, column=token.column)

    def _parse_object(self) -> QuarryASTNode:
        token = self._advance()
        entries: List[Tuple[QuarryASTNode, QuarryASTNode]] = []

        while not self._check(QuarryTokenType.RBRACE):
            entries.append(self._parse_object_entry())
            if not self._check(QuarryTokenType.COMMA):
                break

            self._advance()

        self._expect(QuarryTokenType.RBRACE, "to close the object")
        return QuarryASTObject(tuple(entries), line=token.line, column=token.column)

    def _parse_object_entry(self) -> Tuple[QuarryASTNode, QuarryASTNode]:
        token = self.current_token

        if token.type == QuarryTokenType.VARIABLE:
            self._advance()
            key = QuarryASTLiteral(token.value, line=token.line, column=token.column)
            return key, QuarryASTVariable(token.value, line=token.line, column=token.column)

        if token.type in (QuarryTokenType.IDENTIFIER, QuarryTokenType.KEYWORD):
            self._advance()
            key = QuarryASTLiteral(token.value, line=token.line, column=token.column)

        elif token.type == QuarryTokenType.STRING:
            self._advance()
            key = self._parse_string(token)

        elif token.type == QuarryTokenType.LPAREN:
            self._advance()
            key = self._parse_pipe()
            self._expect(QuarryTokenType.RPAREN, "to close the computed object key")
            self._expect(QuarryTokenType.COLON, "after a computed object key")
            return key, self._parse_object_value()

        else:
            raise self._error(
                f"Invalid object key: {self._describe(token)}",
                received=f"Found: {self._describe(token)}",
                expected="A name, a string, a $variable or a parenthesized expression",
                example='{name: .n, "full name": .f, (.k): .v, $x}'
            )

        if self._check(QuarryTokenType.COLON):
            self._advance()
            return key, self._parse_object_value()

        # `{a}` is shorthand for `{a: .a}`
        step = QuarryASTIndex(key, line=token.line, column=token.column)
        return key, QuarryASTPath(QuarryASTIdentity(), (step,), line=token.line, column=token.column)

    def _parse_object_value(self) -> QuarryASTNode:
        """Object values are pipes of terms; a bare comma ends the entry."""
        if self._is_operator(frozenset({'-'})):
            token = self._advance()
            return QuarryASTNeg(self._parse_object_value(), line=token.line, column=token.column)

        lhs = self._parse_postfix(allow_bind=False)
        if not self._check(QuarryTokenType.PIPE):
            return lhs

        token = self._advance()
        rhs = self._parse_object_value()
        return QuarryASTPipe(lhs, rhs, line=token.line, column=token.column)

    def _parse_string(self, token: QuarryToken) -> QuarryASTNode:
        """Build a string literal, or a concatenation for interpolated strings."""
        pieces: List[QuarryASTNode] = []
        for part in token.value:
            if isinstance(part, str):
                pieces.append(QuarryASTLiteral(part, line=token.line, column=token.column))
                continue

            inner = QuarryParser(part, self.source)
            expr = inner.parse()
            tostring = QuarryASTCall('tostring', line=token.line, column=token.column)
            pieces.append(QuarryASTPipe(expr, tostring, line=token.line, column=token.column))

        result = pieces[0]
        for piece in pieces[1:]:
            result = QuarryASTBinaryOp('+', result, piece, line=token.line, column=token.column)

        return result
