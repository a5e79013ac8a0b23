"""Parser for the TriggerLab condition language.

Recursive descent with SQL operator precedence (lowest to highest):
1. or
2. and
3. not
4. = <> < <= > >= in, not in, is null, is not null
5. + - ||
6. * / %
7. unary -
8. . (member access) () (function call)
"""

from dataclasses import dataclass
from typing import Any

from triggerlab.expressions.lexer import Lexer, Token, TokenType


@dataclass
class ASTNode:
    """Base class for AST nodes."""


@dataclass
class Literal(ASTNode):
    value: Any


@dataclass
class Identifier(ASTNode):
    """A column, row binding (new/old) or variable reference."""
    name: str


@dataclass
class MemberAccess(ASTNode):
    """Dot access, e.g. ``new.salary``."""
    object: ASTNode
    member: str


@dataclass
class BinaryOp(ASTNode):
    operator: str
    left: ASTNode
    right: ASTNode


@dataclass
class UnaryOp(ASTNode):
    """``not x``, ``-x``, ``x is null``, ``x is not null``."""
    operator: str
    operand: ASTNode


@dataclass
class FunctionCall(ASTNode):
    name: str
    arguments: list[ASTNode]


@dataclass
class ListLiteral(ASTNode):
    """``(1, 2, 3)`` after ``in``, or ``[1, 2, 3]`` anywhere."""
    elements: list[ASTNode]


class ParseError(Exception):
    """Error during parsing."""

    def __init__(self, message: str, token: Token):
        self.token = token
        super().__init__(f"{message} at position {token.position}")


_COMPARISONS = {
    TokenType.EQ: "=",
    TokenType.NEQ: "<>",
    TokenType.LT: "<",
    TokenType.LTE: "<=",
    TokenType.GT: ">",
    TokenType.GTE: ">=",
}

_ADDITIVE = {
    TokenType.PLUS: "+",
    TokenType.MINUS: "-",
    TokenType.CONCAT: "||",
}

_MULTIPLICATIVE = {
    TokenType.MULTIPLY: "*",
    TokenType.DIVIDE: "/",
    TokenType.MODULO: "%",
}


class Parser:
    """Recursive descent parser.

    Usage:
        ast = Parser("new.salary < 3000").parse()
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = Lexer(source).tokenize()
        self.position = 0

    def parse(self) -> ASTNode:
        """Parse the expression and return the AST root."""
        if self._current().type == TokenType.EOF:
            raise ParseError("Empty expression", self._current())

        ast = self._parse_or()

        if self._current().type != TokenType.EOF:
            raise ParseError(
                f"Unexpected token '{self._current().value}'", self._current()
            )
        return ast

    # -------------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------------

    def _current(self) -> Token:
        return self.tokens[min(self.position, len(self.tokens) - 1)]

    def _peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.position + offset, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self._current()
        self.position += 1
        return token

    def _match(self, *types: TokenType) -> bool:
        return self._current().type in types

    def _consume(self, token_type: TokenType, message: str) -> Token:
        if self._current().type == token_type:
            return self._advance()
        raise ParseError(message, self._current())

    # -------------------------------------------------------------------------
    # Grammar
    # -------------------------------------------------------------------------

    def _parse_or(self) -> ASTNode:
        left = self._parse_and()
        while self._match(TokenType.OR):
            self._advance()
            left = BinaryOp("or", left, self._parse_and())
        return left

    def _parse_and(self) -> ASTNode:
        left = self._parse_not()
        while self._match(TokenType.AND):
            self._advance()
            left = BinaryOp("and", left, self._parse_not())
        return left

    def _parse_not(self) -> ASTNode:
        if self._match(TokenType.NOT):
            self._advance()
            return UnaryOp("not", self._parse_not())
        return self._parse_comparison()

    def _parse_comparison(self) -> ASTNode:
        left = self._parse_additive()

        while True:
            token = self._current()
            if token.type in _COMPARISONS:
                self._advance()
                left = BinaryOp(_COMPARISONS[token.type], left, self._parse_additive())
            elif token.type == TokenType.IN:
                self._advance()
                left = BinaryOp("in", left, self._parse_in_list())
            elif token.type == TokenType.NOT and self._peek().type == TokenType.IN:
                self._advance()
                self._advance()
                left = BinaryOp("not in", left, self._parse_in_list())
            elif token.type == TokenType.IS:
                self._advance()
                negated = False
                if self._match(TokenType.NOT):
                    self._advance()
                    negated = True
                self._consume(TokenType.NULL, "Expected 'null' after 'is'")
                left = UnaryOp("is not null" if negated else "is null", left)
            else:
                return left

    def _parse_in_list(self) -> ASTNode:
        if self._match(TokenType.LPAREN):
            self._advance()
            return ListLiteral(self._parse_elements(TokenType.RPAREN))
        return self._parse_additive()

    def _parse_additive(self) -> ASTNode:
        left = self._parse_multiplicative()
        while self._current().type in _ADDITIVE:
            op = _ADDITIVE[self._advance().type]
            left = BinaryOp(op, left, self._parse_multiplicative())
        return left

    def _parse_multiplicative(self) -> ASTNode:
        left = self._parse_unary()
        while self._current().type in _MULTIPLICATIVE:
            op = _MULTIPLICATIVE[self._advance().type]
            left = BinaryOp(op, left, self._parse_unary())
        return left

    def _parse_unary(self) -> ASTNode:
        if self._match(TokenType.MINUS):
            self._advance()
            return UnaryOp("-", self._parse_unary())
        return self._parse_postfix()

    def _parse_postfix(self) -> ASTNode:
        expr = self._parse_primary()
        while self._match(TokenType.DOT):
            self._advance()
            member = self._consume(TokenType.IDENTIFIER, "Expected column name after '.'")
            expr = MemberAccess(expr, str(member.value))
        return expr

    def _parse_primary(self) -> ASTNode:
        token = self._current()

        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN):
            self._advance()
            return Literal(token.value)

        if token.type == TokenType.NULL:
            self._advance()
            return Literal(None)

        if token.type == TokenType.IDENTIFIER:
            self._advance()
            if self._match(TokenType.LPAREN):
                self._advance()
                return FunctionCall(
                    str(token.value).lower(), self._parse_elements(TokenType.RPAREN)
                )
            return Identifier(str(token.value))

        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_or()
            self._consume(TokenType.RPAREN, "Expected ')' after expression")
            return expr

        if token.type == TokenType.LBRACKET:
            self._advance()
            return ListLiteral(self._parse_elements(TokenType.RBRACKET))

        raise ParseError(f"Unexpected token '{token.value}'", token)

    def _parse_elements(self, closing: TokenType) -> list[ASTNode]:
        """Comma-separated expressions up to and including ``closing``."""
        elements: list[ASTNode] = []
        if not self._match(closing):
            elements.append(self._parse_or())
            while self._match(TokenType.COMMA):
                self._advance()
                elements.append(self._parse_or())
        self._consume(closing, "Expected closing bracket")
        return elements


def parse(source: str) -> ASTNode:
    """Parse an expression string into an AST."""
    return Parser(source).parse()
