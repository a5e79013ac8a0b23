"""Lexer for the TriggerLab condition language.

Turns a WHEN clause or value expression such as
``:new.salary < 3000 and old.status <> 'closed'`` into tokens.

Token types:
- Literals: NUMBER, STRING, BOOLEAN, NULL
- Names: IDENTIFIER (``:new`` and ``:old`` bind variables lex as plain names)
- Operators: comparison, logical, arithmetic, ``||`` concatenation
- Punctuation: parentheses, brackets, comma, dot
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class TokenType(Enum):
    """Types of tokens in the condition language."""

    # Literals
    NUMBER = auto()
    STRING = auto()
    BOOLEAN = auto()
    NULL = auto()

    IDENTIFIER = auto()

    # Comparison
    EQ = auto()          # = or ==
    NEQ = auto()         # != or <>
    LT = auto()
    LTE = auto()
    GT = auto()
    GTE = auto()

    # Logical (keywords)
    AND = auto()
    OR = auto()
    NOT = auto()
    IN = auto()
    IS = auto()

    # Arithmetic
    PLUS = auto()
    MINUS = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    MODULO = auto()
    CONCAT = auto()      # ||

    # Punctuation
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    COMMA = auto()
    DOT = auto()

    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A single token.

    Attributes:
        type: The token type
        value: Parsed value (number, unquoted string, lower-cased keyword, name)
        position: Character offset in the source
    """

    type: TokenType
    value: str | int | float | bool | None
    position: int

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


class LexerError(Exception):
    """Error during lexical analysis."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


# Longer operators first
TOKEN_PATTERNS = [
    (r"\s+", None),
    (r"==", TokenType.EQ),
    (r"!=", TokenType.NEQ),
    (r"<>", TokenType.NEQ),
    (r"<=", TokenType.LTE),
    (r">=", TokenType.GTE),
    (r"\|\|", TokenType.CONCAT),
    (r"=", TokenType.EQ),
    (r"<", TokenType.LT),
    (r">", TokenType.GT),
    (r"\+", TokenType.PLUS),
    (r"-", TokenType.MINUS),
    (r"\*", TokenType.MULTIPLY),
    (r"/", TokenType.DIVIDE),
    (r"%", TokenType.MODULO),
    (r"\(", TokenType.LPAREN),
    (r"\)", TokenType.RPAREN),
    (r"\[", TokenType.LBRACKET),
    (r"\]", TokenType.RBRACKET),
    (r",", TokenType.COMMA),
    (r"\d+\.\d+", TokenType.NUMBER),
    (r"\d+", TokenType.NUMBER),
    (r"\.", TokenType.DOT),
    (r"'(?:[^']|'')*'", TokenType.STRING),
    (r'"(?:[^"\\]|\\.)*"', TokenType.STRING),
    (r":?[a-zA-Z_][a-zA-Z0-9_$#]*", TokenType.IDENTIFIER),
]

KEYWORDS = {
    "true": (TokenType.BOOLEAN, True),
    "false": (TokenType.BOOLEAN, False),
    "null": (TokenType.NULL, None),
    "and": (TokenType.AND, "and"),
    "or": (TokenType.OR, "or"),
    "not": (TokenType.NOT, "not"),
    "in": (TokenType.IN, "in"),
    "is": (TokenType.IS, "is"),
}

_COMPILED = [(re.compile(pattern), token_type) for pattern, token_type in TOKEN_PATTERNS]


class Lexer:
    """Tokenizer for the condition language.

    Usage:
        tokens = Lexer("new.salary < 3000").tokenize()
    """

    def __init__(self, source: str):
        self.source = source
        self.position = 0

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                break

    def next_token(self) -> Token:
        """Get the next token from the source."""
        while self.position < len(self.source):
            for pattern, token_type in _COMPILED:
                match = pattern.match(self.source, self.position)
                if match:
                    break
            else:
                raise LexerError(
                    f"Unexpected character '{self.source[self.position]}'",
                    self.position,
                )

            start = self.position
            text = match.group()
            self.position = match.end()

            if token_type is None:
                continue
            return self._make_token(token_type, text, start)

        return Token(TokenType.EOF, None, self.position)

    def _make_token(self, token_type: TokenType, text: str, start: int) -> Token:
        if token_type == TokenType.NUMBER:
            value: str | int | float | bool | None = (
                float(text) if "." in text else int(text)
            )
            return Token(token_type, value, start)

        if token_type == TokenType.STRING:
            if text[0] == "'":
                # SQL style: '' is an escaped quote
                return Token(token_type, text[1:-1].replace("''", "'"), start)
            return Token(token_type, _unescape(text[1:-1]), start)

        if token_type == TokenType.IDENTIFIER:
            if text.startswith(":"):
                # :NEW / :OLD bind variables
                return Token(token_type, text[1:].lower(), start)
            keyword = KEYWORDS.get(text.lower())
            if keyword is not None:
                return Token(keyword[0], keyword[1], start)

        return Token(token_type, text, start)

    def tokenize(self) -> list[Token]:
        """Tokenize the entire source and return the list of tokens."""
        return list(self)


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}


def _unescape(s: str) -> str:
    """Process backslash escapes in a double-quoted string."""
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), s)
