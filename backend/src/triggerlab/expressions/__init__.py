"""Condition language for TriggerLab WHEN clauses and derived values.

This module provides:
- Lexer: Tokenizes expression strings
- Parser: Produces an AST from tokens
- Evaluator: Evaluates an AST against new/old rows
- FunctionRegistry: Functions callable from expressions

Built-in functions are registered on import.
"""

from triggerlab.expressions.builtins import register_all_builtins
from triggerlab.expressions.evaluator import (
    EvaluationContext,
    EvaluationError,
    Evaluator,
    evaluate,
    evaluate_bool,
    to_bool,
)
from triggerlab.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionRegistry,
)
from triggerlab.expressions.lexer import Lexer, LexerError, Token, TokenType
from triggerlab.expressions.parser import (
    ASTNode,
    BinaryOp,
    FunctionCall,
    Identifier,
    ListLiteral,
    Literal,
    MemberAccess,
    ParseError,
    Parser,
    UnaryOp,
    parse,
)

register_all_builtins()

__all__ = [
    # Evaluator
    "EvaluationContext",
    "EvaluationError",
    "Evaluator",
    "evaluate",
    "evaluate_bool",
    "to_bool",
    # Functions
    "FunctionCategory",
    "FunctionDefinition",
    "FunctionRegistry",
    "register_all_builtins",
    # Lexer
    "Lexer",
    "LexerError",
    "Token",
    "TokenType",
    # Parser
    "ASTNode",
    "BinaryOp",
    "FunctionCall",
    "Identifier",
    "ListLiteral",
    "Literal",
    "MemberAccess",
    "ParseError",
    "Parser",
    "UnaryOp",
    "parse",
]
