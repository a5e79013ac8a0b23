"""Evaluator for the TriggerLab condition language.

Walks the AST against the new and old rows of a mutation. Bare column names
resolve against the new row first, then the old row, so ``salary < 3000``
works for inserts and deletes alike.

Null handling follows SQL closely enough for trigger conditions:
arithmetic with null yields null, and any comparison with null is false
(use ``is null`` to test for it).
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from triggerlab.expressions.functions import FunctionRegistry
from triggerlab.expressions.parser import (
    ASTNode,
    BinaryOp,
    FunctionCall,
    Identifier,
    ListLiteral,
    Literal,
    MemberAccess,
    UnaryOp,
    parse,
)

_NUMERIC = (int, float, Decimal)
_ROW_NAMES = ("new", "old")


class EvaluationError(Exception):
    """Error during expression evaluation."""


@dataclass
class EvaluationContext:
    """Values visible to an expression.

    Attributes:
        new: The proposed row (None for deletes)
        old: The existing row (None for inserts)
        variables: Extra names, e.g. ``operation`` and ``table``
    """

    new: Mapping[str, Any] | None = None
    old: Mapping[str, Any] | None = None
    variables: dict[str, Any] = field(default_factory=dict)


class Evaluator:
    """Evaluates an AST against an EvaluationContext."""

    def __init__(self, context: EvaluationContext):
        self.context = context

    def evaluate(self, node: ASTNode) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__.lower()}", None)
        if method is None:
            raise EvaluationError(f"Unknown node type: {type(node).__name__}")
        return method(node)

    def _eval_literal(self, node: Literal) -> Any:
        return node.value

    def _eval_listliteral(self, node: ListLiteral) -> list[Any]:
        return [self.evaluate(element) for element in node.elements]

    def _eval_identifier(self, node: Identifier) -> Any:
        name = node.name
        lowered = name.lower()

        if lowered in _ROW_NAMES:
            return getattr(self.context, lowered) or {}

        for scope in (self.context.variables, self.context.new, self.context.old):
            key = _find_key(scope, name)
            if key is not None:
                return scope[key]

        # Unknown columns read as null, like an unset :NEW field
        return None

    def _eval_memberaccess(self, node: MemberAccess) -> Any:
        obj = self.evaluate(node.object)
        if obj is None:
            return None
        if isinstance(obj, Mapping):
            key = _find_key(obj, node.member)
            return None if key is None else obj[key]
        raise EvaluationError(f"Cannot read '{node.member}' from {type(obj).__name__}")

    def _eval_unaryop(self, node: UnaryOp) -> Any:
        operand = self.evaluate(node.operand)
        op = node.operator

        if op == "is null":
            return operand is None
        if op == "is not null":
            return operand is not None
        if op == "not":
            return not to_bool(operand)
        if op == "-":
            if operand is None:
                return None
            if isinstance(operand, _NUMERIC):
                return -operand
            raise EvaluationError(f"Cannot negate non-numeric value: {operand!r}")

        raise EvaluationError(f"Unknown unary operator: {op}")

    def _eval_binaryop(self, node: BinaryOp) -> Any:
        op = node.operator

        if op == "and":
            return to_bool(self.evaluate(node.left)) and to_bool(self.evaluate(node.right))
        if op == "or":
            return to_bool(self.evaluate(node.left)) or to_bool(self.evaluate(node.right))

        left = self.evaluate(node.left)
        right = self.evaluate(node.right)

        if op in ("in", "not in"):
            found = self._in(left, right)
            return found if op == "in" else not found

        if op == "||":
            return ("" if left is None else str(left)) + ("" if right is None else str(right))

        if op in ("=", "<>", "<", "<=", ">", ">="):
            if left is None or right is None:
                return False
            diff = self._compare(left, right)
            return {
                "=": diff == 0,
                "<>": diff != 0,
                "<": diff < 0,
                "<=": diff <= 0,
                ">": diff > 0,
                ">=": diff >= 0,
            }[op]

        return self._arithmetic(op, left, right)

    def _eval_functioncall(self, node: FunctionCall) -> Any:
        if not FunctionRegistry.is_registered(node.name):
            raise EvaluationError(f"Unknown function: {node.name}")

        args = [self.evaluate(arg) for arg in node.arguments]
        try:
            return FunctionRegistry.call(node.name, *args)
        except Exception as e:
            raise EvaluationError(f"Error calling {node.name}: {e}") from e

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _compare(self, left: Any, right: Any) -> int:
        """Compare two non-null values, returning -1, 0 or 1."""
        if isinstance(left, bool) or isinstance(right, bool):
            if isinstance(left, bool) and isinstance(right, bool):
                return (left > right) - (left < right)
        elif isinstance(left, _NUMERIC) and isinstance(right, _NUMERIC):
            left, right = float(left), float(right)
            return (left > right) - (left < right)
        elif isinstance(left, (date, datetime)) and isinstance(right, (date, datetime)):
            if isinstance(left, datetime) != isinstance(right, datetime):
                left = left.date() if isinstance(left, datetime) else left
                right = right.date() if isinstance(right, datetime) else right
            return (left > right) - (left < right)
        elif isinstance(left, str) and isinstance(right, str):
            return (left > right) - (left < right)

        raise EvaluationError(
            f"Cannot compare {type(left).__name__} and {type(right).__name__}"
        )

    def _in(self, item: Any, collection: Any) -> bool:
        if item is None or collection is None:
            return False
        if isinstance(collection, (list, tuple)):
            return any(
                candidate is not None and self._safe_equals(item, candidate)
                for candidate in collection
            )
        if isinstance(collection, str):
            return str(item) in collection
        raise EvaluationError(
            f"'in' requires a list, got {type(collection).__name__}"
        )

    def _safe_equals(self, left: Any, right: Any) -> bool:
        try:
            return self._compare(left, right) == 0
        except EvaluationError:
            return False

    def _arithmetic(self, op: str, left: Any, right: Any) -> Any:
        if left is None or right is None:
            return None
        if not (isinstance(left, _NUMERIC) and isinstance(right, _NUMERIC)):
            raise EvaluationError(
                f"Operator '{op}' needs numbers, got "
                f"{type(left).__name__} and {type(right).__name__}"
            )
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if right == 0:
            raise EvaluationError("Division by zero")
        if op == "/":
            return left / right
        if op == "%":
            return left % right
        raise EvaluationError(f"Unknown operator: {op}")


def _find_key(scope: Mapping[str, Any] | None, name: str) -> str | None:
    """Exact key if present, else a case-insensitive match (SQL names ignore case)."""
    if scope is None:
        return None
    if name in scope:
        return name
    folded = name.casefold()
    for key in scope:
        if isinstance(key, str) and key.casefold() == folded:
            return key
    return None


def to_bool(value: Any) -> bool:
    """Truthiness of an expression result; null is false."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, _NUMERIC):
        return value != 0
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value) > 0
    return True


def evaluate(
    expression: str,
    new: Mapping[str, Any] | None = None,
    old: Mapping[str, Any] | None = None,
    variables: dict[str, Any] | None = None,
) -> Any:
    """Evaluate an expression string against a pair of rows.

    Example:
        evaluate("new.salary < 3000", new={"salary": 2500})  # True
    """
    context = EvaluationContext(new=new, old=old, variables=variables or {})
    return Evaluator(context).evaluate(parse(expression))


def evaluate_bool(
    expression: str,
    new: Mapping[str, Any] | None = None,
    old: Mapping[str, Any] | None = None,
    variables: dict[str, Any] | None = None,
) -> bool:
    """Evaluate an expression and coerce the result to a boolean."""
    return to_bool(evaluate(expression, new, old, variables))
