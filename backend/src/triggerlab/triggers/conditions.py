"""Bridges between the condition language and trigger rules.

Compiles expression strings once into the callables TriggerRule expects,
and renders rejection messages with ``{new.col}`` / ``{old.col}``
placeholders.
"""

import re
from typing import Any, Callable

from triggerlab.expressions import EvaluationContext, Evaluator, parse, to_bool
from triggerlab.triggers.types import Condition, MutationEvent, ValueFn

# Pattern: {new.column} or {old.column}
PLACEHOLDER = re.compile(r"\{(?P<row>new|old)\.(?P<column>\w+)\}", re.IGNORECASE)


def _context(event: MutationEvent) -> EvaluationContext:
    return EvaluationContext(
        new=event.new_row,
        old=event.old_row,
        variables={
            "operation": event.operation.value,
            "table": event.table,
        },
    )


def expression_condition(source: str) -> Condition:
    """Compile a WHEN clause into a condition.

    Raises:
        LexerError, ParseError: If the expression is malformed
    """
    ast = parse(source)

    def condition(event: MutationEvent) -> bool:
        return to_bool(Evaluator(_context(event)).evaluate(ast))

    condition.__doc__ = source
    return condition


def expression_value(source: Any) -> ValueFn:
    """Compile a value expression; non-string values are constants."""
    if not isinstance(source, str):
        return lambda event: source

    ast = parse(source)

    def value(event: MutationEvent) -> Any:
        return Evaluator(_context(event)).evaluate(ast)

    value.__doc__ = source
    return value


def interpolate_message(template: str) -> str | Callable[[MutationEvent], str]:
    """Build a message function for Reject, or the template if it has no placeholders."""
    if not PLACEHOLDER.search(template):
        return template

    def render(event: MutationEvent) -> str:
        def replace(match: re.Match) -> str:
            row = event.new_row if match.group("row").lower() == "new" else event.old_row
            if row is None:
                return ""
            value = row.get(match.group("column"))
            return "" if value is None else str(value)

        return PLACEHOLDER.sub(replace, template)

    return render
