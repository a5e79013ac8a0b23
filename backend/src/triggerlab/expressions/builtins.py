"""Built-in functions for the TriggerLab condition language.

Registered when ``triggerlab.expressions`` is imported.

- String: upper, lower, length, trim, concat
- Date: now (aliases systimestamp, sysdate)
- Math: abs, round
- Logic: nvl, coalesce
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from triggerlab.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionRegistry,
)


def register_all_builtins() -> None:
    """Register all built-in functions with the FunctionRegistry."""
    for func_def in _BUILTINS:
        FunctionRegistry.register(func_def)


def _upper(value: Any) -> str | None:
    return None if value is None else str(value).upper()


def _lower(value: Any) -> str | None:
    return None if value is None else str(value).lower()


def _length(value: Any) -> int | None:
    # LENGTH(NULL) is NULL in SQL
    if value is None:
        return None
    return len(str(value))


def _trim(value: Any) -> str | None:
    return None if value is None else str(value).strip()


def _concat(*values: Any) -> str:
    return "".join("" if v is None else str(v) for v in values)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _abs(value: Any) -> Any:
    return None if value is None else abs(value)


def _round(value: Any, places: int = 0) -> Any:
    """Round half away from zero, as SQL ROUND does."""
    if value is None:
        return None
    quantum = Decimal(1).scaleb(-int(places))
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    if isinstance(value, int) or int(places) <= 0:
        return int(rounded)
    return float(rounded)


def _nvl(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def _coalesce(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


_BUILTINS = [
    FunctionDefinition("upper", _upper, FunctionCategory.STRING, "Upper-case a string", 1, 1),
    FunctionDefinition("lower", _lower, FunctionCategory.STRING, "Lower-case a string", 1, 1),
    FunctionDefinition("length", _length, FunctionCategory.STRING, "Character count", 1, 1),
    FunctionDefinition("trim", _trim, FunctionCategory.STRING, "Strip surrounding whitespace", 1, 1),
    FunctionDefinition("concat", _concat, FunctionCategory.STRING, "Join values as text", 1, None),
    FunctionDefinition("now", _now, FunctionCategory.DATE, "Current UTC timestamp", 0, 0),
    FunctionDefinition("systimestamp", _now, FunctionCategory.DATE, "Alias of now()", 0, 0),
    FunctionDefinition("sysdate", _now, FunctionCategory.DATE, "Alias of now()", 0, 0),
    FunctionDefinition("abs", _abs, FunctionCategory.MATH, "Absolute value", 1, 1),
    FunctionDefinition("round", _round, FunctionCategory.MATH, "Round half away from zero", 1, 2),
    FunctionDefinition("nvl", _nvl, FunctionCategory.LOGIC, "Fallback for null", 2, 2),
    FunctionDefinition("coalesce", _coalesce, FunctionCategory.LOGIC, "First non-null value", 1, None),
]
