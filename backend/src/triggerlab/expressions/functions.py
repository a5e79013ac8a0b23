"""Function registry for the TriggerLab condition language.

Functions are callable from expressions, e.g. ``upper(new.emp_name)`` or
``now()``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class FunctionCategory(Enum):
    STRING = "string"
    DATE = "date"
    MATH = "math"
    LOGIC = "logic"


@dataclass
class FunctionDefinition:
    """An expression function.

    Attributes:
        name: Name as used in expressions (lower case)
        implementation: The Python callable
        category: Grouping used when listing functions
        description: One-line description
        min_args: Minimum number of arguments
        max_args: Maximum number of arguments, None for variadic
    """

    name: str
    implementation: Callable[..., Any]
    category: FunctionCategory
    description: str = ""
    min_args: int = 0
    max_args: int | None = None

    def check_arity(self, count: int) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise ValueError(
                f"{self.name}() takes {expected} argument(s), got {count}"
            )


class FunctionRegistry:
    """Registry for expression functions.

    Example:
        FunctionRegistry.register(FunctionDefinition(
            name="upper", implementation=_upper, category=FunctionCategory.STRING,
            min_args=1, max_args=1,
        ))
        FunctionRegistry.call("upper", "abc")  # "ABC"
    """

    _functions: dict[str, FunctionDefinition] = {}

    @classmethod
    def register(cls, func_def: FunctionDefinition) -> None:
        cls._functions[func_def.name] = func_def

    @classmethod
    def get(cls, name: str) -> FunctionDefinition:
        """Get a function definition by name.

        Raises:
            ValueError: If the function is not registered
        """
        if name not in cls._functions:
            raise ValueError(f"Unknown function: {name}")
        return cls._functions[name]

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._functions

    @classmethod
    def call(cls, name: str, *args: Any) -> Any:
        """Call a registered function after checking its arity."""
        func_def = cls.get(name)
        func_def.check_arity(len(args))
        return func_def.implementation(*args)

    @classmethod
    def list_all(cls) -> list[FunctionDefinition]:
        return sorted(cls._functions.values(), key=lambda f: f.name)

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Primarily for testing."""
        cls._functions.clear()
