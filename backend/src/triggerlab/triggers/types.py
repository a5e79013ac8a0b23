"""Trigger system types for TriggerLab.

Defines the core data structures for row and statement triggers:
- MutationEvent: the insert/update/delete being evaluated
- TriggerRule: when a trigger fires and what it does
- Actions: Reject, MutateNewRow, EmitSideEffect
- EvaluationResult / SideEffect: what the evaluator hands back to the engine
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping


class Operation(Enum):
    """The row-affecting statement that raised the event."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Timing(Enum):
    """When the trigger fires relative to the row write."""

    BEFORE = "before"
    AFTER = "after"


class Granularity(Enum):
    """ROW fires once per affected row, STATEMENT once per statement."""

    ROW = "row"
    STATEMENT = "statement"


class SideEffectKind(Enum):
    INSERT = "insert"
    INCREMENT = "increment"


class ResultStatus(Enum):
    APPLIED = "applied"
    REJECTED = "rejected"


class RuleViolation(Exception):
    """Raised when a trigger rejects a statement.

    The executor rolls back everything the statement did before raising.
    """

    def __init__(self, message: str, rule_name: str | None = None):
        self.message = message
        self.rule_name = rule_name
        super().__init__(message)


class TriggerCascadeError(RuleViolation):
    """Side-effect DML recursed through too many triggers."""


@dataclass
class MutationEvent:
    """A single table mutation, as seen by triggers.

    Attributes:
        table: Owning table name
        operation: INSERT, UPDATE or DELETE
        old_row: Row before the change (read-only, None for INSERT)
        new_row: Proposed row (mutable by BEFORE triggers, None for DELETE)
        granularity: ROW for per-row events, STATEMENT for the statement event
    """

    table: str
    operation: Operation
    old_row: Mapping[str, Any] | None = None
    new_row: dict[str, Any] | None = None
    granularity: Granularity = Granularity.ROW

    def __post_init__(self) -> None:
        if self.granularity == Granularity.STATEMENT:
            if self.old_row is not None or self.new_row is not None:
                raise ValueError("Statement-level events carry no rows")
            return

        if self.operation == Operation.INSERT:
            if self.old_row is not None or self.new_row is None:
                raise ValueError("INSERT events need new_row and no old_row")
        elif self.operation == Operation.DELETE:
            if self.old_row is None or self.new_row is not None:
                raise ValueError("DELETE events need old_row and no new_row")
        elif self.old_row is None or self.new_row is None:
            raise ValueError("UPDATE events need both old_row and new_row")

        if self.old_row is not None:
            self.old_row = MappingProxyType(dict(self.old_row))
        if self.new_row is not None:
            self.new_row = dict(self.new_row)

    @classmethod
    def for_statement(cls, table: str, operation: Operation) -> "MutationEvent":
        return cls(table=table, operation=operation, granularity=Granularity.STATEMENT)


# Conditions and value functions receive the event being evaluated
Condition = Callable[[MutationEvent], bool]
ValueFn = Callable[[MutationEvent], Any]
# Side-effect values: a literal/callable per column, or one callable for the lot
ValuesSpec = Mapping[str, Any] | Callable[[MutationEvent], Mapping[str, Any]]


@dataclass(frozen=True)
class Reject:
    """Abort the statement (RAISE_APPLICATION_ERROR).

    The message may be a plain string or a callable building it from the event.
    """

    message: str | Callable[[MutationEvent], str]

    def render(self, event: MutationEvent) -> str:
        if callable(self.message):
            return self.message(event)
        return self.message


@dataclass(frozen=True)
class MutateNewRow:
    """Assign ``:NEW.column := value_fn(event)``."""

    column: str
    value_fn: ValueFn


@dataclass(frozen=True)
class EmitSideEffect:
    """Write to an auxiliary table once the row change is applied.

    Attributes:
        target_table: Table receiving the write
        values: Column values (literals or callables over the event)
        kind: INSERT a new row, or INCREMENT matching rows
        match: Columns identifying the rows to increment (INCREMENT only)
    """

    target_table: str
    values: ValuesSpec
    kind: SideEffectKind = SideEffectKind.INSERT
    match: Mapping[str, Any] | None = None

    def resolve(self, event: MutationEvent, rule_name: str) -> "SideEffect":
        values = _resolve_values(self.values, event)
        match = _resolve_values(self.match, event) if self.match is not None else None
        return SideEffect(
            target_table=self.target_table,
            values=values,
            kind=self.kind,
            match=match,
            rule_name=rule_name,
        )


Action = Reject | MutateNewRow | EmitSideEffect


def _resolve_values(spec: ValuesSpec, event: MutationEvent) -> dict[str, Any]:
    if callable(spec):
        return dict(spec(event))
    return {
        column: value(event) if callable(value) else value
        for column, value in spec.items()
    }


@dataclass
class TriggerRule:
    """A trigger bound to a table.

    Attributes:
        name: Unique trigger name
        table: Owning table
        on: Operations the trigger fires on
        timing: BEFORE or AFTER the row write
        action: What the trigger does when its condition holds
        granularity: ROW or STATEMENT
        condition: Optional predicate (the WHEN clause); None always fires
        description: Human-readable description
        enabled: Disabled triggers are skipped by the evaluator
    """

    name: str
    table: str
    on: list[Operation]
    timing: Timing
    action: Action
    granularity: Granularity = Granularity.ROW
    condition: Condition | None = None
    description: str = ""
    enabled: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.on, Operation):
            self.on = [self.on]
        if not self.on:
            raise ValueError(f"Trigger '{self.name}' must fire on at least one operation")

        if isinstance(self.action, MutateNewRow):
            if self.timing != Timing.BEFORE or self.granularity != Granularity.ROW:
                raise ValueError(
                    f"Trigger '{self.name}': new row values can only be assigned "
                    "by BEFORE ROW triggers"
                )
            if Operation.DELETE in self.on:
                raise ValueError(
                    f"Trigger '{self.name}': DELETE events have no new row to assign"
                )

        if isinstance(self.action, EmitSideEffect):
            if self.action.kind == SideEffectKind.INCREMENT and not self.action.match:
                raise ValueError(
                    f"Trigger '{self.name}': increment side effects need a match"
                )

    def fires_on(self, event: MutationEvent) -> bool:
        """Check table, operation and granularity against the event."""
        return (
            self.enabled
            and self.table == event.table
            and event.operation in self.on
            and self.granularity == event.granularity
        )


@dataclass(frozen=True)
class SideEffect:
    """An auxiliary write for the engine to apply."""

    target_table: str
    values: dict[str, Any]
    kind: SideEffectKind = SideEffectKind.INSERT
    match: dict[str, Any] | None = None
    rule_name: str = ""


@dataclass
class EvaluationResult:
    """Outcome of evaluating one MutationEvent.

    Attributes:
        status: APPLIED or REJECTED
        message: Rejection message (REJECTED only)
        rule_name: Trigger that rejected (REJECTED only)
        new_row: Final new row after BEFORE triggers
        side_effects: Writes for the engine (always empty when REJECTED)
        fired: Names of triggers whose condition held, in firing order
        errors: AFTER trigger failures, reported but not fatal
    """

    status: ResultStatus
    message: str | None = None
    rule_name: str | None = None
    new_row: dict[str, Any] | None = None
    side_effects: list[SideEffect] = field(default_factory=list)
    fired: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def rejected(
        cls, message: str, rule_name: str, fired: list[str] | None = None
    ) -> "EvaluationResult":
        return cls(
            status=ResultStatus.REJECTED,
            message=message,
            rule_name=rule_name,
            fired=fired or [],
        )

    @property
    def is_applied(self) -> bool:
        return self.status == ResultStatus.APPLIED

    @property
    def is_rejected(self) -> bool:
        return self.status == ResultStatus.REJECTED

    def raise_for_status(self) -> None:
        """Raise RuleViolation if the event was rejected."""
        if self.is_rejected:
            raise RuleViolation(self.message or "", self.rule_name)
