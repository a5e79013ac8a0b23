"""TriggerLab row and statement trigger system.

Triggers run at fixed points around a table mutation:
- BEFORE: before the row is written (can reject, can assign new row values)
- AFTER: once the row is written (emits side effects; failures are reported)

Usage:
    from triggerlab.triggers import (
        MutationEvent, Operation, Reject, Timing, TriggerEvaluator, TriggerRule,
        expression_condition,
    )

    rule = TriggerRule(
        name="trg_min_salary",
        table="employees",
        on=[Operation.INSERT],
        timing=Timing.BEFORE,
        condition=expression_condition("new.salary < 3000"),
        action=Reject("ERROR: Salary below minimum threshold."),
    )
    event = MutationEvent("employees", Operation.INSERT, new_row={"salary": 2500})
    result = TriggerEvaluator().evaluate(event, [rule])
"""

from triggerlab.triggers.conditions import (
    expression_condition,
    expression_value,
    interpolate_message,
)
from triggerlab.triggers.evaluator import TriggerEvaluator
from triggerlab.triggers.registry import TriggerRegistry
from triggerlab.triggers.types import (
    Action,
    EmitSideEffect,
    EvaluationResult,
    Granularity,
    MutateNewRow,
    MutationEvent,
    Operation,
    Reject,
    ResultStatus,
    RuleViolation,
    SideEffect,
    SideEffectKind,
    Timing,
    TriggerCascadeError,
    TriggerRule,
)

__all__ = [
    "Action",
    "EmitSideEffect",
    "EvaluationResult",
    "Granularity",
    "MutateNewRow",
    "MutationEvent",
    "Operation",
    "Reject",
    "ResultStatus",
    "RuleViolation",
    "SideEffect",
    "SideEffectKind",
    "Timing",
    "TriggerCascadeError",
    "TriggerEvaluator",
    "TriggerRegistry",
    "TriggerRule",
    "expression_condition",
    "expression_value",
    "interpolate_message",
]
