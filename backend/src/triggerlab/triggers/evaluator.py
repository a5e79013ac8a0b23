"""Trigger evaluation for TriggerLab.

Runs the BEFORE triggers of a mutation event, then the AFTER triggers,
and reports whether the change may be applied, the final new row and the
side effects for the engine to write.
"""

import logging
from typing import Iterable

from triggerlab.triggers.types import (
    EmitSideEffect,
    EvaluationResult,
    MutateNewRow,
    MutationEvent,
    Reject,
    ResultStatus,
    SideEffect,
    Timing,
    TriggerRule,
)

logger = logging.getLogger(__name__)


class TriggerEvaluator:
    """Evaluates trigger rules against one mutation event.

    BEFORE triggers run first, then AFTER triggers, each group in
    registration order. A BEFORE rejection stops evaluation; assignments to
    the new row are visible to every later trigger.

    The evaluator holds no state between calls.
    """

    def evaluate(
        self, event: MutationEvent, rules: Iterable[TriggerRule]
    ) -> EvaluationResult:
        """Evaluate ``rules`` against ``event``.

        Args:
            event: The mutation being evaluated. ``event.new_row`` is
                modified in place by MutateNewRow actions.
            rules: Candidate rules in registration order. Rules for other
                tables, operations or granularities are ignored.

        Returns:
            A REJECTED result carrying the message, or an APPLIED result with
            the final new row and the side effects to write.
        """
        applicable = [rule for rule in rules if rule.fires_on(event)]
        before = [rule for rule in applicable if rule.timing == Timing.BEFORE]
        after = [rule for rule in applicable if rule.timing == Timing.AFTER]

        fired: list[str] = []
        pending: list[SideEffect] = []

        for rule in before:
            try:
                if not self._condition_holds(rule, event):
                    continue
                fired.append(rule.name)
                action = rule.action

                if isinstance(action, Reject):
                    message = action.render(event)
                    logger.info(
                        "Trigger '%s' rejected %s on %s: %s",
                        rule.name,
                        event.operation.value,
                        event.table,
                        message,
                    )
                    return EvaluationResult.rejected(message, rule.name, fired)

                if isinstance(action, MutateNewRow):
                    event.new_row[action.column] = action.value_fn(event)
                elif isinstance(action, EmitSideEffect):
                    # Held back until no BEFORE trigger can reject the change
                    pending.append(action.resolve(event, rule.name))
            except Exception as e:
                logger.warning("Trigger '%s' failed: %s", rule.name, e)
                return EvaluationResult.rejected(
                    f"Trigger '{rule.name}' failed: {e}", rule.name, fired
                )

        result = EvaluationResult(
            status=ResultStatus.APPLIED,
            new_row=event.new_row,
            side_effects=pending,
            fired=fired,
        )

        for rule in after:
            try:
                if not self._condition_holds(rule, event):
                    continue
                result.fired.append(rule.name)
                action = rule.action

                if isinstance(action, EmitSideEffect):
                    result.side_effects.append(action.resolve(event, rule.name))
                elif isinstance(action, Reject):
                    # The row is already written; report instead of undoing it
                    message = action.render(event)
                    logger.error(
                        "AFTER trigger '%s' rejected an applied change: %s",
                        rule.name,
                        message,
                    )
                    result.errors.append(f"{rule.name}: {message}")
            except Exception as e:
                logger.error("AFTER trigger '%s' failed: %s", rule.name, e)
                result.errors.append(f"{rule.name}: {e}")

        return result

    def _condition_holds(self, rule: TriggerRule, event: MutationEvent) -> bool:
        if rule.condition is None:
            return True
        return bool(rule.condition(event))
