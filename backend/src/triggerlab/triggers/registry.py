"""Trigger registry for TriggerLab.

Keeps trigger rules in registration order. When several triggers fire on
the same table, operation and timing, registration order decides which runs
first.
"""

from triggerlab.triggers.types import Operation, TriggerRule


class TriggerRegistry:
    """Ordered store of trigger rules.

    Example:
        registry = TriggerRegistry()
        registry.register(TriggerRule(name="trg_log", table="employees", ...))
        rules = registry.rules_for("employees", Operation.INSERT)
    """

    def __init__(self) -> None:
        self._rules: list[TriggerRule] = []

    def register(self, rule: TriggerRule, replace: bool = False) -> None:
        """Register a trigger rule.

        Args:
            rule: The rule to add
            replace: Replace an existing rule of the same name in place
                (CREATE OR REPLACE keeps the original firing position)

        Raises:
            ValueError: If the name is taken and replace is False
        """
        for index, existing in enumerate(self._rules):
            if existing.name == rule.name:
                if not replace:
                    raise ValueError(f"Trigger '{rule.name}' is already registered")
                self._rules[index] = rule
                return
        self._rules.append(rule)

    def get(self, name: str) -> TriggerRule:
        """Get a registered rule by name.

        Raises:
            ValueError: If the trigger is not registered
        """
        for rule in self._rules:
            if rule.name == name:
                return rule
        raise ValueError(f"Trigger '{name}' is not registered")

    def drop(self, name: str) -> None:
        """Remove a rule (DROP TRIGGER)."""
        self._rules.remove(self.get(name))

    def enable(self, name: str) -> None:
        self.get(name).enabled = True

    def disable(self, name: str) -> None:
        self.get(name).enabled = False

    def is_registered(self, name: str) -> bool:
        """Check if a trigger is registered."""
        return any(rule.name == name for rule in self._rules)

    def list_registered(self) -> list[str]:
        """List trigger names in registration order."""
        return [rule.name for rule in self._rules]

    def rules_for(self, table: str, operation: Operation) -> list[TriggerRule]:
        """Rules on ``table`` that fire for ``operation``, in registration order.

        Disabled rules are included; the evaluator skips them.
        """
        return [
            rule for rule in self._rules
            if rule.table == table and operation in rule.on
        ]

    def drop_table(self, table: str) -> list[str]:
        """Remove every rule owned by ``table``. Returns the dropped names."""
        dropped = [rule.name for rule in self._rules if rule.table == table]
        self._rules = [rule for rule in self._rules if rule.table != table]
        return dropped

    def clear(self) -> None:
        """Clear all registrations. Primarily for testing."""
        self._rules.clear()

    def __len__(self) -> int:
        return len(self._rules)
