"""Runs a lab script against a SQLiteEngine and prints what happens.

Output mimics a SQL*Plus session with DBMS_OUTPUT enabled: one line per
statement outcome, rule violations printed as ``Error: <message>``, and
SELECT results as a small text table.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable

from triggerlab.metadata.loader import LabModel, StepConfig, build_rule
from triggerlab.persistence.sqlite import DropResult, SQLiteEngine
from triggerlab.triggers import RuleViolation

logger = logging.getLogger(__name__)


@dataclass
class LabReport:
    """Outcome of one lab run.

    Attributes:
        lab: Lab name
        lines: Everything printed, in order
        violations: Rule violation messages raised by steps
        warnings: Reported AFTER trigger / side-effect failures
        failures: Statements that failed for reasons other than a trigger
    """

    lab: str
    lines: list[str] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


class LabRunner:
    """Sets up a lab's tables and triggers, then runs its steps.

    Usage:
        with SQLiteEngine() as engine:
            report = LabRunner(engine, echo=click.echo).run(lab)
    """

    def __init__(self, engine: SQLiteEngine, echo: Callable[[str], Any] | None = None):
        self.engine = engine
        self.echo = echo

    def run(self, lab: LabModel) -> LabReport:
        report = LabReport(lab=lab.name)
        self._out(report, f"== {lab.title} ==")

        self.setup(lab)
        for step in lab.steps:
            if step.label:
                self._out(report, step.label)
            self._run_step(step, report)

        return report

    def setup(self, lab: LabModel) -> None:
        """Recreate the lab's tables and register its triggers.

        Safe to repeat: tables left over from an earlier run are dropped first.
        """
        for table in lab.tables:
            if self.engine.drop_table(table.name) == DropResult.NOT_FOUND:
                logger.debug("Table %s not present, nothing to drop", table.name)
            self.engine.create_table(table)

        for config in lab.triggers:
            self.engine.register_trigger(build_rule(config), replace=True)

    def _run_step(self, step: StepConfig, report: LabReport) -> None:
        if step.kind == "print":
            self._out(report, step.text)
            return

        # Like SQL*Plus, a failed statement is reported and the script goes on
        try:
            if step.kind == "select":
                rows = self.engine.select(step.table, step.where, step.order_by)
                for line in format_rows(rows, self.engine.column_names(step.table)):
                    self._out(report, line)
                return
            if step.kind == "insert":
                result = self.engine.insert(step.table, step.values)
                verb = "inserted into"
            elif step.kind == "update":
                result = self.engine.update(step.table, step.values, step.where)
                verb = "updated in"
            else:
                result = self.engine.delete(step.table, step.where)
                verb = "deleted from"
        except RuleViolation as e:
            report.violations.append(e.message)
            self._out(report, f"Error: {e.message}")
            return
        except (ValueError, sqlite3.Error) as e:
            logger.warning("%s step on %s failed: %s", step.kind, step.table, e)
            report.failures.append(str(e))
            self._out(report, f"Error: {e}")
            return

        self._out(report, f"{result.rows_affected} row(s) {verb} {step.table}.")
        for error in result.errors:
            report.warnings.append(error)
            self._out(report, f"Warning: {error}")

    def _out(self, report: LabReport, line: str) -> None:
        report.lines.append(line)
        if self.echo is not None:
            self.echo(line)


def format_rows(rows: list[dict[str, Any]], columns: list[str]) -> list[str]:
    """Render rows as a fixed-width text table."""
    if not rows:
        return ["no rows selected"]

    cells = [["" if row.get(c) is None else str(row.get(c)) for c in columns] for row in rows]
    widths = [
        max(len(column), *(len(r[i]) for r in cells))
        for i, column in enumerate(columns)
    ]

    def line(values: list[str]) -> str:
        return " | ".join(v.ljust(w) for v, w in zip(values, widths)).rstrip()

    lines = [line([c.upper() for c in columns])]
    lines.append("-+-".join("-" * w for w in widths))
    lines.extend(line(r) for r in cells)
    return lines
