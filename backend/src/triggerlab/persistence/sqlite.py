"""SQLite statement executor with trigger support.

Stands in for the relational engine around the trigger evaluator: it turns
INSERT/UPDATE/DELETE statements into mutation events, fires statement-level
triggers once and row-level triggers once per affected row, writes the
rows and applies the side effects the triggers emit.

Every statement runs in its own transaction. A rejection anywhere in the
statement rolls the whole statement back and raises RuleViolation.
"""

import itertools
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping

from triggerlab.metadata.loader import TableDefinition
from triggerlab.triggers import (
    EvaluationResult,
    MutationEvent,
    Operation,
    RuleViolation,
    SideEffect,
    SideEffectKind,
    Timing,
    TriggerCascadeError,
    TriggerEvaluator,
    TriggerRegistry,
    TriggerRule,
)

logger = logging.getLogger(__name__)

# Oracle's limit on cascading trigger levels
MAX_CASCADE_DEPTH = 32


class DropResult(Enum):
    DROPPED = "dropped"
    NOT_FOUND = "not_found"


@dataclass
class StatementResult:
    """What one DML statement did.

    Attributes:
        operation: The statement type
        table: Target table
        rows_affected: Rows written by the statement itself
        fired: Triggers that fired, including those on side-effect tables
        side_effects: Side effects that were applied
        errors: Reported failures (AFTER triggers, side-effect writes)
    """

    operation: Operation
    table: str
    rows_affected: int = 0
    fired: list[str] = field(default_factory=list)
    side_effects: list[SideEffect] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# (rowid, old_row, new_row) for each row a statement touches
_Target = tuple[int | None, Mapping[str, Any] | None, dict[str, Any] | None]


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _to_storage(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


class SQLiteEngine:
    """Executes DML against SQLite and fires registered triggers."""

    def __init__(
        self,
        db_path: Path | str = ":memory:",
        registry: TriggerRegistry | None = None,
        evaluator: TriggerEvaluator | None = None,
    ):
        self.db_path = str(db_path)
        self.registry = registry or TriggerRegistry()
        self.evaluator = evaluator or TriggerEvaluator()
        self.conn: sqlite3.Connection | None = None
        self._savepoints = itertools.count(1)

    def connect(self) -> None:
        """Establish database connection.

        Autocommit mode: statements manage their own transactions.
        """
        self.conn = sqlite3.connect(self.db_path, isolation_level=None)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "SQLiteEngine":
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # DDL
    # -------------------------------------------------------------------------

    def column_names(self, table: str) -> list[str]:
        """Column names in declaration order."""
        return [row["name"] for row in self._columns(table)]

    def table_exists(self, name: str) -> bool:
        row = self._conn().execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", [name]
        ).fetchone()
        return row is not None

    def create_table(self, table: TableDefinition) -> None:
        """Create a table. Raises sqlite3.OperationalError if it exists."""
        columns = []
        for column in table.columns:
            col_def = f"{_quote(column.name)} {column.storage_type}"
            if column.primary_key:
                col_def += " PRIMARY KEY"
            if not column.nullable:
                col_def += " NOT NULL"
            if column.default is not None:
                col_def += f" DEFAULT {self._literal(column.default)}"
            columns.append(col_def)

        self._conn().execute(f"CREATE TABLE {_quote(table.name)} ({', '.join(columns)})")
        logger.info("Created table %s", table.name)

    def drop_table(self, name: str) -> DropResult:
        """Drop a table and its triggers if it exists.

        Checks the catalogue first, so a missing table is a NOT_FOUND result
        rather than a suppressed error.
        """
        if not self.table_exists(name):
            return DropResult.NOT_FOUND

        self._conn().execute(f"DROP TABLE {_quote(name)}")
        dropped = self.registry.drop_table(name)
        logger.info("Dropped table %s (triggers: %s)", name, dropped or "none")
        return DropResult.DROPPED

    def register_trigger(self, rule: TriggerRule, replace: bool = False) -> None:
        """Attach a trigger to an existing table.

        Raises:
            ValueError: If the table does not exist or the name is taken
        """
        if not self.table_exists(rule.table):
            raise ValueError(
                f"Cannot create trigger '{rule.name}': table '{rule.table}' does not exist"
            )
        self.registry.register(rule, replace=replace)
        logger.info(
            "Registered trigger %s (%s %s on %s)",
            rule.name,
            rule.timing.value,
            "/".join(op.value for op in rule.on),
            rule.table,
        )

    # -------------------------------------------------------------------------
    # DML
    # -------------------------------------------------------------------------

    def insert(self, table: str, values: Mapping[str, Any]) -> StatementResult:
        """INSERT one row."""
        return self._run_statement(
            table,
            Operation.INSERT,
            lambda result: self._insert_rows(table, [values], 0, result),
        )

    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        where: Mapping[str, Any] | None = None,
    ) -> StatementResult:
        """UPDATE matching rows, setting ``values``."""
        self._check_columns(table, values)
        return self._run_statement(
            table,
            Operation.UPDATE,
            lambda result: self._update_rows(
                table, where or {}, lambda old: dict(values), 0, result
            ),
        )

    def delete(
        self, table: str, where: Mapping[str, Any] | None = None
    ) -> StatementResult:
        """DELETE matching rows."""
        return self._run_statement(
            table,
            Operation.DELETE,
            lambda result: self._delete_rows(table, where or {}, 0, result),
        )

    def select(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch matching rows as dicts."""
        self._columns(table)
        where = where or {}
        clause, params = self._where_clause(table, where)
        sql = f"SELECT * FROM {_quote(table)}{clause}"
        if order_by:
            self._check_columns(table, [order_by])
            sql += f" ORDER BY {_quote(order_by)}"
        return [dict(row) for row in self._conn().execute(sql, params)]

    # -------------------------------------------------------------------------
    # Statement execution
    # -------------------------------------------------------------------------

    def _run_statement(
        self,
        table: str,
        operation: Operation,
        body: Callable[[StatementResult], None],
    ) -> StatementResult:
        conn = self._conn()
        result = StatementResult(operation=operation, table=table)

        conn.execute("BEGIN")
        try:
            body(result)
        except BaseException:
            conn.execute("ROLLBACK")
            logger.info("%s on %s rolled back", operation.value.upper(), table)
            raise
        conn.execute("COMMIT")

        logger.debug(
            "%s on %s: %d row(s), %d side effect(s)",
            operation.value.upper(),
            table,
            result.rows_affected,
            len(result.side_effects),
        )
        return result

    def _insert_rows(
        self,
        table: str,
        rows: list[Mapping[str, Any]],
        depth: int,
        result: StatementResult,
    ) -> None:
        targets: list[_Target] = []
        for values in rows:
            self._check_columns(table, values)
            targets.append((None, None, self._with_identity(table, dict(values))))
        self._fire(table, Operation.INSERT, targets, depth, result)

    def _update_rows(
        self,
        table: str,
        where: Mapping[str, Any],
        changes: Callable[[Mapping[str, Any]], dict[str, Any]],
        depth: int,
        result: StatementResult,
    ) -> None:
        targets: list[_Target] = []
        for rowid, old in self._matching_rows(table, where):
            targets.append((rowid, old, {**old, **changes(old)}))
        self._fire(table, Operation.UPDATE, targets, depth, result)

    def _delete_rows(
        self,
        table: str,
        where: Mapping[str, Any],
        depth: int,
        result: StatementResult,
    ) -> None:
        targets: list[_Target] = [
            (rowid, old, None) for rowid, old in self._matching_rows(table, where)
        ]
        self._fire(table, Operation.DELETE, targets, depth, result)

    def _fire(
        self,
        table: str,
        operation: Operation,
        targets: list[_Target],
        depth: int,
        result: StatementResult,
    ) -> None:
        """Run one statement.

        Order: BEFORE statement triggers, then per row BEFORE -> write ->
        AFTER, then AFTER statement triggers once every row is written.
        """
        if depth >= MAX_CASCADE_DEPTH:
            raise TriggerCascadeError(
                f"Maximum trigger cascade depth ({MAX_CASCADE_DEPTH}) exceeded "
                f"at {operation.value} on {table}"
            )

        rules = self.registry.rules_for(table, operation)
        before = [rule for rule in rules if rule.timing == Timing.BEFORE]
        after = [rule for rule in rules if rule.timing == Timing.AFTER]

        before_statement = self.evaluator.evaluate(
            MutationEvent.for_statement(table, operation), before
        )
        self._record(before_statement, result)
        self._apply_side_effects(before_statement.side_effects, depth, result)

        for rowid, old, new in targets:
            event = MutationEvent(table, operation, old_row=old, new_row=new)
            row_result = self.evaluator.evaluate(event, rules)
            self._record(row_result, result)

            self._write_row(table, operation, rowid, row_result.new_row)
            if depth == 0:
                result.rows_affected += 1

            self._apply_side_effects(row_result.side_effects, depth, result)

        after_statement = self.evaluator.evaluate(
            MutationEvent.for_statement(table, operation), after
        )
        self._record(after_statement, result)
        self._apply_side_effects(after_statement.side_effects, depth, result)

    def _record(self, evaluation: EvaluationResult, result: StatementResult) -> None:
        result.fired.extend(evaluation.fired)
        evaluation.raise_for_status()
        result.errors.extend(evaluation.errors)

    def _write_row(
        self,
        table: str,
        operation: Operation,
        rowid: int | None,
        new_row: dict[str, Any] | None,
    ) -> None:
        conn = self._conn()

        if operation == Operation.DELETE:
            conn.execute(f"DELETE FROM {_quote(table)} WHERE rowid = ?", [rowid])
            return

        self._check_columns(table, new_row)
        columns = list(new_row)
        values = [_to_storage(new_row[c]) for c in columns]

        if operation == Operation.INSERT:
            sql = (
                f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})"
            )
            conn.execute(sql, values)
        else:
            set_clause = ", ".join(f"{_quote(c)} = ?" for c in columns)
            conn.execute(
                f"UPDATE {_quote(table)} SET {set_clause} WHERE rowid = ?",
                [*values, rowid],
            )

    def _apply_side_effects(
        self, effects: list[SideEffect], depth: int, result: StatementResult
    ) -> None:
        """Apply side effects, each inside its own savepoint.

        A failing side effect is rolled back and reported; the row that
        caused it stays written.
        """
        conn = self._conn()
        for effect in effects:
            savepoint = f"side_effect_{next(self._savepoints)}"
            # Cascaded triggers report here; merged only once the savepoint is released
            nested = StatementResult(operation=result.operation, table=effect.target_table)
            conn.execute(f"SAVEPOINT {savepoint}")
            try:
                if effect.kind == SideEffectKind.INCREMENT:
                    self._apply_increment(effect, depth + 1, nested)
                else:
                    self._insert_rows(effect.target_table, [effect.values], depth + 1, nested)
            except TriggerCascadeError:
                raise
            except (RuleViolation, ValueError, sqlite3.Error) as e:
                conn.execute(f"ROLLBACK TO {savepoint}")
                conn.execute(f"RELEASE {savepoint}")
                logger.error(
                    "Side effect of trigger '%s' on %s failed: %s",
                    effect.rule_name,
                    effect.target_table,
                    e,
                )
                result.errors.append(f"{effect.rule_name}: {e}")
                continue

            conn.execute(f"RELEASE {savepoint}")
            result.side_effects.append(effect)
            result.side_effects.extend(nested.side_effects)
            result.fired.extend(nested.fired)
            result.errors.extend(nested.errors)

    def _apply_increment(
        self, effect: SideEffect, depth: int, result: StatementResult
    ) -> None:
        """Add ``effect.values`` to matching rows, inserting when none match."""
        table = effect.target_table
        match = effect.match or {}
        self._check_columns(table, effect.values)

        if not self._matching_rows(table, match):
            self._insert_rows(table, [{**match, **effect.values}], depth, result)
            return

        def add(old: Mapping[str, Any]) -> dict[str, Any]:
            return {
                column: (old.get(column) or 0) + delta
                for column, delta in effect.values.items()
            }

        self._update_rows(table, match, add, depth, result)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise RuntimeError("Database not connected")
        return self.conn

    def _columns(self, table: str) -> list[sqlite3.Row]:
        rows = self._conn().execute(f"PRAGMA table_info({_quote(table)})").fetchall()
        if not rows:
            raise ValueError(f"Table '{table}' does not exist")
        return rows

    def _check_columns(self, table: str, columns: Any) -> None:
        known = {row["name"] for row in self._columns(table)}
        unknown = [c for c in columns if c not in known]
        if unknown:
            raise ValueError(f"Table '{table}' has no column(s): {', '.join(unknown)}")

    def _with_identity(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Assign an INTEGER PRIMARY KEY before triggers see the row.

        AFTER triggers then read the generated key from the new row.
        """
        for column in self._columns(table):
            if column["pk"] and column["type"].upper() == "INTEGER":
                name = column["name"]
                if row.get(name) is None:
                    (next_id,) = self._conn().execute(
                        f"SELECT COALESCE(MAX({_quote(name)}), 0) + 1 FROM {_quote(table)}"
                    ).fetchone()
                    row[name] = next_id
                break
        return row

    def _where_clause(
        self, table: str, where: Mapping[str, Any]
    ) -> tuple[str, list[Any]]:
        if not where:
            return "", []
        self._check_columns(table, where)
        conditions = []
        params: list[Any] = []
        for column, value in where.items():
            if value is None:
                conditions.append(f"{_quote(column)} IS NULL")
            else:
                conditions.append(f"{_quote(column)} = ?")
                params.append(_to_storage(value))
        return " WHERE " + " AND ".join(conditions), params

    def _matching_rows(
        self, table: str, where: Mapping[str, Any]
    ) -> list[tuple[int, dict[str, Any]]]:
        clause, params = self._where_clause(table, where)
        cursor = self._conn().execute(
            f"SELECT rowid AS __rowid__, * FROM {_quote(table)}{clause} ORDER BY rowid",
            params,
        )
        matches = []
        for row in cursor:
            data = dict(row)
            matches.append((data.pop("__rowid__"), data))
        return matches

    @staticmethod
    def _literal(value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
        return "'" + str(value).replace("'", "''") + "'"
