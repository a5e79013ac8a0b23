"""Tests for the SQLite statement executor and database configuration."""

import logging
from pathlib import Path

import pytest

from triggerlab.metadata import ColumnDefinition, TableDefinition
from triggerlab.persistence import (
    MAX_CASCADE_DEPTH,
    DatabaseConfig,
    DropResult,
    SQLiteEngine,
    create_engine,
    resolve_metadata_path,
)
from triggerlab.triggers import (
    EmitSideEffect,
    Granularity,
    MutateNewRow,
    Operation,
    Reject,
    RuleViolation,
    SideEffectKind,
    Timing,
    TriggerCascadeError,
    TriggerRule,
    expression_condition,
    expression_value,
)


def make_table(name, *columns, pk="id"):
    """Table whose first column is an INTEGER PRIMARY KEY named ``pk``."""
    return TableDefinition(
        name=name,
        columns=[ColumnDefinition(pk, "integer", primary_key=True)]
        + [ColumnDefinition(c, t) for c, t in columns],
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine():
    with SQLiteEngine() as engine:
        yield engine


@pytest.fixture
def orders(engine):
    engine.create_table(make_table("orders", ("status", "text"), pk="order_id"))
    engine.create_table(
        make_table("order_update_counter", ("update_count", "integer"), pk="counter_id")
    )
    engine.create_table(make_table("audit", ("note", "text"), ("order_id", "integer")))
    for status in ("NEW", "NEW", "NEW"):
        engine.insert("orders", {"status": status})
    return engine


# =============================================================================
# DDL tests
# =============================================================================


class TestTables:
    def test_create_and_drop(self, engine):
        engine.create_table(make_table("t", ("name", "text")))
        assert engine.table_exists("t")
        assert engine.column_names("t") == ["id", "name"]

        assert engine.drop_table("t") == DropResult.DROPPED
        assert not engine.table_exists("t")

    def test_drop_missing_table(self, engine):
        assert engine.drop_table("nowhere") == DropResult.NOT_FOUND

    def test_drop_removes_triggers(self, engine):
        engine.create_table(make_table("t"))
        engine.register_trigger(
            TriggerRule(name="trg", table="t", on=[Operation.INSERT],
                        timing=Timing.BEFORE, action=Reject("no"))
        )
        engine.drop_table("t")
        assert not engine.registry.is_registered("trg")

    def test_trigger_needs_existing_table(self, engine):
        rule = TriggerRule(name="trg", table="missing", on=[Operation.INSERT],
                           timing=Timing.BEFORE, action=Reject("no"))
        with pytest.raises(ValueError, match="does not exist"):
            engine.register_trigger(rule)

    def test_column_default(self, engine):
        engine.create_table(
            TableDefinition(
                name="c",
                columns=[
                    ColumnDefinition("id", "integer", primary_key=True),
                    ColumnDefinition("n", "integer", default=0),
                ],
            )
        )
        engine.insert("c", {})
        assert engine.select("c") == [{"id": 1, "n": 0}]

    def test_not_connected(self):
        with pytest.raises(RuntimeError, match="not connected"):
            SQLiteEngine().select("t")


# =============================================================================
# DML tests
# =============================================================================


class TestStatements:
    def test_identity_assigned(self, orders):
        assert [r["order_id"] for r in orders.select("orders", order_by="order_id")] == [1, 2, 3]

    def test_explicit_key_kept(self, engine):
        engine.create_table(make_table("t"))
        engine.insert("t", {"id": 10})
        engine.insert("t", {})
        assert [r["id"] for r in engine.select("t", order_by="id")] == [10, 11]

    def test_update_where(self, orders):
        result = orders.update("orders", {"status": "SHIPPED"}, {"order_id": 2})
        assert result.rows_affected == 1
        assert orders.select("orders", {"status": "SHIPPED"}) == [
            {"order_id": 2, "status": "SHIPPED"}
        ]

    def test_delete_all(self, orders):
        assert orders.delete("orders").rows_affected == 3
        assert orders.select("orders") == []

    def test_where_null(self, engine):
        engine.create_table(make_table("t", ("name", "text")))
        engine.insert("t", {"name": None})
        engine.insert("t", {"name": "x"})
        assert engine.select("t", {"name": None}) == [{"id": 1, "name": None}]

    def test_unknown_column(self, engine):
        engine.create_table(make_table("t"))
        with pytest.raises(ValueError, match="no column"):
            engine.insert("t", {"bogus": 1})
        assert engine.select("t") == []

    def test_unknown_table(self, engine):
        with pytest.raises(ValueError, match="does not exist"):
            engine.select("nowhere")


# =============================================================================
# Trigger firing tests
# =============================================================================


class TestTriggerFiring:
    def test_after_insert_sees_generated_key(self, engine):
        engine.create_table(make_table("employees", ("emp_name", "text"), pk="emp_id"))
        engine.create_table(make_table("employee_log", ("emp_id", "integer"), pk="log_id"))
        engine.register_trigger(
            TriggerRule(
                name="trg_log", table="employees", on=[Operation.INSERT], timing=Timing.AFTER,
                action=EmitSideEffect("employee_log", {"emp_id": expression_value("new.emp_id")}),
            )
        )

        result = engine.insert("employees", {"emp_name": "John Doe"})

        assert result.rows_affected == 1
        assert result.fired == ["trg_log"]
        assert engine.select("employee_log") == [{"log_id": 1, "emp_id": 1}]

    def test_before_mutation_is_written(self, engine):
        engine.create_table(make_table("products", ("price", "number"), ("last_modified", "timestamp")))
        engine.register_trigger(
            TriggerRule(
                name="trg_stamp", table="products", on=[Operation.UPDATE], timing=Timing.BEFORE,
                action=MutateNewRow("last_modified", expression_value("systimestamp()")),
            )
        )
        engine.insert("products", {"price": 1200})
        assert engine.select("products")[0]["last_modified"] is None

        engine.update("products", {"price": 1100}, {"id": 1})

        row = engine.select("products")[0]
        assert row["price"] == 1100
        assert isinstance(row["last_modified"], str)

    def test_rejection_rolls_back_whole_statement(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_no_third", table="orders", on=[Operation.UPDATE], timing=Timing.BEFORE,
                condition=expression_condition("old.order_id = 3"),
                action=Reject("order 3 is frozen"),
            )
        )
        with pytest.raises(RuleViolation, match="order 3 is frozen") as exc_info:
            orders.update("orders", {"status": "SHIPPED"})

        assert exc_info.value.rule_name == "trg_no_third"
        assert {r["status"] for r in orders.select("orders")} == {"NEW"}

    def test_rejected_delete_keeps_rows(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_no_delete", table="orders", on=[Operation.DELETE], timing=Timing.BEFORE,
                action=Reject("ERROR: Deleting records from orders is not allowed."),
            )
        )
        with pytest.raises(RuleViolation):
            orders.delete("orders", {"order_id": 1})
        assert len(orders.select("orders")) == 3

    def test_row_and_statement_multiplicity(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_row", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect("audit", {"note": "row",
                                                "order_id": expression_value("new.order_id")}),
            )
        )
        orders.register_trigger(
            TriggerRule(
                name="trg_stmt", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                granularity=Granularity.STATEMENT,
                action=EmitSideEffect("audit", {"note": "statement"}),
            )
        )

        result = orders.update("orders", {"status": "SHIPPED"})

        assert result.rows_affected == 3
        notes = [r["note"] for r in orders.select("audit", order_by="id")]
        assert notes.count("row") == 3
        assert notes.count("statement") == 1
        assert result.fired.count("trg_stmt") == 1

    def test_statement_trigger_fires_for_zero_rows(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_stmt", table="orders", on=[Operation.DELETE], timing=Timing.BEFORE,
                granularity=Granularity.STATEMENT, action=Reject("no deletes"),
            )
        )
        with pytest.raises(RuleViolation, match="no deletes"):
            orders.delete("orders", {"order_id": 99})

    def test_update_counter(self, orders):
        orders.insert("order_update_counter", {"counter_id": 1, "update_count": 0})
        orders.register_trigger(
            TriggerRule(
                name="trg_count", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect(
                    "order_update_counter", {"update_count": 1},
                    kind=SideEffectKind.INCREMENT, match={"counter_id": 1},
                ),
            )
        )

        orders.update("orders", {"status": "SHIPPED"}, {"order_id": 1})
        orders.update("orders", {"status": "SHIPPED"}, {"order_id": 2})
        result = orders.update("orders", {"status": "DELIVERED"}, {"order_id": 1})

        assert result.rows_affected == 1
        assert orders.select("order_update_counter") == [{"counter_id": 1, "update_count": 3}]

    def test_increment_inserts_missing_row(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_count", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect(
                    "order_update_counter", {"update_count": 1},
                    kind=SideEffectKind.INCREMENT, match={"counter_id": 1},
                ),
            )
        )
        orders.update("orders", {"status": "SHIPPED"})
        assert orders.select("order_update_counter") == [{"counter_id": 1, "update_count": 3}]

    def test_failed_side_effect_is_reported(self, orders, caplog):
        orders.register_trigger(
            TriggerRule(
                name="trg_bad_log", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect("audit", {"missing_column": 1}),
            )
        )
        orders.register_trigger(
            TriggerRule(
                name="trg_good_log", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect("audit", {"note": "ok"}),
            )
        )

        with caplog.at_level(logging.ERROR):
            result = orders.update("orders", {"status": "SHIPPED"}, {"order_id": 1})

        assert result.rows_affected == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("trg_bad_log:")
        assert "missing_column" in caplog.text
        assert orders.select("orders", {"order_id": 1})[0]["status"] == "SHIPPED"
        assert [r["note"] for r in orders.select("audit")] == ["ok"]

    def test_side_effect_rejected_by_target_trigger(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_audit_closed", table="audit", on=[Operation.INSERT],
                timing=Timing.BEFORE, action=Reject("audit is closed"),
            )
        )
        orders.register_trigger(
            TriggerRule(
                name="trg_log", table="orders", on=[Operation.DELETE], timing=Timing.AFTER,
                action=EmitSideEffect("audit", {"note": "deleted"}),
            )
        )

        result = orders.delete("orders", {"order_id": 1})

        assert result.rows_affected == 1
        assert result.errors == ["trg_log: audit is closed"]
        assert orders.select("audit") == []

    def test_cascade_depth_limit(self, engine):
        engine.create_table(make_table("loop", ("n", "integer")))
        engine.register_trigger(
            TriggerRule(
                name="trg_loop", table="loop", on=[Operation.INSERT], timing=Timing.AFTER,
                action=EmitSideEffect("loop", {"n": expression_value("new.n + 1")}),
            )
        )

        with pytest.raises(TriggerCascadeError, match="cascade depth"):
            engine.insert("loop", {"n": 0})
        assert engine.select("loop") == []

    @pytest.mark.parametrize(
        "stop_below, expected_rows",
        [(MAX_CASCADE_DEPTH - 1, MAX_CASCADE_DEPTH), (MAX_CASCADE_DEPTH, None)],
    )
    def test_cascade_allows_exactly_max_levels(self, engine, stop_below, expected_rows):
        engine.create_table(make_table("chain", ("n", "integer")))
        engine.register_trigger(
            TriggerRule(
                name="trg_chain", table="chain", on=[Operation.INSERT], timing=Timing.AFTER,
                condition=expression_condition(f"new.n < {stop_below}"),
                action=EmitSideEffect("chain", {"n": expression_value("new.n + 1")}),
            )
        )

        if expected_rows is None:
            with pytest.raises(TriggerCascadeError):
                engine.insert("chain", {"n": 0})
        else:
            engine.insert("chain", {"n": 0})
            assert len(engine.select("chain")) == expected_rows

    def test_rolled_back_cascade_is_not_reported(self, engine):
        engine.create_table(make_table("orders", ("status", "text"), pk="order_id"))
        engine.create_table(
            make_table("counters", ("grp", "text"), ("n", "integer"), pk="counter_id")
        )
        engine.create_table(make_table("audit", ("note", "text")))
        engine.insert("orders", {"status": "NEW"})
        engine.insert("counters", {"grp": "g", "n": 0})
        engine.insert("counters", {"grp": "g", "n": 0})

        engine.register_trigger(
            TriggerRule(
                name="trg_count", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect(
                    "counters", {"n": 1}, kind=SideEffectKind.INCREMENT, match={"grp": "g"},
                ),
            )
        )
        engine.register_trigger(
            TriggerRule(
                name="trg_counter_audit", table="counters", on=[Operation.UPDATE],
                timing=Timing.AFTER, action=EmitSideEffect("audit", {"note": "counted"}),
            )
        )
        engine.register_trigger(
            TriggerRule(
                name="trg_counter_cap", table="counters", on=[Operation.UPDATE],
                timing=Timing.BEFORE,
                condition=expression_condition("old.counter_id = 2"),
                action=Reject("counter 2 is capped"),
            )
        )

        result = engine.update("orders", {"status": "SHIPPED"})

        assert result.rows_affected == 1
        assert result.errors == ["trg_count: counter 2 is capped"]
        assert result.side_effects == []
        assert "trg_counter_audit" not in result.fired
        assert engine.select("audit") == []
        assert [r["n"] for r in engine.select("counters")] == [0, 0]

    def test_applied_cascade_is_reported(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_log", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect("audit", {"note": "updated"}),
            )
        )
        orders.register_trigger(
            TriggerRule(
                name="trg_audit_count", table="audit", on=[Operation.INSERT],
                timing=Timing.AFTER,
                action=EmitSideEffect(
                    "order_update_counter", {"update_count": 1},
                    kind=SideEffectKind.INCREMENT, match={"counter_id": 1},
                ),
            )
        )

        result = orders.update("orders", {"status": "SHIPPED"}, {"order_id": 1})

        assert [e.rule_name for e in result.side_effects] == ["trg_log", "trg_audit_count"]
        assert result.fired == ["trg_log", "trg_audit_count"]

    def test_statement_after_trigger_skipped_when_row_rejected(self, engine, caplog):
        engine.create_table(make_table("stock", ("qty", "integer")))
        engine.register_trigger(
            TriggerRule(
                name="trg_no_negative", table="stock", on=[Operation.INSERT],
                timing=Timing.BEFORE,
                condition=expression_condition("new.qty < 0"),
                action=Reject("negative"),
            )
        )
        engine.register_trigger(
            TriggerRule(
                name="trg_stmt_after", table="stock", on=[Operation.INSERT],
                timing=Timing.AFTER, granularity=Granularity.STATEMENT,
                action=Reject("after-statement check"),
            )
        )

        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuleViolation, match="negative"):
                engine.insert("stock", {"qty": -1})

        assert "after-statement check" not in caplog.text

    def test_statement_triggers_bracket_row_writes(self, orders):
        seen = []

        def rows_visible(name):
            def condition(event):
                seen.append((name, len(orders.select("audit"))))
                return True
            return condition

        orders.register_trigger(
            TriggerRule(
                name="trg_stmt_before", table="orders", on=[Operation.UPDATE],
                timing=Timing.BEFORE, granularity=Granularity.STATEMENT,
                condition=rows_visible("before"),
                action=EmitSideEffect("audit", {"note": "before"}),
            )
        )
        orders.register_trigger(
            TriggerRule(
                name="trg_row", table="orders", on=[Operation.UPDATE], timing=Timing.AFTER,
                action=EmitSideEffect("audit", {"note": "row"}),
            )
        )
        orders.register_trigger(
            TriggerRule(
                name="trg_stmt_after", table="orders", on=[Operation.UPDATE],
                timing=Timing.AFTER, granularity=Granularity.STATEMENT,
                condition=rows_visible("after"),
                action=EmitSideEffect("audit", {"note": "after"}),
            )
        )

        orders.update("orders", {"status": "SHIPPED"})

        assert seen == [("before", 0), ("after", 4)]
        notes = [r["note"] for r in orders.select("audit", order_by="id")]
        assert notes == ["before", "row", "row", "row", "after"]

    def test_after_reject_is_reported(self, orders):
        orders.register_trigger(
            TriggerRule(
                name="trg_late", table="orders", on=[Operation.INSERT], timing=Timing.AFTER,
                action=Reject("too late"),
            )
        )
        result = orders.insert("orders", {"status": "NEW"})
        assert result.errors == ["trg_late: too late"]
        assert len(orders.select("orders")) == 4


# =============================================================================
# Configuration tests
# =============================================================================


class TestDatabaseConfig:
    def test_default_is_in_memory(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("TRIGGERLAB_DB_PATH", raising=False)
        config = DatabaseConfig.from_env()
        assert config.db_path == ":memory:"

    def test_database_url_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///from_url.db")
        monkeypatch.setenv("TRIGGERLAB_DB_PATH", "from_path.db")
        assert DatabaseConfig.from_env().db_path == "from_url.db"

    def test_db_path_env(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("TRIGGERLAB_DB_PATH", "labs.db")
        assert DatabaseConfig.from_env().url == "sqlite:///labs.db"

    def test_from_path(self, tmp_path):
        config = DatabaseConfig.from_path(tmp_path / "x.db")
        assert config.db_path == str(tmp_path / "x.db")

    def test_create_engine(self, tmp_path):
        engine = create_engine(DatabaseConfig.from_path(tmp_path / "x.db"))
        assert isinstance(engine, SQLiteEngine)
        assert engine.conn is None

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_engine(DatabaseConfig(url="postgresql://localhost/db"))

    def test_file_database_persists(self, tmp_path):
        path = tmp_path / "labs.db"
        with SQLiteEngine(path) as engine:
            engine.create_table(make_table("t"))
            engine.insert("t", {})
        with SQLiteEngine(path) as engine:
            assert engine.select("t") == [{"id": 1}]


class TestResolveMetadataPath:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TRIGGERLAB_METADATA_PATH", str(tmp_path))
        assert resolve_metadata_path() == tmp_path

    def test_from_backend_directory(self, monkeypatch):
        monkeypatch.delenv("TRIGGERLAB_METADATA_PATH", raising=False)
        assert resolve_metadata_path(Path("/repo/backend")) == Path("/repo/metadata")

    def test_from_repo_root(self, monkeypatch):
        monkeypatch.delenv("TRIGGERLAB_METADATA_PATH", raising=False)
        assert resolve_metadata_path(Path("/repo")) == Path("/repo/metadata")
