"""Load lab definitions (tables, triggers, steps) from YAML files."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from triggerlab.expressions import LexerError, ParseError
from triggerlab.triggers import (
    EmitSideEffect,
    Granularity,
    MutateNewRow,
    Operation,
    Reject,
    SideEffectKind,
    Timing,
    TriggerRule,
    expression_condition,
    expression_value,
    interpolate_message,
)

# Column type -> SQLite storage class
STORAGE_TYPES = {
    "integer": "INTEGER",
    "number": "REAL",
    "text": "TEXT",
    "timestamp": "TEXT",
}

STEP_KINDS = ("insert", "update", "delete", "select", "print")


@dataclass
class ColumnDefinition:
    name: str
    type: str = "text"
    primary_key: bool = False
    nullable: bool = True
    default: Any = None

    @property
    def storage_type(self) -> str:
        return STORAGE_TYPES.get(self.type, "TEXT")


@dataclass
class TableDefinition:
    name: str
    columns: list[ColumnDefinition]

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def get_column(self, name: str) -> ColumnDefinition | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


@dataclass
class TriggerConfig:
    """Trigger definition from YAML metadata."""

    name: str
    table: str
    timing: str
    action: dict[str, Any]
    on: list[str] = field(default_factory=lambda: ["insert"])
    level: str = "row"
    when: str | None = None
    description: str = ""
    enabled: bool = True


@dataclass
class StepConfig:
    """One statement of a lab script.

    Attributes:
        kind: insert, update, delete, select or print
        table: Target table (not used by print)
        values: Column values for insert, SET values for update
        where: Equality filter for update/delete/select
        order_by: Sort column for select
        text: Message for print
        label: Optional caption printed before the step runs
    """

    kind: str
    table: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    where: dict[str, Any] = field(default_factory=dict)
    order_by: str | None = None
    text: str = ""
    label: str | None = None


@dataclass
class LabModel:
    name: str
    title: str
    tables: list[TableDefinition]
    triggers: list[TriggerConfig] = field(default_factory=list)
    steps: list[StepConfig] = field(default_factory=list)
    description: str = ""
    source: Path | None = None

    def get_table(self, name: str) -> TableDefinition | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None


class LabLoader:
    """Loads lab definitions from ``<metadata_path>/labs/*.yaml``."""

    def __init__(self, metadata_path: Path):
        self.metadata_path = metadata_path
        self.labs: dict[str, LabModel] = {}

    def load_all(self) -> None:
        """Load and check every lab file."""
        labs_path = self.metadata_path / "labs"
        if not labs_path.exists():
            return

        for yaml_file in sorted(labs_path.glob("*.yaml")):
            lab = self.load_file(yaml_file)
            if lab is None:
                continue
            if lab.name in self.labs:
                raise ValueError(
                    f"Duplicate lab name '{lab.name}' in {yaml_file} "
                    f"and {self.labs[lab.name].source}"
                )
            self.labs[lab.name] = lab

    def load_file(self, yaml_file: Path) -> LabModel | None:
        with open(yaml_file) as f:
            data = preprocess_on_key(yaml.safe_load(f))
        if not data or "lab" not in data:
            return None
        lab = self._resolve_lab(data)
        lab.source = yaml_file
        self._check_references(lab)
        return lab

    def get_lab(self, name: str) -> LabModel | None:
        return self.labs.get(name)

    def list_labs(self) -> list[str]:
        return sorted(self.labs.keys())

    def _resolve_lab(self, data: dict) -> LabModel:
        name = data["lab"]
        return LabModel(
            name=name,
            title=data.get("title", name),
            description=data.get("description", ""),
            tables=[self._resolve_table(t) for t in data.get("tables", [])],
            triggers=[self._resolve_trigger(t) for t in data.get("triggers", [])],
            steps=[self._resolve_step(s) for s in data.get("steps", [])],
        )

    def _resolve_table(self, data: dict) -> TableDefinition:
        columns = [
            ColumnDefinition(
                name=c["name"],
                type=c.get("type", "text"),
                primary_key=c.get("primaryKey", False),
                nullable=c.get("nullable", True),
                default=c.get("default"),
            )
            for c in data.get("columns", [])
        ]
        if not columns:
            raise ValueError(f"Table '{data['name']}' has no columns")
        return TableDefinition(name=data["name"], columns=columns)

    def _resolve_trigger(self, data: dict) -> TriggerConfig:
        operations = data.get("on", ["insert"])
        if isinstance(operations, str):
            operations = [operations]

        return TriggerConfig(
            name=data["name"],
            table=data["table"],
            timing=data.get("timing", "before"),
            action=data["action"],
            on=operations,
            level=data.get("level", "row"),
            when=data.get("when"),
            description=data.get("description", ""),
            enabled=data.get("enabled", True),
        )

    def _resolve_step(self, data: dict) -> StepConfig:
        kinds = [k for k in STEP_KINDS if k in data]
        if len(kinds) != 1:
            raise ValueError(f"Step must have exactly one of {STEP_KINDS}: {data}")
        kind = kinds[0]
        body = data[kind]
        label = data.get("label")

        if kind == "print":
            return StepConfig(kind=kind, text=str(body), label=label)

        return StepConfig(
            kind=kind,
            table=body["table"],
            values=body.get("values", body.get("set", {})),
            where=body.get("where", {}),
            order_by=body.get("orderBy"),
            label=label,
        )

    def _check_references(self, lab: LabModel) -> None:
        """Fail fast on unknown tables/columns and malformed triggers."""
        for trigger in lab.triggers:
            if lab.get_table(trigger.table) is None:
                raise ValueError(
                    f"Lab '{lab.name}': trigger '{trigger.name}' is on unknown "
                    f"table '{trigger.table}'"
                )
            build_rule(trigger)
            self._check_action(lab, trigger)

        for step in lab.steps:
            if step.kind == "print":
                continue
            table = lab.get_table(step.table)
            if table is None:
                raise ValueError(f"Lab '{lab.name}': step uses unknown table '{step.table}'")
            for column in [*step.values, *step.where]:
                if table.get_column(column) is None:
                    raise ValueError(
                        f"Lab '{lab.name}': table '{table.name}' has no column '{column}'"
                    )

    def _check_action(self, lab: LabModel, trigger: TriggerConfig) -> None:
        """Check the tables and columns a trigger action writes to."""
        kind, body = next(iter(trigger.action.items()))
        if kind == "reject":
            return

        if kind == "set":
            table_name, columns = trigger.table, [body["column"]]
        else:
            table_name = body["table"]
            columns = [*body.get("values", {}), *body.get("match", {})]

        table = lab.get_table(table_name)
        if table is None:
            raise ValueError(
                f"Lab '{lab.name}': trigger '{trigger.name}' writes to unknown "
                f"table '{table_name}'"
            )
        for column in columns:
            if table.get_column(column) is None:
                raise ValueError(
                    f"Lab '{lab.name}': trigger '{trigger.name}' uses column "
                    f"'{column}' not in table '{table.name}'"
                )


def build_rule(config: TriggerConfig) -> TriggerRule:
    """Turn a TriggerConfig into a TriggerRule, compiling its expressions.

    Raises:
        ValueError: For unknown operations/timings, a bad action shape or a
            malformed expression
    """
    try:
        operations = [Operation(op) for op in config.on]
        timing = Timing(config.timing)
        granularity = Granularity(config.level)
        condition = expression_condition(config.when) if config.when else None
        action = _build_action(config.action)
        return TriggerRule(
            name=config.name,
            table=config.table,
            on=operations,
            timing=timing,
            granularity=granularity,
            condition=condition,
            action=action,
            description=config.description,
            enabled=config.enabled,
        )
    except (LexerError, ParseError, KeyError, TypeError) as e:
        raise ValueError(f"Trigger '{config.name}': {e}") from e


def _build_action(data: dict[str, Any]):
    if len(data) != 1:
        raise ValueError(f"Action must have exactly one key, got {sorted(data)}")

    kind, body = next(iter(data.items()))

    if kind == "reject":
        return Reject(interpolate_message(str(body)))

    if kind == "set":
        return MutateNewRow(column=body["column"], value_fn=expression_value(body["value"]))

    if kind in ("emit", "increment"):
        values = {col: expression_value(src) for col, src in body.get("values", {}).items()}
        match = None
        if kind == "increment":
            match = {col: expression_value(src) for col, src in body.get("match", {}).items()}
        return EmitSideEffect(
            target_table=body["table"],
            values=values,
            kind=SideEffectKind.INCREMENT if kind == "increment" else SideEffectKind.INSERT,
            match=match,
        )

    raise ValueError(f"Unknown action '{kind}'")


def preprocess_on_key(obj: Any) -> Any:
    """Rename the boolean key ``True`` back to ``"on"``.

    PyYAML parses the bare key ``on:`` as boolean ``True`` (YAML 1.1).
    """
    if isinstance(obj, dict):
        return {
            ("on" if k is True else k): preprocess_on_key(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [preprocess_on_key(item) for item in obj]
    return obj
