"""Lab metadata: YAML loading and JSON Schema validation."""

from triggerlab.metadata.loader import (
    ColumnDefinition,
    LabLoader,
    LabModel,
    StepConfig,
    TableDefinition,
    TriggerConfig,
    build_rule,
)
from triggerlab.metadata.validator import (
    ValidationIssue,
    validate_lab_file,
    validate_labs_dir,
)

__all__ = [
    "ColumnDefinition",
    "LabLoader",
    "LabModel",
    "StepConfig",
    "TableDefinition",
    "TriggerConfig",
    "ValidationIssue",
    "build_rule",
    "validate_lab_file",
    "validate_labs_dir",
]
