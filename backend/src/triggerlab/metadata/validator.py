"""
metadata/validator.py: JSON Schema validation for TriggerLab lab YAML files.

Usage:
    from triggerlab.metadata.validator import validate_labs_dir, validate_lab_file

    issues = validate_labs_dir(Path("metadata"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from triggerlab.metadata.loader import preprocess_on_key

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
LAB_SCHEMA = "lab.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for a lab YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "triggers[0]/action"
    severity: str = "error"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


def _load_schema(name: str) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _load_registry() -> Registry:
    schema = _load_schema(LAB_SCHEMA)
    return Registry().with_resource(
        schema["$id"], Resource(contents=schema, specification=DRAFT202012)
    )


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        parts.append(f"[{p}]" if isinstance(p, int) else str(p))
    return "/".join(parts).replace("/[", "[")


def validate_lab_file(
    yaml_path: Path,
    *,
    registry: Registry | None = None,
) -> list[ValidationIssue]:
    """
    Validate a single lab YAML file against the lab schema.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    doc = preprocess_on_key(raw)

    if registry is None:
        registry = _load_registry()

    validator = Draft202012Validator(_load_schema(LAB_SCHEMA), registry=registry)

    issues = [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=_json_path)
    ]
    if issues:
        logger.debug("%s: %d schema issue(s)", yaml_path, len(issues))
    return issues


def validate_labs_dir(metadata_dir: Path) -> list[ValidationIssue]:
    """
    Validate every ``labs/*.yaml`` file under *metadata_dir*.

    Returns:
        A flat list of issues across all files; empty means all files are valid.
    """
    labs_dir = metadata_dir / "labs"
    if not labs_dir.is_dir():
        return [
            ValidationIssue(
                file=labs_dir,
                message=f"Labs directory does not exist: {labs_dir}",
            )
        ]

    try:
        registry = _load_registry()
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [
            ValidationIssue(
                file=_SCHEMAS_DIR,
                message=f"Failed to load JSON Schema files: {exc}",
            )
        ]

    all_issues: list[ValidationIssue] = []
    for yaml_file in sorted(labs_dir.glob("*.yaml")):
        all_issues.extend(validate_lab_file(yaml_file, registry=registry))
    return all_issues
