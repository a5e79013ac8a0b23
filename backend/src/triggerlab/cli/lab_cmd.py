"""Lab CLI commands."""

from pathlib import Path

import click

from triggerlab.labs import LabRunner
from triggerlab.metadata.loader import LabLoader
from triggerlab.metadata.validator import validate_lab_file, validate_labs_dir
from triggerlab.persistence.config import (
    DatabaseConfig,
    create_engine,
    resolve_metadata_path,
)

_METADATA_OPTION = click.option(
    "--metadata",
    "metadata_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Metadata directory containing labs/ (default: ./metadata).",
)


def _load_labs(metadata_path: Path | None) -> LabLoader:
    loader = LabLoader(metadata_path or resolve_metadata_path())
    try:
        loader.load_all()
    except (ValueError, OSError) as e:
        click.echo(click.style(f"Failed to load labs: {e}", fg="red"), err=True)
        raise SystemExit(1)
    return loader


@click.group()
def lab():
    """Lab commands."""
    pass


@lab.command("list")
@_METADATA_OPTION
def list_cmd(metadata_path: Path | None):
    """List available labs."""
    loader = _load_labs(metadata_path)
    names = loader.list_labs()
    if not names:
        click.echo("No labs found.")
        return

    for name in names:
        definition = loader.get_lab(name)
        click.echo(f"  {name:<20} {definition.title}")


@lab.command()
@_METADATA_OPTION
@click.option(
    "--path",
    "target_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Validate a single lab file instead of the whole labs directory.",
)
def validate(metadata_path: Path | None, target_path: Path | None):
    """Validate lab YAML files against the JSON Schema."""
    if target_path is not None:
        issues = validate_lab_file(target_path)
    else:
        issues = validate_labs_dir(metadata_path or resolve_metadata_path())

    for issue in issues:
        click.echo(click.style(str(issue), fg="red"))

    if issues:
        click.echo(click.style(f"\n{len(issues)} schema error(s) found", fg="red", bold=True))
        raise SystemExit(1)

    # ── Semantic (loader) validation ─────────────────────────────────────────
    if target_path is not None:
        try:
            LabLoader(target_path.parent).load_file(target_path)
        except ValueError as e:
            click.echo(click.style(f"Semantic validation failed: {e}", fg="red"), err=True)
            raise SystemExit(1)
        click.echo(f"  ✓ {target_path.name}")
    else:
        loader = _load_labs(metadata_path)
        for name in loader.list_labs():
            definition = loader.get_lab(name)
            click.echo(
                f"  ✓ {name} ({len(definition.tables)} tables, "
                f"{len(definition.triggers)} triggers, {len(definition.steps)} steps)"
            )

    click.echo(click.style("All labs are valid.", fg="green", bold=True))


@lab.command()
@click.argument("name")
@_METADATA_OPTION
@click.option(
    "--db",
    "db_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="SQLite database file (default: $TRIGGERLAB_DB_PATH or in-memory).",
)
def run(name: str, metadata_path: Path | None, db_path: Path | None):
    """Run lab NAME and print its output."""
    loader = _load_labs(metadata_path)
    definition = loader.get_lab(name)
    if definition is None:
        click.echo(f"Error: unknown lab '{name}'. Try 'triggerlab lab list'.", err=True)
        raise SystemExit(1)

    engine = create_engine(DatabaseConfig.from_path(db_path))
    with engine:
        report = LabRunner(engine, echo=click.echo).run(definition)

    summary = f"\n{len(report.violations)} statement(s) rejected by triggers"
    if report.failures:
        summary += f", {len(report.failures)} statement(s) failed"
    if report.warnings:
        summary += f", {len(report.warnings)} warning(s)"
    click.echo(summary + ".")
