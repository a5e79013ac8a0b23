"""TriggerLab CLI entry point."""

import logging
import os

import click


@click.group()
@click.option(
    "--log-level",
    default=lambda: os.environ.get("TRIGGERLAB_LOG_LEVEL", "WARNING"),
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity (default: $TRIGGERLAB_LOG_LEVEL or WARNING).",
)
def cli(log_level: str):
    """TriggerLab: row trigger evaluation labs."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Register subcommand groups
from triggerlab.cli.lab_cmd import lab  # noqa: E402

cli.add_command(lab)
