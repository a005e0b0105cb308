"""Command-line interface for watchfolder.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Watch the folder and upload finished files
- status: Show the sync state of tracked files
- check-config: Validate the configuration
"""

from __future__ import annotations

import click

from watchfolder.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
)
from watchfolder.client.cli.run import check_config, run
from watchfolder.client.cli.status import status


@click.group()
@click.version_option(package_name="watchfolder")
def cli() -> None:
    """watchfolder - Upload finished files from a folder to an ingestion gateway."""


cli.add_command(run)
cli.add_command(status)
cli.add_command(check_config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
]
