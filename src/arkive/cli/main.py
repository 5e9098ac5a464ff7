"""CLI entry point for arkive."""

import logging

import click

from arkive import __version__
from arkive.cli.backup_cmd import backup_group
from arkive.cli.query_cmd import info_cmd, list_cmd, verify_cmd
from arkive.cli.restore_cmd import restore_group
from arkive.cli.schedule_cmd import schedule_group
from arkive.core.config import load_config


@click.group()
@click.version_option(version=__version__, prog_name="arkive")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """arkive: backup and restore for file trees, disks and virtual machines."""
    level = "debug" if verbose else load_config()["logging"]["level"]
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


cli.add_command(backup_group)
cli.add_command(restore_group)
cli.add_command(schedule_group)
cli.add_command(info_cmd)
cli.add_command(list_cmd)
cli.add_command(verify_cmd)


if __name__ == "__main__":
    cli()
