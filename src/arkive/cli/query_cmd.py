"""CLI commands that inspect backups: arkive info/list/verify."""

from __future__ import annotations

from pathlib import Path

import click

from arkive.cli.common import finish, home_option, make_engine, progress, quiet_option
from arkive.core.errors import ArkiveError


@click.command("info")
@click.argument("backup", type=click.Path(path_type=Path))
@home_option
def info_cmd(backup: Path, home: Path | None) -> None:
    """Show the summary of a backup."""
    engine = make_engine(home)
    try:
        manifest = engine.backup_info(backup)
    except ArkiveError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Location:      {backup}")
    if manifest.source:
        click.echo(f"Source:        {manifest.source}")
    click.echo(f"Type:          {manifest.backup_type.value}")
    click.echo(f"Date:          {manifest.created.strftime('%Y-%m-%d %H:%M:%S')}")
    click.echo(f"Files:         {manifest.file_count}")
    click.echo(f"Size:          {manifest.total_size} bytes")
    if manifest.files_skipped:
        click.echo(f"Skipped:       {manifest.files_skipped}")
    if manifest.baseline:
        click.echo(f"Baseline:      {manifest.baseline}")
    if manifest.full_baseline and manifest.full_baseline != manifest.baseline:
        click.echo(f"Full baseline: {manifest.full_baseline}")


@click.command("list")
@click.argument("backup", type=click.Path(path_type=Path))
@home_option
def list_cmd(backup: Path, home: Path | None) -> None:
    """List the files stored in a backup."""
    engine = make_engine(home)
    try:
        lines = engine.list_backup_contents(backup)
    except ArkiveError as e:
        raise click.ClickException(str(e)) from e

    if not lines:
        click.echo("(No files in backup)")
        return
    for line in lines:
        click.echo(line)


@click.command("verify")
@click.argument("backup", type=click.Path(path_type=Path))
@home_option
@quiet_option
def verify_cmd(backup: Path, home: Path | None, quiet: bool) -> None:
    """Check that every file of a backup is present and readable."""
    engine = make_engine(home)
    finish(engine.verify_backup(backup, reporter=progress(quiet)))
