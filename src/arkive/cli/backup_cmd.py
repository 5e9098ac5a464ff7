"""CLI commands for backups: arkive backup files/volume/disk."""

from __future__ import annotations

from pathlib import Path

import click

from arkive.cli.common import finish, home_option, make_engine, policy_option, progress, quiet_option
from arkive.core.models import BackupType, OverwritePolicy

_MODES = {
    "full": BackupType.FULL,
    "incremental": BackupType.INCREMENTAL,
    "differential": BackupType.DIFFERENTIAL,
}


@click.group("backup")
def backup_group() -> None:
    """Back up files, volumes and disks."""


@backup_group.command("files")
@click.argument("source", type=click.Path(path_type=Path))
@click.argument("dest", type=click.Path(path_type=Path))
@click.option("--mode", type=click.Choice(list(_MODES)), default="full", show_default=True)
@click.option(
    "--baseline",
    type=click.Path(path_type=Path),
    default=None,
    help="Previous backup directory (incremental) or any backup of the chain (differential).",
)
@policy_option
@home_option
@quiet_option
def backup_files(
    source: Path, dest: Path, mode: str, baseline: Path | None, policy: str, home: Path | None, quiet: bool,
) -> None:
    """Back up a file or directory tree into DEST."""
    engine = make_engine(home)
    result = engine.backup_files(
        source, dest, _MODES[mode], baseline, OverwritePolicy(policy), reporter=progress(quiet),
    )
    finish(result)


@backup_group.command("volume")
@click.argument("volume")
@click.argument("dest", type=click.Path(path_type=Path))
@home_option
@quiet_option
def backup_volume(volume: str, dest: Path, home: Path | None, quiet: bool) -> None:
    """Snapshot VOLUME and back up its files into DEST."""
    engine = make_engine(home)
    finish(engine.backup_volume(volume, dest, reporter=progress(quiet)))


@backup_group.command("disk")
@click.argument("device", type=click.Path(path_type=Path))
@click.argument("dest", type=click.Path(path_type=Path))
@click.option("--name", default=None, help="Image name (default: device file name).")
@home_option
@quiet_option
def backup_disk(device: Path, dest: Path, name: str | None, home: Path | None, quiet: bool) -> None:
    """Image the raw block DEVICE into DEST."""
    engine = make_engine(home)
    finish(engine.backup_disk(device, dest, name, reporter=progress(quiet)))
