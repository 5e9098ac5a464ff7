"""CLI commands for restores: arkive restore files/disk/system-state."""

from __future__ import annotations

from pathlib import Path

import click

from arkive.cli.common import finish, home_option, make_engine, policy_option, progress, quiet_option
from arkive.core.models import OverwritePolicy


@click.group("restore")
def restore_group() -> None:
    """Restore files, disks and system state."""


@restore_group.command("files")
@click.argument("backup", type=click.Path(path_type=Path))
@click.argument("dest", type=click.Path(path_type=Path))
@policy_option
@home_option
@quiet_option
def restore_files(backup: Path, dest: Path, policy: str, home: Path | None, quiet: bool) -> None:
    """Restore the files of BACKUP into DEST."""
    engine = make_engine(home)
    finish(engine.restore_files(backup, dest, OverwritePolicy(policy), reporter=progress(quiet)))


@restore_group.command("disk")
@click.argument("backup", type=click.Path(path_type=Path))
@click.argument("device", type=click.Path(path_type=Path))
@click.option("--name", default=None, help="Image name inside BACKUP (default: first image found).")
@click.confirmation_option(prompt="This overwrites the target device. Continue?")
@home_option
@quiet_option
def restore_disk(backup: Path, device: Path, name: str | None, home: Path | None, quiet: bool) -> None:
    """Write the disk image in BACKUP onto DEVICE."""
    engine = make_engine(home)
    finish(engine.restore_disk(backup, device, name, reporter=progress(quiet)))


@restore_group.command("system-state")
@click.argument("backup")
@click.argument("target_volume")
@home_option
@quiet_option
def restore_system_state(backup: str, target_volume: str, home: Path | None, quiet: bool) -> None:
    """Restore operating-system state from BACKUP using the configured tool."""
    engine = make_engine(home)
    finish(engine.restore_system_state(backup, target_volume, reporter=progress(quiet)))
