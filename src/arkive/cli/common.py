"""Helpers shared by the CLI command groups."""

from __future__ import annotations

from pathlib import Path

import click

from arkive.core.config import config_path, load_config, resolve_home
from arkive.core.engine import BackupEngine
from arkive.core.models import OperationResult, OverwritePolicy

home_option = click.option(
    "--home",
    type=click.Path(path_type=Path),
    default=None,
    help="Override ARKIVE_HOME (directory holding config.yaml).",
)

quiet_option = click.option("--quiet", "-q", is_flag=True, help="Do not print progress.")

policy_option = click.option(
    "--policy",
    type=click.Choice([p.value for p in OverwritePolicy]),
    default=OverwritePolicy.OVERWRITE.value,
    show_default=True,
    help="What to do when a destination file already exists.",
)


def make_engine(home: Path | None) -> BackupEngine:
    home_path = home or resolve_home()
    return BackupEngine(load_config(config_path(home_path)))


def echo_progress(percentage: int, message: str) -> None:
    click.echo(f"[{percentage:3d}%] {message}")


def progress(quiet: bool):
    return None if quiet else echo_progress


def finish(result: OperationResult) -> None:
    """Print the outcome; exit non-zero unless everything succeeded."""
    for failure in result.failures:
        click.echo(f"  {failure}", err=True)
    if result.success and not result.failures:
        click.echo(f"OK: {result.message} ({result.duration_seconds:.1f}s)")
        return
    if result.success:
        click.echo(f"WARNING: {result.message}")
        raise SystemExit(1)
    raise click.ClickException(result.message)
