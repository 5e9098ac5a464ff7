"""CLI commands for scheduled backup jobs: arkive schedule list/add/remove/run/logs/start."""

from __future__ import annotations

import threading
from pathlib import Path

import click
import yaml

from arkive.cli.common import home_option
from arkive.core.config import config_path, load_config, resolve_home
from arkive.core.fileutil import atomic_write
from arkive.core.models import BackupType
from arkive.daemon.scheduler import TARGETS, BackupScheduler

_TYPES = {
    "full": BackupType.FULL,
    "incremental": BackupType.INCREMENTAL,
    "differential": BackupType.DIFFERENTIAL,
}


def _scheduler(home: Path | None) -> BackupScheduler:
    home_path = home or resolve_home()
    return BackupScheduler(home_path, load_config(config_path(home_path)))


def _write_jobs(home: Path | None, jobs: list[dict]) -> None:
    """Replace the scheduler.jobs section of config.yaml, keeping the rest."""
    path = config_path(home or resolve_home())
    user_config: dict = {}
    if path.exists():
        try:
            user_config = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise click.ClickException(f"Cannot update {path}: {e}") from e
        if not isinstance(user_config, dict):
            raise click.ClickException(f"Cannot update {path}: not a mapping")

    section = user_config.get("scheduler")
    if not isinstance(section, dict):
        section = user_config["scheduler"] = {}
    section["jobs"] = jobs

    atomic_write(path, yaml.dump(user_config, default_flow_style=False, allow_unicode=True, sort_keys=False))


@click.group("schedule")
def schedule_group() -> None:
    """Manage scheduled backup jobs."""


@schedule_group.command("list")
@home_option
def schedule_list(home: Path | None) -> None:
    """List configured backup jobs."""
    sched = _scheduler(home)
    jobs = sched.get_jobs()
    if not jobs:
        click.echo("No backup jobs configured.")
        return

    click.echo(f"{'Name':<20} {'Schedule':<16} {'Type':<13} {'Enabled':<8} {'Last run'}")
    click.echo("-" * 80)
    for job in jobs:
        name = job.get("name", "?")
        last = sched.last_run(name)
        click.echo(
            f"{name:<20} {job.get('schedule', '?'):<16} {job.get('type', 'Full'):<13} "
            f"{'yes' if job.get('enabled', True) else 'no':<8} "
            f"{last.strftime('%Y-%m-%d %H:%M') if last else '-'}"
        )


@schedule_group.command("add")
@click.argument("name")
@click.argument("schedule")
@click.argument("destination", type=click.Path(path_type=Path))
@click.option("--source", "sources", multiple=True, required=True, help="Path to back up (repeatable).")
@click.option("--type", "backup_type", type=click.Choice(list(_TYPES)), default="full", show_default=True)
@click.option("--target", type=click.Choice(TARGETS), default="files", show_default=True)
@click.option("--verify", is_flag=True, help="Verify each backup after it is written.")
@home_option
def schedule_add(
    name: str,
    schedule: str,
    destination: Path,
    sources: tuple[str, ...],
    backup_type: str,
    target: str,
    verify: bool,
    home: Path | None,
) -> None:
    """Add a backup job.

    NAME is the job identifier. SCHEDULE is a cron expression (e.g. "0 3 * * *").
    DESTINATION is the directory that collects the job's backups.
    """
    from apscheduler.triggers.cron import CronTrigger

    try:
        CronTrigger.from_crontab(schedule)
    except ValueError as e:
        raise click.ClickException(f"Invalid schedule {schedule!r}: {e}") from e

    jobs = _scheduler(home).get_jobs()
    if any(j.get("name") == name for j in jobs):
        raise click.ClickException(f"Job '{name}' already exists. Remove it first.")

    jobs.append({
        "name": name,
        "schedule": schedule,
        "type": _TYPES[backup_type].value,
        "target": target,
        "sources": list(sources),
        "destination": str(destination),
        "verify": verify,
        "enabled": True,
    })
    _write_jobs(home, jobs)
    click.echo(f"Added job: {name} ({schedule}) -> {destination}")


@schedule_group.command("remove")
@click.argument("name")
@home_option
def schedule_remove(name: str, home: Path | None) -> None:
    """Remove a backup job by name."""
    jobs = _scheduler(home).get_jobs()
    remaining = [j for j in jobs if j.get("name") != name]
    if len(remaining) == len(jobs):
        raise click.ClickException(f"Job not found: {name}")
    _write_jobs(home, remaining)
    click.echo(f"Removed job: {name}")


@schedule_group.command("run")
@click.argument("name")
@home_option
def schedule_run(name: str, home: Path | None) -> None:
    """Run a backup job immediately."""
    ok, msg = _scheduler(home).run_job_now(name)
    if not ok:
        raise click.ClickException(f"Job '{name}' failed: {msg}")
    click.echo(f"Job '{name}': {msg}")


@schedule_group.command("logs")
@home_option
@click.option("-n", "--lines", default=50, help="Number of lines to show.")
def schedule_logs(home: Path | None, lines: int) -> None:
    """Show the job execution log."""
    log_lines = _scheduler(home).get_log_lines(n=lines)
    if not log_lines:
        click.echo("No job log entries.")
        return
    for line in log_lines:
        click.echo(line)


@schedule_group.command("start")
@home_option
def schedule_start(home: Path | None) -> None:
    """Run the scheduler in the foreground until interrupted."""
    sched = _scheduler(home)
    sched.start()
    click.echo("Scheduler running. Press Ctrl+C to stop.")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        sched.stop()
