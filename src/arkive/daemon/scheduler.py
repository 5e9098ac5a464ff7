"""APScheduler-based runner for scheduled backup jobs."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

from arkive.core.engine import BackupEngine
from arkive.core.errors import ErrorKind, ManifestNotFound
from arkive.core.fileutil import atomic_write
from arkive.core.manifest import read_manifest
from arkive.core.models import BackupType, OperationResult, Status

log = logging.getLogger(__name__)

TARGETS = ("files", "volume")

STATE_FILENAME = "scheduler_state.json"
LOG_FILENAME = "scheduler.log"


def backup_dir_name(job_name: str, when: datetime, index: int = 0) -> str:
    """``<job>_<YYYYmmdd_HHMMSS>``, with ``_<n>`` for the n-th extra source."""
    name = f"{job_name}_{when.strftime('%Y%m%d_%H%M%S')}"
    return f"{name}_{index}" if index else name


def unique_dir(path: Path) -> Path:
    """``path``, or ``path-2``, ``path-3``... if it is already taken."""
    candidate = path
    n = 2
    while candidate.exists():
        candidate = path.with_name(f"{path.name}-{n}")
        n += 1
    return candidate


def find_last_backup(
    destination: Path,
    job_name: str,
    source: str,
    full_only: bool = False,
) -> Path | None:
    """Most recent backup of ``source`` made by ``job_name`` under ``destination``.

    Directories without a readable manifest are ignored. With ``full_only``
    only full backups qualify.
    """
    if not destination.is_dir():
        return None
    candidates = sorted(destination.glob(f"{job_name}_*"), reverse=True)
    for candidate in candidates:
        if not candidate.is_dir():
            continue
        try:
            manifest = read_manifest(candidate)
        except ManifestNotFound:
            continue
        if manifest.source != source:
            continue
        if full_only and manifest.backup_type is not BackupType.FULL:
            continue
        return candidate
    return None


class BackupScheduler:
    """Cron-style scheduler for backup jobs.

    Jobs come from the ``scheduler.jobs`` section of config.yaml. Each job
    names its sources, a destination root, a backup type and a crontab
    expression. Every run writes a new ``<job>_<timestamp>`` directory under
    the destination and appends a line to ``scheduler.log``.
    """

    def __init__(
        self,
        home: Path,
        config: dict | None = None,
        engine: BackupEngine | None = None,
    ) -> None:
        self.home = home
        self._config = config or {}
        self._engine = engine or BackupEngine(self._config)
        self._scheduler = None
        self._state_path = home / STATE_FILENAME
        self._log_path = home / LOG_FILENAME
        self._state: dict = self._load_state()

    def _load_state(self) -> dict:
        """Load last-run timestamps from scheduler_state.json."""
        if self._state_path.exists():
            try:
                data = json.loads(self._state_path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                log.warning("Failed to load scheduler state, starting fresh")
                return {}
            if isinstance(data, dict):
                return data
            log.warning("Scheduler state is not a mapping, starting fresh")
        return {}

    def _save_state(self) -> None:
        atomic_write(self._state_path, json.dumps(self._state, indent=2))

    def _log_execution(self, job_name: str, success: bool, message: str) -> None:
        """Append a line to scheduler.log."""
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        status = "OK" if success else "FAIL"
        line = f"[{ts}] [{status}] {job_name}: {message}\n"

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(line)

    def get_jobs(self) -> list[dict]:
        return list(self._config.get("scheduler", {}).get("jobs") or [])

    def last_run(self, job_name: str) -> datetime | None:
        value = self._state.get(job_name)
        if not value:
            return None
        try:
            last = datetime.fromisoformat(value)
        except (ValueError, TypeError):
            return None
        return last if last.tzinfo else last.replace(tzinfo=timezone.utc)

    def start(self) -> None:
        """Start the background scheduler with every enabled job."""
        from apscheduler.schedulers.background import BackgroundScheduler
        from apscheduler.triggers.cron import CronTrigger

        self._scheduler = BackgroundScheduler()

        for job in self.get_jobs():
            if not job.get("enabled", True):
                continue

            name = job.get("name", "")
            schedule = job.get("schedule", "")
            if not name or not schedule:
                log.warning("Skipping job with missing name/schedule: %s", job)
                continue

            try:
                trigger = CronTrigger.from_crontab(schedule)
            except ValueError:
                log.warning("Invalid schedule for job %s: %r", name, schedule, exc_info=True)
                continue
            self._scheduler.add_job(
                self._run_job,
                trigger=trigger,
                args=[job],
                id=name,
                name=name,
                replace_existing=True,
            )
            log.info("Scheduled job: %s (%s)", name, schedule)

        self._scheduler.start()
        log.info("BackupScheduler started with %d jobs", len(self._scheduler.get_jobs()))

        self._run_missed_jobs()

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        log.info("BackupScheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def run_job_now(self, job_name: str) -> tuple[bool, str]:
        """Execute a job immediately by name. Returns (success, message)."""
        for job in self.get_jobs():
            if job.get("name") == job_name:
                return self._run_job(job)
        return False, f"Job not found: {job_name}"

    def due_jobs(self, now: datetime | None = None) -> list[dict]:
        """Enabled jobs whose schedule fired since their last recorded run.

        Jobs that never ran are not considered due; they wait for their
        next fire time.
        """
        from apscheduler.triggers.cron import CronTrigger

        now = now or datetime.now(timezone.utc)
        due = []
        for job in self.get_jobs():
            if not job.get("enabled", True):
                continue
            last = self.last_run(job.get("name", ""))
            if last is None:
                continue
            try:
                trigger = CronTrigger.from_crontab(job.get("schedule", ""))
            except ValueError:
                continue
            next_fire = trigger.get_next_fire_time(last, now)
            if next_fire is not None and next_fire <= now:
                due.append(job)
        return due

    def _run_missed_jobs(self) -> None:
        """Run jobs whose fire time passed while the scheduler was stopped."""
        for job in self.due_jobs():
            log.info("Running missed job: %s (last run: %s)", job["name"], self._state.get(job["name"]))
            self._run_job(job)

    def _run_job(self, job: dict) -> tuple[bool, str]:
        """Back up every source of ``job``, then verify if asked to."""
        name = job.get("name", "")
        start = time.monotonic()
        log.info("Running job: %s", name)

        try:
            ok, msg = self._execute(job)
        except Exception as e:
            duration = time.monotonic() - start
            error_msg = f"Error: {e} ({duration:.1f}s)"
            self._log_execution(name, False, error_msg)
            log.warning("Job %s failed: %s", name, e, exc_info=True)
            return False, error_msg

        duration = time.monotonic() - start
        result_msg = f"{msg} ({duration:.1f}s)"
        self._log_execution(name, ok, result_msg)

        self._state[name] = datetime.now(timezone.utc).isoformat()
        self._save_state()
        return ok, result_msg

    def _execute(self, job: dict) -> tuple[bool, str]:
        name = job.get("name", "")
        sources = job.get("sources") or []
        destination = job.get("destination", "")
        target = job.get("target", "files")
        if not sources or not destination:
            return False, "Job needs sources and a destination"
        if target not in TARGETS:
            return False, f"Unknown target: {target}"
        try:
            mode = BackupType(job.get("type", BackupType.FULL.value))
        except ValueError:
            return False, f"Unknown backup type: {job.get('type')}"

        root = Path(destination)
        when = datetime.now()
        created: list[Path] = []
        summaries: list[str] = []

        for index, source in enumerate(sources):
            dest = unique_dir(root / backup_dir_name(name, when, index))
            result = self._backup_one(job, source, dest, mode, target)
            summaries.append(f"{source}: {result.message}")
            if not result.success:
                return False, "; ".join(summaries)
            created.append(dest)

        if job.get("verify"):
            for dest in created:
                result = self._engine.verify_backup(dest)
                if not result.success:
                    summaries.append(f"verify {dest.name}: {result.message}")
                    return False, "; ".join(summaries)
            summaries.append("verified")

        return True, "; ".join(summaries)

    def _backup_one(self, job: dict, source: str, dest: Path, mode: BackupType, target: str) -> OperationResult:
        if target == "volume":
            log.info("Backing up volume %s to %s", source, dest)
            return self._engine.backup_volume(source, dest)

        source_key = str(Path(source).absolute())
        baseline = None
        if mode is BackupType.INCREMENTAL:
            baseline = find_last_backup(Path(job["destination"]), job["name"], source_key)
        elif mode is BackupType.DIFFERENTIAL:
            baseline = find_last_backup(Path(job["destination"]), job["name"], source_key, full_only=True)
        if baseline is not None and baseline.absolute() == dest.absolute():
            return OperationResult(
                status=Status.FAILED,
                error_kind=ErrorKind.INVALID_ARGUMENT,
                message=f"Backup directory is its own baseline: {dest}",
            )
        log.info("Backing up %s to %s (%s, baseline: %s)", source, dest, mode.value, baseline or "none")
        return self._engine.backup_files(source, dest, mode, baseline)

    def get_log_lines(self, n: int = 50) -> list[str]:
        """Read last N lines from scheduler.log."""
        if not self._log_path.exists():
            return []
        lines = self._log_path.read_text(encoding="utf-8").splitlines()
        return lines[-n:]
