"""System-state restore through an external command-line tool."""

from __future__ import annotations

import collections
import logging
import re
import subprocess
import threading
from dataclasses import dataclass, field

from arkive.core.jobs import ImmediateResult, JobHandle, JobStatus
from arkive.core.models import JobState

log = logging.getLogger(__name__)

DEFAULT_COMMAND = ["wbadmin", "start", "systemstaterecovery"]

_PERCENT_RE = re.compile(r"(\d{1,3})\s*(?:%|percent)", re.IGNORECASE)
_TAIL_LINES = 20


@dataclass
class _Run:
    """A running tool process and the output collected from it so far."""

    process: subprocess.Popen
    tail: collections.deque = field(default_factory=lambda: collections.deque(maxlen=_TAIL_LINES))
    percent: int | None = None
    reader: threading.Thread | None = None

    def consume(self) -> None:
        if self.process.stdout is None:
            return
        for line in self.process.stdout:
            line = line.rstrip()
            if not line:
                continue
            self.tail.append(line)
            percent = parse_percent(line)
            if percent is not None:
                self.percent = percent


def parse_percent(line: str) -> int | None:
    """Best-effort percentage from a line of tool output."""
    match = _PERCENT_RE.search(line)
    return min(100, int(match.group(1))) if match else None


class ProcessSystemStateTool:
    """Run the configured tool and report its exit code as a job state.

    Exit code 0 means completed; anything else failed, with the tail of the
    output as the message.
    """

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        self._command = list(config.get("command") or DEFAULT_COMMAND)

    @property
    def name(self) -> str:
        return "process"

    def build_args(self, backup_path: str, target_volume: str) -> list[str]:
        return [
            *self._command,
            f"-version:{backup_path}",
            f"-backupTarget:{target_volume}",
            "-quiet",
        ]

    def start_restore(self, backup_path: str, target_volume: str) -> JobHandle | ImmediateResult:
        args = self.build_args(backup_path, target_volume)
        log.info("Starting system state tool: %s", " ".join(args))
        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            return ImmediateResult(
                success=False, error_code=getattr(e, "errno", None), message=f"Failed to execute {args[0]}: {e}",
            )

        run = _Run(process)
        run.reader = threading.Thread(target=run.consume, name="system-state-output", daemon=True)
        run.reader.start()
        return JobHandle(id=str(process.pid), ref=run)

    def poll(self, handle: JobHandle) -> JobStatus:
        run: _Run = handle.ref
        code = run.process.poll()
        if code is None:
            return JobStatus(JobState.RUNNING, percent=run.percent)

        if run.reader is not None:
            run.reader.join(timeout=5)
            if not run.reader.is_alive() and run.process.stdout is not None:
                run.process.stdout.close()
        if code == 0:
            return JobStatus(JobState.COMPLETED, percent=100)
        output = "\n".join(run.tail)
        return JobStatus(
            JobState.FAILED,
            error_code=code,
            message=f"System state restore failed with exit code {code}" + (f":\n{output}" if output else ""),
        )

    def terminate(self, handle: JobHandle) -> None:
        run: _Run = handle.ref
        if run.process.poll() is None:
            run.process.terminate()
