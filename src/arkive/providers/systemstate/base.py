"""SystemStateTool Protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from arkive.core.jobs import JobHandle, JobStatus, Submission


@runtime_checkable
class SystemStateTool(Protocol):
    """Contract for an external tool that restores operating-system state."""

    @property
    def name(self) -> str:
        ...

    def start_restore(self, backup_path: str, target_volume: str) -> Submission:
        ...

    def poll(self, handle: JobHandle) -> JobStatus:
        ...

    def terminate(self, handle: JobHandle) -> None:
        ...
