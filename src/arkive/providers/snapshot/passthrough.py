"""Snapshot provider that reads the live volume directly."""

from __future__ import annotations

import logging
from pathlib import Path

from arkive.core.jobs import ImmediateResult, JobHandle, JobStatus
from arkive.core.models import JobState

log = logging.getLogger(__name__)


class PassthroughSnapshotProvider:
    """Use the volume itself as its "snapshot".

    For systems without a shadow-copy service. The copy is not crash
    consistent if files change while it runs.
    """

    def __init__(self, config: dict | None = None) -> None:
        self._config = config or {}

    @property
    def name(self) -> str:
        return "passthrough"

    def create_snapshot(self, volume: str) -> ImmediateResult:
        path = Path(volume)
        if not path.exists():
            return ImmediateResult(
                success=False, error_code="ENOENT", message=f"Volume not found: {volume}",
            )
        log.info("No snapshot service, reading %s directly", volume)
        return ImmediateResult(success=True, value=str(path))

    def poll(self, handle: JobHandle) -> JobStatus:
        # Never hands out jobs
        return JobStatus(JobState.COMPLETED, value=handle.ref)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        return True
