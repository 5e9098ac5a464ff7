"""SnapshotProvider Protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from arkive.core.jobs import JobHandle, JobStatus, Submission


@runtime_checkable
class SnapshotProvider(Protocol):
    """Contract for point-in-time volume snapshots.

    ``create_snapshot`` returns an ImmediateResult whose ``value`` is the
    readable snapshot path, or a JobHandle whose final JobStatus carries it.
    """

    @property
    def name(self) -> str:
        ...

    def create_snapshot(self, volume: str) -> Submission:
        ...

    def poll(self, handle: JobHandle) -> JobStatus:
        ...

    def delete_snapshot(self, snapshot_id: str) -> bool:
        ...
