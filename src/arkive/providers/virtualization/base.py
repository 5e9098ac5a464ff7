"""VirtualizationManager Protocol, options and job-state vocabulary mapping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from arkive.core.jobs import ImmediateResult, JobHandle, JobStatus, Submission
from arkive.core.models import JobState

# Method return values of the management service
RETURN_COMPLETED = 0
RETURN_JOB_STARTED = 4096

# Concrete job states reported by the management service
_JOB_STATES: dict[int, JobState] = {
    2: JobState.SUBMITTED,  # New
    3: JobState.SUBMITTED,  # Starting
    4: JobState.RUNNING,  # Running
    5: JobState.RUNNING,  # Suspended
    6: JobState.RUNNING,  # Shutting down
    7: JobState.COMPLETED,  # Completed
    8: JobState.CANCELLED,  # Terminated
    9: JobState.CANCELLED,  # Killed
    10: JobState.FAILED,  # Exception
    11: JobState.RUNNING,  # Service
    32768: JobState.COMPLETED,  # Completed with warnings
}


@dataclass
class ExportOptions:
    copy_storage: bool = True  # copy virtual disk files
    copy_runtime_information: bool = True  # copy snapshots and saved state
    create_subdirectory: bool = True


@dataclass
class ImportOptions:
    generate_new_id: bool = False
    vm_name: str = ""


def map_job_state(code: int) -> JobState:
    """Map a numeric job state onto JobState. Unknown codes count as running."""
    return _JOB_STATES.get(int(code), JobState.RUNNING)


def submission_from_return(return_value: int, job: Any = None, job_id: str = "") -> Submission:
    """Turn a management method's return value into a monitor submission."""
    if return_value == RETURN_COMPLETED:
        return ImmediateResult(success=True)
    if return_value == RETURN_JOB_STARTED:
        return JobHandle(id=job_id or str(id(job)), ref=job)
    return ImmediateResult(
        success=False,
        error_code=return_value,
        message=f"Operation failed with code: {return_value}",
    )


def status_from_job(state_code: int, percent: int | None = None, error_code: int | None = None,
                    error_description: str = "") -> JobStatus:
    """Build a JobStatus from a raw job observation."""
    return JobStatus(
        state=map_job_state(state_code),
        percent=percent,
        error_code=error_code,
        message=error_description,
    )


@runtime_checkable
class VirtualizationManager(Protocol):
    """Contract for exporting, importing and starting virtual machines."""

    @property
    def name(self) -> str:
        ...

    def export_definition(self, vm_id: str, dest_dir: str, options: ExportOptions) -> Submission:
        ...

    def import_definition(self, source_dir: str, dest_dir: str, options: ImportOptions) -> Submission:
        ...

    def poll(self, handle: JobHandle) -> JobStatus:
        ...

    def start(self, vm_id: str) -> bool:
        ...
