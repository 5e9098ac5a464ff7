"""Async Job Monitor: supervise operations owned by an external system.

``submit()`` either finishes immediately (``ImmediateResult``) or hands back a
``JobHandle`` that is polled until it reaches a terminal state::

    SUBMITTED -> RUNNING -> COMPLETED | FAILED | CANCELLED
    SUBMITTED -> COMPLETED | FAILED          (immediate result)

The external system's own state vocabulary is mapped by whoever implements
``poll``; this module only sees ``JobState``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from arkive.core.errors import InvalidArgument, JobTimeout
from arkive.core.models import CancelToken, JobState
from arkive.core.progress import FULL_RANGE, ProgressTracker, Stage, as_tracker

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
HEARTBEAT_STEP = 10
HEARTBEAT_CAP = 95


@dataclass
class ImmediateResult:
    """The external call finished synchronously."""

    success: bool
    value: Any = None
    error_code: int | str | None = None
    message: str = ""


@dataclass
class JobHandle:
    """Opaque reference to a running external job."""

    id: str
    ref: Any = None  # provider-specific object used by poll()


@dataclass
class JobStatus:
    """One observation of an external job, already mapped to JobState."""

    state: JobState
    percent: int | None = None
    error_code: int | str | None = None
    message: str = ""
    value: Any = None


@dataclass
class Job:
    """Monitor-side view of one supervised job."""

    id: str
    state: JobState = JobState.SUBMITTED
    last_observed_progress: int = 0
    history: list[JobState] = field(default_factory=list)

    def observe(self, state: JobState) -> None:
        if self.state.is_terminal:
            return
        self.state = state
        self.history.append(state)


@dataclass
class JobOutcome:
    """Terminal result of ``supervise``."""

    state: JobState
    value: Any = None
    error_code: int | str | None = None
    message: str = ""
    polls: int = 0
    job: Job | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.COMPLETED


Submission = ImmediateResult | JobHandle


def supervise(
    submit: Callable[[], Submission],
    poll: Callable[[JobHandle], JobStatus],
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    reporter: ProgressTracker | Callable[[int, str], None] | None = None,
    deadline: float | None = None,
    cancel: CancelToken | None = None,
    request_cancel: Callable[[JobHandle], None] | None = None,
    stage: Stage = FULL_RANGE,
    label: str = "Job",
    heartbeat_step: int = HEARTBEAT_STEP,
    heartbeat_cap: int = HEARTBEAT_CAP,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> JobOutcome:
    """Run ``submit`` and poll its job to completion.

    ``deadline`` is a number of seconds from submission; when it elapses
    JobTimeout is raised and the external job is left running. Progress is
    emitted on every poll, as a bounded heartbeat when the external system
    reports no percentage.
    """
    if poll_interval < 0:
        raise InvalidArgument("poll_interval must not be negative")

    tracker = as_tracker(reporter)
    started = clock()

    tracker.update(0, 100, stage, f"Starting {label.lower()}...")
    submission = submit()

    if isinstance(submission, ImmediateResult):
        state = JobState.COMPLETED if submission.success else JobState.FAILED
        if submission.success:
            tracker.update(100, 100, stage, f"{label} completed")
        else:
            log.warning("%s failed immediately: %s (code %s)", label, submission.message, submission.error_code)
            tracker.fail(f"{label} failed: {submission.message}")
        return JobOutcome(
            state=state,
            value=submission.value,
            error_code=submission.error_code,
            message=submission.message,
            polls=0,
        )

    job = Job(id=submission.id)
    log.info("%s submitted as job %s", label, job.id)
    polls = 0
    heartbeat = 0

    while True:
        if cancel is not None and cancel.cancelled:
            if request_cancel is not None:
                request_cancel(submission)
            job.observe(JobState.CANCELLED)
            tracker.fail(f"{label} cancelled")
            return JobOutcome(JobState.CANCELLED, message=f"{label} cancelled", polls=polls, job=job)

        if deadline is not None and clock() - started >= deadline:
            tracker.fail(f"{label} timed out after {deadline:g}s")
            raise JobTimeout(f"{label} (job {job.id}) did not finish within {deadline:g}s")

        sleep(poll_interval)
        status = poll(submission)
        polls += 1
        job.observe(status.state)

        if status.state is JobState.COMPLETED:
            job.last_observed_progress = 100
            tracker.update(100, 100, stage, f"{label} completed")
            return JobOutcome(JobState.COMPLETED, value=status.value, message=status.message, polls=polls, job=job)

        if status.state is JobState.FAILED:
            log.warning("%s job %s failed: %s (code %s)", label, job.id, status.message, status.error_code)
            tracker.fail(f"{label} failed: {status.message}")
            return JobOutcome(
                JobState.FAILED,
                value=status.value,
                error_code=status.error_code,
                message=status.message,
                polls=polls,
                job=job,
            )

        if status.state is JobState.CANCELLED:
            tracker.fail(f"{label} was cancelled externally")
            return JobOutcome(JobState.CANCELLED, message=status.message, polls=polls, job=job)

        # Still submitted or running: report something on every poll
        if status.percent is not None:
            observed = max(0, min(99, int(status.percent)))
        else:
            heartbeat = min(heartbeat_cap, heartbeat + heartbeat_step)
            observed = heartbeat
        job.last_observed_progress = max(job.last_observed_progress, observed)
        tracker.update(job.last_observed_progress, 100, stage, f"{label} in progress...")
