"""Tests for arkive.core.jobs: supervise state machine."""

from unittest.mock import MagicMock

import pytest

from arkive.core.errors import InvalidArgument, JobTimeout
from arkive.core.jobs import ImmediateResult, JobHandle, JobStatus, supervise
from arkive.core.models import CancelToken, JobState
from arkive.core.progress import Stage


def _scripted_poll(*statuses: JobStatus) -> MagicMock:
    return MagicMock(side_effect=list(statuses))


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class TestImmediateResults:
    def test_immediate_success_never_polls(self):
        poll = MagicMock()
        outcome = supervise(lambda: ImmediateResult(success=True, value="snap"), poll, sleep=lambda s: None)

        assert outcome.state is JobState.COMPLETED
        assert outcome.succeeded
        assert outcome.value == "snap"
        assert outcome.polls == 0
        poll.assert_not_called()

    def test_immediate_failure(self):
        poll = MagicMock()
        outcome = supervise(
            lambda: ImmediateResult(success=False, error_code=32775, message="Invalid state"),
            poll,
            sleep=lambda s: None,
        )
        assert outcome.state is JobState.FAILED
        assert outcome.error_code == 32775
        assert outcome.message == "Invalid state"
        poll.assert_not_called()


class TestPolling:
    def test_running_twice_then_failed(self):
        poll = _scripted_poll(
            JobStatus(JobState.RUNNING),
            JobStatus(JobState.RUNNING),
            JobStatus(JobState.FAILED, error_code=32768, message="Access denied"),
        )
        seen: list[int] = []
        sleeps: list[float] = []

        outcome = supervise(
            lambda: JobHandle("job-1"), poll, poll_interval=2.0,
            reporter=lambda p, m: seen.append(p), sleep=sleeps.append,
        )

        assert outcome.state is JobState.FAILED
        assert outcome.error_code == 32768
        assert outcome.message == "Access denied"
        assert outcome.job.history == [JobState.RUNNING, JobState.RUNNING, JobState.FAILED]
        assert poll.call_count == 3
        assert sleeps == [2.0, 2.0, 2.0]
        # One heartbeat per running observation
        assert seen[:3] == [0, 10, 20]

    def test_completion_with_value(self):
        poll = _scripted_poll(
            JobStatus(JobState.SUBMITTED),
            JobStatus(JobState.COMPLETED, value="/snapshots/1"),
        )
        outcome = supervise(lambda: JobHandle("j"), poll, sleep=lambda s: None)
        assert outcome.succeeded
        assert outcome.value == "/snapshots/1"
        assert outcome.polls == 2

    def test_external_cancel(self):
        poll = _scripted_poll(JobStatus(JobState.CANCELLED, message="Terminated"))
        outcome = supervise(lambda: JobHandle("j"), poll, sleep=lambda s: None)
        assert outcome.state is JobState.CANCELLED

    def test_handle_passed_to_poll(self):
        handle = JobHandle("j", ref=object())
        poll = _scripted_poll(JobStatus(JobState.COMPLETED))
        supervise(lambda: handle, poll, sleep=lambda s: None)
        poll.assert_called_once_with(handle)

    def test_negative_interval(self):
        with pytest.raises(InvalidArgument):
            supervise(lambda: JobHandle("j"), MagicMock(), poll_interval=-1)


class TestProgress:
    def test_heartbeat_capped(self):
        statuses = [JobStatus(JobState.RUNNING)] * 15 + [JobStatus(JobState.COMPLETED)]
        seen: list[int] = []
        supervise(lambda: JobHandle("j"), _scripted_poll(*statuses), reporter=lambda p, m: seen.append(p),
                  sleep=lambda s: None)

        running = seen[1:-1]
        assert len(running) == 15
        assert max(running) == 95
        assert seen[-1] == 100

    def test_external_percent_monotonic(self):
        statuses = [
            JobStatus(JobState.RUNNING, percent=30),
            JobStatus(JobState.RUNNING, percent=20),
            JobStatus(JobState.RUNNING, percent=100),
            JobStatus(JobState.COMPLETED),
        ]
        seen: list[int] = []
        supervise(lambda: JobHandle("j"), _scripted_poll(*statuses), reporter=lambda p, m: seen.append(p),
                  sleep=lambda s: None)
        assert seen == [0, 30, 30, 99, 100]

    def test_stage_scaling(self):
        statuses = [JobStatus(JobState.RUNNING, percent=50), JobStatus(JobState.COMPLETED)]
        seen: list[int] = []
        supervise(lambda: JobHandle("j"), _scripted_poll(*statuses), reporter=lambda p, m: seen.append(p),
                  stage=Stage(10, 80), sleep=lambda s: None)
        assert seen == [10, 50, 90]


class TestDeadlineAndCancel:
    def test_deadline_raises_timeout(self):
        clock = _Clock()
        poll = MagicMock(return_value=JobStatus(JobState.RUNNING))

        with pytest.raises(JobTimeout):
            supervise(lambda: JobHandle("j"), poll, poll_interval=1.0, deadline=3.0,
                      sleep=clock.sleep, clock=clock)
        assert poll.call_count == 3

    def test_cancel_requests_external_cancel(self):
        token = CancelToken()
        handle = JobHandle("j")
        request_cancel = MagicMock()

        def _poll(h):
            token.cancel()
            return JobStatus(JobState.RUNNING)

        outcome = supervise(lambda: handle, _poll, cancel=token, request_cancel=request_cancel,
                            sleep=lambda s: None)

        assert outcome.state is JobState.CANCELLED
        assert outcome.polls == 1
        request_cancel.assert_called_once_with(handle)

    def test_failure_reported_at_last_percentage(self):
        statuses = [JobStatus(JobState.RUNNING, percent=40), JobStatus(JobState.FAILED, message="boom")]
        seen: list[tuple[int, str]] = []
        supervise(lambda: JobHandle("j"), _scripted_poll(*statuses), reporter=lambda p, m: seen.append((p, m)),
                  sleep=lambda s: None)
        assert seen[-1] == (40, "Job failed: boom")
