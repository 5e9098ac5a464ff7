"""Tests for arkive.providers.systemstate.process: ProcessSystemStateTool."""

import sys
import time
from pathlib import Path

from arkive.core.jobs import ImmediateResult, JobHandle, supervise
from arkive.core.models import JobState
from arkive.providers.systemstate.base import SystemStateTool
from arkive.providers.systemstate.process import DEFAULT_COMMAND, ProcessSystemStateTool, parse_percent


def _script_tool(body: str) -> ProcessSystemStateTool:
    """Tool whose command runs ``body`` with the Python interpreter (extra args ignored)."""
    return ProcessSystemStateTool({"command": [sys.executable, "-c", body]})


def _wait(tool: ProcessSystemStateTool, handle: JobHandle, timeout: float = 30.0):
    deadline = time.monotonic() + timeout
    while True:
        status = tool.poll(handle)
        if status.state.is_terminal or time.monotonic() > deadline:
            return status
        time.sleep(0.05)


class TestParsePercent:
    def test_percent_sign(self):
        assert parse_percent("Restoring files (42%)") == 42

    def test_word(self):
        assert parse_percent("Progress: 7 percent done") == 7

    def test_none(self):
        assert parse_percent("Starting the restore operation") is None

    def test_capped(self):
        assert parse_percent("999%") == 100


class TestArguments:
    def test_default_command(self):
        args = ProcessSystemStateTool().build_args("03/01/2024-10:00", "C:")
        assert args == [*DEFAULT_COMMAND, "-version:03/01/2024-10:00", "-backupTarget:C:", "-quiet"]

    def test_configured_command(self):
        tool = ProcessSystemStateTool({"command": ["restore-tool", "run"]})
        assert tool.build_args("v1", "D:")[:2] == ["restore-tool", "run"]

    def test_protocol(self):
        assert isinstance(ProcessSystemStateTool(), SystemStateTool)
        assert ProcessSystemStateTool().name == "process"


class TestProcessLifecycle:
    def test_exit_zero_completes(self):
        tool = _script_tool("print('50%'); print('done')")
        handle = tool.start_restore("v1", "C:")
        assert isinstance(handle, JobHandle)

        status = _wait(tool, handle)
        assert status.state is JobState.COMPLETED

    def test_nonzero_exit_fails_with_output(self):
        tool = _script_tool("import sys; print('ERROR - version not found'); sys.exit(3)")
        handle = tool.start_restore("v1", "C:")

        status = _wait(tool, handle)
        assert status.state is JobState.FAILED
        assert status.error_code == 3
        assert "exit code 3" in status.message
        assert "ERROR - version not found" in status.message

    def test_missing_executable(self, tmp_path: Path):
        tool = ProcessSystemStateTool({"command": [str(tmp_path / "missing-tool")]})
        result = tool.start_restore("v1", "C:")
        assert isinstance(result, ImmediateResult)
        assert not result.success
        assert "Failed to execute" in result.message

    def test_terminate(self):
        tool = _script_tool("import time; time.sleep(60)")
        handle = tool.start_restore("v1", "C:")
        tool.terminate(handle)

        status = _wait(tool, handle)
        assert status.state is JobState.FAILED

    def test_supervised(self):
        tool = _script_tool("print('Restoring 30%'); print('Restoring 80%')")
        seen: list[int] = []
        outcome = supervise(
            lambda: tool.start_restore("v1", "C:"), tool.poll, poll_interval=0.05,
            reporter=lambda p, m: seen.append(p), deadline=30.0,
        )
        assert outcome.succeeded
        assert seen[-1] == 100
