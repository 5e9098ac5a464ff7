"""Tests for arkive.providers.snapshot.passthrough."""

from pathlib import Path

from arkive.core.jobs import JobHandle
from arkive.core.models import JobState
from arkive.providers.snapshot.passthrough import PassthroughSnapshotProvider


class TestPassthroughSnapshotProvider:
    def test_existing_volume(self, tmp_path: Path):
        result = PassthroughSnapshotProvider().create_snapshot(str(tmp_path))
        assert result.success
        assert result.value == str(tmp_path)

    def test_missing_volume(self, tmp_path: Path):
        result = PassthroughSnapshotProvider().create_snapshot(str(tmp_path / "gone"))
        assert not result.success
        assert result.error_code == "ENOENT"

    def test_poll_and_delete(self):
        provider = PassthroughSnapshotProvider()
        assert provider.poll(JobHandle("x")).state is JobState.COMPLETED
        assert provider.delete_snapshot("anything") is True
        assert provider.name == "passthrough"
