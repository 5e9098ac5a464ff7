"""Tests for arkive.core.manifest: manifest file and read-only queries."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from arkive.core.errors import ManifestNotFound, SourceNotFound
from arkive.core.manifest import (
    MANIFEST_FILENAME,
    backup_info,
    format_size,
    list_backup_contents,
    parse_manifest,
    read_manifest,
    render_manifest,
    verify_backup,
    write_manifest,
)
from arkive.core.metadata import METADATA_FILENAME
from arkive.core.models import BackupManifest, BackupType


def _manifest(**overrides) -> BackupManifest:
    fields = dict(
        source="/data/src",
        destination="/backups/b1",
        backup_type=BackupType.INCREMENTAL,
        file_count=2,
        total_size=300,
        files_skipped=1,
        created=datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc),
        baseline="/backups/b0",
        full_baseline="/backups/b0",
        files=["a.txt", "docs/b.txt"],
    )
    fields.update(overrides)
    return BackupManifest(**fields)


def _backup_dir(tmp_path: Path) -> Path:
    backup = tmp_path / "backup"
    (backup / "docs").mkdir(parents=True)
    (backup / "a.txt").write_bytes(b"a" * 100)
    (backup / "docs" / "b.txt").write_bytes(b"b" * 2048)
    return backup


class TestRenderAndParse:
    def test_render_layout(self):
        text = render_manifest(_manifest())
        lines = text.splitlines()
        assert lines[0] == "Backup Information"
        assert "Type: Incremental" in lines
        assert "Date: 2024-05-01T12:30:00Z" in lines
        assert "Total Files: 2" in lines
        assert lines[-3:] == ["Files:", "a.txt", "docs/b.txt"]

    def test_write_and_read(self, tmp_path: Path):
        original = _manifest()
        path = write_manifest(tmp_path, original)
        assert path.name == MANIFEST_FILENAME
        assert read_manifest(tmp_path) == original

    def test_utf16_manifest(self, tmp_path: Path):
        original = _manifest(source="C:\\Données")
        write_manifest(tmp_path, original, encoding="utf-16")
        assert (tmp_path / MANIFEST_FILENAME).read_bytes()[:2] in (b"\xff\xfe", b"\xfe\xff")
        assert read_manifest(tmp_path).source == "C:\\Données"

    def test_unknown_lines_ignored(self):
        text = "Backup Information\nSource: /x\nColour: blue\nrandom junk\nTotal Files: 7 files\n"
        manifest = parse_manifest(text)
        assert manifest.source == "/x"
        assert manifest.file_count == 7
        assert manifest.backup_type is BackupType.FULL
        assert manifest.files == []

    def test_garbage_values_default(self):
        manifest = parse_manifest("Type: Weird\nTotal Size: lots\nDate: yesterday\n")
        assert manifest.backup_type is BackupType.FULL
        assert manifest.total_size == 0
        assert manifest.created == datetime.fromtimestamp(0, tz=timezone.utc)

    def test_missing_manifest(self, tmp_path: Path):
        with pytest.raises(ManifestNotFound):
            read_manifest(tmp_path)


class TestQueries:
    def test_backup_info_reads_manifest(self, tmp_path: Path):
        write_manifest(tmp_path, _manifest())
        assert backup_info(tmp_path).file_count == 2

    def test_backup_info_without_manifest(self, tmp_path: Path):
        backup = _backup_dir(tmp_path)
        info = backup_info(backup)
        assert info.file_count == 2
        assert info.total_size == 2148
        assert info.files == ["a.txt", "docs/b.txt"]

    def test_backup_info_missing(self, tmp_path: Path):
        with pytest.raises(SourceNotFound):
            backup_info(tmp_path / "gone")

    def test_list_contents_excludes_engine_files(self, tmp_path: Path):
        backup = _backup_dir(tmp_path)
        write_manifest(backup, _manifest())
        (backup / METADATA_FILENAME).write_text("BACKUP_METADATA_V1|0|\n", encoding="utf-8")

        assert list_backup_contents(backup) == ["a.txt (100 B)", "docs/b.txt (2 KB)"]

    def test_list_empty(self, tmp_path: Path):
        assert list_backup_contents(tmp_path) == []

    def test_format_size(self):
        assert format_size(10) == "10 B"
        assert format_size(4096) == "4 KB"
        assert format_size(5 * 1024 * 1024) == "5 MB"


class TestVerify:
    def test_all_present(self, tmp_path: Path):
        backup = _backup_dir(tmp_path)
        write_manifest(backup, _manifest())
        seen: list[int] = []

        assert verify_backup(backup, lambda p, m: seen.append(p)) == []
        assert seen[0] == 0
        assert seen[-1] == 100

    def test_missing_file(self, tmp_path: Path):
        backup = _backup_dir(tmp_path)
        write_manifest(backup, _manifest(files=["a.txt", "docs/b.txt", "gone.txt"]))
        assert verify_backup(backup) == ["Missing: gone.txt"]

    def test_without_manifest_checks_all_files(self, tmp_path: Path):
        backup = _backup_dir(tmp_path)
        assert verify_backup(backup) == []

    def test_missing_backup(self, tmp_path: Path):
        with pytest.raises(SourceNotFound):
            verify_backup(tmp_path / "gone")
