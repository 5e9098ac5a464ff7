"""Backup manifest (``backup_info.txt``) writer and reader, plus read-only queries.

The manifest is a human-readable text file: ``key: value`` header lines, then
a ``Files:`` section with one relative path per line. The reader is a plain
line scanner that ignores anything it does not recognise.
"""

from __future__ import annotations

import codecs
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from arkive.core.errors import ManifestNotFound, SourceNotFound
from arkive.core.fileutil import LOCK_NAME, atomic_write
from arkive.core.metadata import METADATA_FILENAME
from arkive.core.models import BackupManifest, BackupType
from arkive.core.progress import ProgressTracker, Stage, as_tracker

log = logging.getLogger(__name__)

MANIFEST_FILENAME = "backup_info.txt"
ENGINE_FILES = frozenset({MANIFEST_FILENAME, METADATA_FILENAME, LOCK_NAME})

_TITLE = "Backup Information"
_FILES_MARKER = "Files:"
_VERIFY_STAGE = Stage(10, 90)

_KEYS = {
    "source": "Source",
    "destination": "Destination",
    "backup_type": "Type",
    "created": "Date",
    "file_count": "Total Files",
    "total_size": "Total Size",
    "files_skipped": "Files Skipped",
    "baseline": "Baseline",
    "full_baseline": "Full Baseline",
}


def render_manifest(manifest: BackupManifest) -> str:
    lines = [
        _TITLE,
        "=" * len(_TITLE),
        "",
        f"Source: {manifest.source}",
        f"Destination: {manifest.destination}",
        f"Type: {manifest.backup_type.value}",
        f"Date: {manifest.created.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')}",
        f"Total Files: {manifest.file_count}",
        f"Total Size: {manifest.total_size}",
        f"Files Skipped: {manifest.files_skipped}",
        f"Baseline: {manifest.baseline}",
        f"Full Baseline: {manifest.full_baseline}",
        "",
        _FILES_MARKER,
        *(f for f in manifest.files if "\n" not in f and "\r" not in f),
    ]
    return "\n".join(lines) + "\n"


def write_manifest(directory: Path, manifest: BackupManifest, encoding: str = "utf-8") -> Path:
    """Atomically write ``manifest`` into ``directory``."""
    path = Path(directory) / MANIFEST_FILENAME
    # Undecodable file names round-trip as raw bytes under UTF-8 only
    errors = "surrogateescape" if codecs.lookup(encoding).name == "utf-8" else "replace"
    atomic_write(path, render_manifest(manifest), encoding=encoding, errors=errors)
    return path


def _decode(raw: bytes) -> str:
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return raw.decode("utf-16", errors="replace")
    return raw.decode("utf-8-sig", errors="surrogateescape")


def parse_manifest(text: str) -> BackupManifest:
    """Parse manifest text. Unknown lines and trailing garbage are ignored."""
    values: dict[str, str] = {}
    files: list[str] = []
    labels = {label: attr for attr, label in _KEYS.items()}
    in_files = False

    for raw_line in text.splitlines():
        line = raw_line.strip("\r\x00")
        if in_files:
            if line.strip():
                files.append(line)
            continue
        if line.strip() == _FILES_MARKER:
            in_files = True
            continue
        key, sep, value = line.partition(":")
        if sep and key.strip() in labels:
            values[labels[key.strip()]] = value.strip()

    return BackupManifest(
        source=values.get("source", ""),
        destination=values.get("destination", ""),
        backup_type=_parse_type(values.get("backup_type", "")),
        file_count=_parse_int(values.get("file_count")),
        total_size=_parse_int(values.get("total_size")),
        files_skipped=_parse_int(values.get("files_skipped")),
        created=_parse_date(values.get("created", "")),
        baseline=values.get("baseline", ""),
        full_baseline=values.get("full_baseline", ""),
        files=files,
    )


def read_manifest(directory: Path) -> BackupManifest:
    """Read the manifest of a backup directory. Raises ManifestNotFound."""
    path = Path(directory) / MANIFEST_FILENAME
    try:
        raw = path.read_bytes()
    except FileNotFoundError as e:
        raise ManifestNotFound(f"No backup manifest in {directory}") from e
    return parse_manifest(_decode(raw))


def _parse_int(value: str | None) -> int:
    if not value:
        return 0
    digits = value.split()[0]
    try:
        return int(digits)
    except ValueError:
        return 0


def _parse_type(value: str) -> BackupType:
    try:
        return BackupType(value)
    except ValueError:
        return BackupType.FULL


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)
    except ValueError:
        return datetime.fromtimestamp(0, tz=timezone.utc)


# --- Queries ---


def _backup_files(backup_dir: Path) -> list[tuple[str, int]]:
    """(relative path, size) of every content file, engine files excluded."""
    entries: list[tuple[str, int]] = []
    for root, _dirs, files in os.walk(backup_dir):
        rel_root = Path(root).relative_to(backup_dir)
        for name in files:
            if rel_root == Path(".") and name in ENGINE_FILES:
                continue
            path = Path(root) / name
            try:
                size = path.stat().st_size
            except OSError:
                size = 0
            entries.append(((rel_root / name).as_posix(), size))
    return entries


def backup_info(backup_dir: Path) -> BackupManifest:
    """Manifest of ``backup_dir``, synthesised from its contents if missing."""
    backup_dir = Path(backup_dir)
    if not backup_dir.exists():
        raise SourceNotFound(f"Backup path does not exist: {backup_dir}")
    try:
        return read_manifest(backup_dir)
    except ManifestNotFound:
        log.debug("No manifest in %s, scanning contents", backup_dir)

    entries = _backup_files(backup_dir)
    return BackupManifest(
        source="",
        destination=str(backup_dir),
        file_count=len(entries),
        total_size=sum(size for _, size in entries),
        created=datetime.fromtimestamp(backup_dir.stat().st_mtime, tz=timezone.utc),
        files=sorted(rel for rel, _ in entries),
    )


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size // 1024} KB"
    return f"{size // (1024 * 1024)} MB"


def list_backup_contents(backup_dir: Path) -> list[str]:
    """Sorted ``relative/path (size)`` lines for every file in a backup."""
    backup_dir = Path(backup_dir)
    if not backup_dir.exists():
        raise SourceNotFound(f"Backup path does not exist: {backup_dir}")
    return sorted(f"{rel} ({format_size(size)})" for rel, size in _backup_files(backup_dir))


def verify_backup(
    backup_dir: Path,
    reporter: ProgressTracker | Callable[[int, str], None] | None = None,
) -> list[str]:
    """Check that every backed-up file is present and readable.

    Files listed in the manifest are checked when one exists, otherwise
    every file found. Returns the problems found; empty means verified.
    """
    backup_dir = Path(backup_dir)
    tracker = as_tracker(reporter)
    tracker.report(0, "Starting backup verification...")

    if not backup_dir.is_dir():
        raise SourceNotFound(f"Backup path does not exist: {backup_dir}")

    try:
        expected = read_manifest(backup_dir).files
    except ManifestNotFound:
        expected = [rel for rel, _ in _backup_files(backup_dir)]

    tracker.report(10, f"Verifying {len(expected)} files...")
    problems: list[str] = []
    for n, rel in enumerate(expected, start=1):
        path = backup_dir.joinpath(*PurePosixPath(rel).parts)
        try:
            with open(path, "rb") as f:
                f.read(1)
        except FileNotFoundError:
            problems.append(f"Missing: {rel}")
        except OSError as e:
            problems.append(f"Unreadable: {rel} ({e})")
        tracker.update_if_changed(n, len(expected), _VERIFY_STAGE, f"Verified {n} of {len(expected)} files")

    if problems:
        tracker.fail(f"Verification failed: {len(problems)} problem(s)")
    else:
        tracker.report(100, "Backup verification completed successfully")
    return problems
