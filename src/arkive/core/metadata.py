"""Metadata Store: per-file identity persisted next to each backup.

On-disk layout (``backup_metadata.dat``)::

    BACKUP_METADATA_V1|<record count>|<source root>
    <relativePath>|<size>|<timeLow>|<timeHigh>|<attributes>

Loading is best effort: malformed record lines are skipped and counted in
``MetadataIndex.skipped_lines``. Only an unreadable header is fatal.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from arkive.core.errors import BaselineNotFound, CorruptMetadata
from arkive.core.fileutil import atomic_write
from arkive.core.models import FileRecord, MetadataIndex

log = logging.getLogger(__name__)

METADATA_FILENAME = "backup_metadata.dat"
FORMAT_VERSION = "BACKUP_METADATA_V1"
DELIMITER = "|"

_WORD = 0xFFFFFFFF


def split_time(modified_time: int) -> tuple[int, int]:
    """Split a nanosecond timestamp into (low, high) 32-bit words."""
    return modified_time & _WORD, modified_time >> 32


def join_time(low: int, high: int) -> int:
    return (high << 32) | (low & _WORD)


def format_record(record: FileRecord) -> str:
    low, high = split_time(record.modified_time)
    return DELIMITER.join(
        [record.relative_path, str(record.size), str(low), str(high), str(record.attributes)]
    )


def parse_record(line: str, source_root: str) -> FileRecord:
    """Parse one record line. Raises ValueError if malformed."""
    # Numeric fields are taken from the right so '|' inside a path survives
    parts = line.rsplit(DELIMITER, 4)
    if len(parts) != 5:
        raise ValueError(f"expected 5 fields, got {len(parts)}")
    rel, size, low, high, attributes = parts
    if not rel:
        raise ValueError("empty path")
    size_i, low_i, high_i, attr_i = int(size), int(low), int(high), int(attributes)
    if size_i < 0 or low_i < 0 or high_i < 0 or low_i > _WORD:
        raise ValueError("negative or out-of-range field")
    return FileRecord(
        path=str(Path(source_root) / PurePosixPath(rel)),
        relative_path=rel,
        size=size_i,
        modified_time=join_time(low_i, high_i),
        attributes=attr_i,
    )


class MetadataStore:
    """Reads and writes the metadata index of a backup directory."""

    def __init__(self, filename: str = METADATA_FILENAME) -> None:
        self.filename = filename

    def path_for(self, directory: Path) -> Path:
        return Path(directory) / self.filename

    def exists(self, directory: Path) -> bool:
        return self.path_for(directory).is_file()

    def load(self, directory: Path) -> MetadataIndex:
        """Load the index stored in ``directory``.

        Raises BaselineNotFound when there is no index, CorruptMetadata when
        the header is unusable.
        """
        path = self.path_for(directory)
        try:
            text = path.read_text(encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError as e:
            raise BaselineNotFound(f"No metadata index in {directory}") from e
        except OSError as e:
            raise CorruptMetadata(f"Cannot read metadata index {path}: {e}") from e

        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        if not lines:
            raise CorruptMetadata(f"Empty metadata index: {path}")

        declared, source_root = self._parse_header(lines[0], path)

        records: dict[str, FileRecord] = {}
        skipped = 0
        for lineno, line in enumerate(lines[1:], start=2):
            try:
                record = parse_record(line.rstrip("\r"), source_root)
            except ValueError as e:
                skipped += 1
                log.warning("Skipping malformed metadata line %d in %s: %s", lineno, path, e)
                continue
            records[record.path] = record

        present = len(lines) - 1
        if present < declared:
            log.warning(
                "Metadata index %s looks truncated: %d of %d records present",
                path, present, declared,
            )
        if skipped:
            log.warning("Loaded %s with %d malformed line(s) skipped", path, skipped)

        return MetadataIndex(records, source_root=source_root, skipped_lines=skipped)

    def save(self, directory: Path, index: MetadataIndex) -> Path:
        """Atomically write ``index`` into ``directory``."""
        path = self.path_for(directory)
        body: list[str] = []
        for record in index.values():
            if "\n" in record.relative_path or "\r" in record.relative_path:
                log.warning("Cannot record path with a line break: %r", record.relative_path)
                continue
            body.append(format_record(record))

        header = DELIMITER.join([FORMAT_VERSION, str(len(body)), index.source_root])
        atomic_write(path, "\n".join([header, *body]) + "\n", errors="surrogateescape")
        log.debug("Saved %d metadata records to %s", len(body), path)
        return path

    @staticmethod
    def _parse_header(line: str, path: Path) -> tuple[int, str]:
        parts = line.rstrip("\r").split(DELIMITER, 2)
        if len(parts) < 2 or parts[0] != FORMAT_VERSION:
            raise CorruptMetadata(f"Unrecognised metadata header in {path}: {line[:80]!r}")
        try:
            declared = int(parts[1])
        except ValueError as e:
            raise CorruptMetadata(f"Bad record count in {path}: {parts[1]!r}") from e
        source_root = parts[2] if len(parts) == 3 else ""
        return declared, source_root
