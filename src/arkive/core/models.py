"""Core data models for arkive."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from arkive.core.errors import ErrorKind

# --- Enums ---


class BackupType(str, Enum):
    FULL = "Full"
    INCREMENTAL = "Incremental"
    DIFFERENTIAL = "Differential"
    VOLUME = "Volume"
    DISK = "Disk"
    VIRTUAL_MACHINE = "VirtualMachine"


class OverwritePolicy(str, Enum):
    OVERWRITE = "overwrite"
    FAIL_IF_EXISTS = "fail-if-exists"
    SKIP_IF_EXISTS = "skip-if-exists"


class ImageDirection(str, Enum):
    READ = "read"  # device -> image file
    WRITE = "write"  # image file -> device


class JobState(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class Status(str, Enum):
    OK = "ok"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    CANCELLED = "cancelled"


# --- Helpers ---


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- File models ---


@dataclass(frozen=True)
class FileRecord:
    """Identity of one backed-up file, captured during a single enumeration."""

    path: str  # absolute path at the source
    relative_path: str  # POSIX-style, relative to the source root
    size: int
    modified_time: int  # nanoseconds since the epoch
    attributes: int = 0


class MetadataIndex(Mapping):
    """Read-only mapping of absolute source path to FileRecord."""

    def __init__(
        self,
        records: dict[str, FileRecord] | None = None,
        source_root: str = "",
        skipped_lines: int = 0,
    ) -> None:
        self._records: dict[str, FileRecord] = dict(records or {})
        self.source_root = source_root
        self.skipped_lines = skipped_lines

    @classmethod
    def from_records(cls, records, source_root: Path | str) -> MetadataIndex:
        """Build an index from an enumeration. Later duplicates replace earlier ones."""
        return cls({r.path: r for r in records}, source_root=str(source_root))

    def __getitem__(self, path: str) -> FileRecord:
        return self._records[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MetadataIndex):
            return self._records == other._records
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"MetadataIndex({len(self._records)} records, root={self.source_root!r})"


@dataclass
class Enumeration:
    """Output of the file enumerator.

    ``root`` is the directory relative paths hang off: the source itself,
    or its parent when the source is a single file.
    """

    root: str = ""
    records: list[FileRecord] = field(default_factory=list)
    total_size: int = 0


@dataclass
class ChangeSet:
    """Files a backup run will actually copy, in enumeration order."""

    records: list[FileRecord] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(r.size for r in self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self.records)


@dataclass
class BackupManifest:
    """Human-readable summary of one completed backup."""

    source: str
    destination: str
    backup_type: BackupType = BackupType.FULL
    file_count: int = 0
    total_size: int = 0
    files_skipped: int = 0
    created: datetime = field(default_factory=_now)
    baseline: str = ""
    full_baseline: str = ""
    files: list[str] = field(default_factory=list)


# --- Results ---


@dataclass
class CopyResult:
    """Outcome of one Copy Engine invocation."""

    files_copied: int = 0
    files_skipped: int = 0
    bytes_copied: int = 0
    copied: list[str] = field(default_factory=list)  # relative paths
    failures: list[str] = field(default_factory=list)
    fatal_error: Exception | None = None


@dataclass
class ImageResult:
    """Outcome of one Block Imager invocation."""

    bytes_transferred: int
    total_bytes: int


@dataclass
class OperationResult:
    """Result of a top-level backup or restore operation.

    Always carries a machine-checkable ``status`` and a human-readable
    ``message``, so nothing needs to be fetched from shared state afterwards.
    """

    status: Status
    message: str
    error_kind: ErrorKind | None = None
    files_copied: int = 0
    files_skipped: int = 0
    bytes_transferred: int = 0
    duration_seconds: float = 0.0
    failures: list[str] = field(default_factory=list)
    destination: str = ""
    timestamp: datetime = field(default_factory=_now)

    @property
    def success(self) -> bool:
        return self.status in (Status.OK, Status.PARTIAL_FAILURE)


# --- Cancellation ---


class CancelToken:
    """Cooperative cancellation flag checked between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
