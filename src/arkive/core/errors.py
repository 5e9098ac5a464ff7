"""Error taxonomy for backup and restore operations.

Core components raise these; ``BackupEngine`` converts them into an
``OperationResult`` so callers always get a status plus a message.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    SOURCE_NOT_FOUND = "source_not_found"
    INVALID_SOURCE = "invalid_source"
    DESTINATION_UNUSABLE = "destination_unusable"
    DESTINATION_BUSY = "destination_busy"
    PERMISSION_DENIED = "permission_denied"
    PARTIAL_FAILURE = "partial_failure"
    EXTERNAL_JOB_FAILED = "external_job_failed"
    TIMEOUT = "timeout"
    CORRUPT = "corrupt"
    NOT_FOUND = "not_found"
    BLOCK_IO = "block_io"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ArkiveError(RuntimeError):
    """Base exception for all arkive failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class InvalidArgument(ArkiveError):
    """Raised when a required parameter is missing or empty."""

    kind = ErrorKind.INVALID_ARGUMENT


class SourceNotFound(ArkiveError):
    """Raised when the source path does not exist."""

    kind = ErrorKind.SOURCE_NOT_FOUND


class InvalidSource(ArkiveError):
    """Raised when the source is neither a regular file nor a directory."""

    kind = ErrorKind.INVALID_SOURCE


class DestinationUnusable(ArkiveError):
    """Raised when the output directory (or a subdirectory) cannot be created."""

    kind = ErrorKind.DESTINATION_UNUSABLE


class DestinationBusy(ArkiveError):
    """Raised when another operation holds the destination lock."""

    kind = ErrorKind.DESTINATION_BUSY


class ExternalJobFailed(ArkiveError):
    """Raised when a supervised external job ends in the failed state."""

    kind = ErrorKind.EXTERNAL_JOB_FAILED

    def __init__(self, message: str, error_code: int | str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class JobTimeout(ArkiveError):
    """Raised when a supervision deadline elapses before the job finishes."""

    kind = ErrorKind.TIMEOUT


class CorruptMetadata(ArkiveError):
    """Raised when a persisted metadata index cannot be parsed at all."""

    kind = ErrorKind.CORRUPT


class BaselineNotFound(ArkiveError):
    """Raised when a directory holds no metadata index."""

    kind = ErrorKind.NOT_FOUND


class ManifestNotFound(ArkiveError):
    """Raised when a directory holds no backup manifest."""

    kind = ErrorKind.NOT_FOUND


class BlockIOError(ArkiveError):
    """Raised on any failed, short read or short write while imaging a device."""

    kind = ErrorKind.BLOCK_IO


class OperationCancelled(ArkiveError):
    """Raised when a caller cancels an operation between units of work."""

    kind = ErrorKind.CANCELLED
