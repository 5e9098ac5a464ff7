"""Block Imager: stream a raw device to or from an image file.

There is no skip-and-continue here. Any failed, short read or short write
aborts the whole operation with BlockIOError, and cancellation is honoured
only between chunks.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

from arkive.core.errors import (
    BlockIOError,
    InvalidArgument,
    OperationCancelled,
    SourceNotFound,
)
from arkive.core.fileutil import ensure_dir
from arkive.core.models import CancelToken, ImageDirection, ImageResult
from arkive.core.progress import FULL_RANGE, ProgressTracker, Stage, as_tracker

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024
MIN_CHUNK_SIZE = 64 * 1024
IMAGE_SUFFIX = ".img"

_O_BINARY = getattr(os, "O_BINARY", 0)


def image_name(disk: str | int) -> str:
    """File name of the image for ``disk`` inside a backup directory."""
    return f"disk_{disk}{IMAGE_SUFFIX}"


def find_image(backup_dir: Path, disk: str | int | None = None) -> Path:
    """Locate ``disk_<disk>.img``, falling back to the first ``*.img``."""
    backup_dir = Path(backup_dir)
    if disk is not None:
        candidate = backup_dir / image_name(disk)
        if candidate.is_file():
            return candidate
    if backup_dir.is_dir():
        for entry in sorted(backup_dir.iterdir()):
            if entry.suffix == IMAGE_SUFFIX and entry.is_file():
                return entry
    raise SourceNotFound(f"Disk image not found in backup: {backup_dir}")


def device_size(fd: int) -> int:
    """Size in bytes of an open device or file, found by seeking to the end."""
    size = os.lseek(fd, 0, os.SEEK_END)
    os.lseek(fd, 0, os.SEEK_SET)
    return size


def image_device(
    direction: ImageDirection,
    device_path: Path | str,
    image_path: Path | str,
    reporter: ProgressTracker | Callable[[int, str], None] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: CancelToken | None = None,
    stage: Stage = FULL_RANGE,
) -> ImageResult:
    """Copy a device into an image (READ) or an image onto a device (WRITE)."""
    if not device_path or not image_path:
        raise InvalidArgument("Device path and image path are required")
    if chunk_size < MIN_CHUNK_SIZE:
        raise InvalidArgument(f"Chunk size must be at least {MIN_CHUNK_SIZE} bytes")

    device_path = Path(device_path)
    image_path = Path(image_path)
    tracker = as_tracker(reporter)

    if direction is ImageDirection.READ:
        source, target = device_path, image_path
        ensure_dir(image_path.parent)
        target_flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _O_BINARY
        label = "Backing up disk"
    else:
        source, target = image_path, device_path
        # A restore target must already exist; never create a regular file in its place
        if not device_path.exists():
            raise SourceNotFound(f"Target device does not exist: {device_path}")
        target_flags = os.O_WRONLY | _O_BINARY
        label = "Restoring disk"

    try:
        src_fd = os.open(source, os.O_RDONLY | _O_BINARY)
    except FileNotFoundError as e:
        raise SourceNotFound(f"Cannot open {source}: {e}") from e
    except OSError as e:
        raise BlockIOError(f"Cannot open {source}: {e}") from e

    try:
        try:
            dst_fd = os.open(target, target_flags, 0o600)
        except OSError as e:
            raise BlockIOError(f"Cannot open {target}: {e}") from e
        try:
            total = device_size(src_fd)
            transferred = _stream(src_fd, dst_fd, total, chunk_size, tracker, stage, label, cancel)
            os.fsync(dst_fd)
        except OSError as e:
            raise BlockIOError(f"{label} failed at {source} -> {target}: {e}") from e
        finally:
            os.close(dst_fd)
    finally:
        os.close(src_fd)

    log.info("%s complete: %d bytes %s -> %s", label, transferred, source, target)
    return ImageResult(bytes_transferred=transferred, total_bytes=total)


def _stream(
    src_fd: int,
    dst_fd: int,
    total: int,
    chunk_size: int,
    tracker: ProgressTracker,
    stage: Stage,
    label: str,
    cancel: CancelToken | None,
) -> int:
    transferred = 0
    tracker.update(0, total, stage, f"{label}...")

    while transferred < total:
        if cancel is not None and cancel.cancelled:
            raise OperationCancelled(f"{label} cancelled at byte {transferred} of {total}")

        wanted = min(chunk_size, total - transferred)
        chunk = os.read(src_fd, wanted)
        if len(chunk) != wanted:
            raise BlockIOError(
                f"Short read at offset {transferred}: got {len(chunk)} of {wanted} bytes"
            )

        written = os.write(dst_fd, chunk)
        if written != len(chunk):
            raise BlockIOError(
                f"Short write at offset {transferred}: wrote {written} of {len(chunk)} bytes"
            )

        transferred += written
        tracker.update_if_changed(transferred, total, stage, f"{label}...")

    tracker.update(transferred, total, stage, f"{label}: {transferred} bytes")
    return transferred
