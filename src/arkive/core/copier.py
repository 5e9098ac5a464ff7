"""Copy Engine: transfer selected files into a destination tree.

Per-file failures are recorded and skipped; only failing to create a
destination directory stops the run. Progress is byte-weighted across the
whole set.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path, PurePosixPath

from arkive.core.errors import DestinationUnusable, OperationCancelled
from arkive.core.fileutil import ensure_dir
from arkive.core.models import CancelToken, CopyResult, FileRecord, OverwritePolicy
from arkive.core.progress import FULL_RANGE, ProgressTracker, Stage, as_tracker

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class _Skipped(Exception):
    """Internal signal: destination collision under a non-overwrite policy."""


def copy_files(
    records: Sequence[FileRecord],
    source_root: Path | str,
    dest_root: Path | str,
    policy: OverwritePolicy = OverwritePolicy.OVERWRITE,
    reporter: ProgressTracker | Callable[[int, str], None] | None = None,
    cancel: CancelToken | None = None,
    stage: Stage = FULL_RANGE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> CopyResult:
    """Copy ``records`` under ``dest_root``, re-rooting each relative path.

    Returns a CopyResult; ``fatal_error`` is set (and the loop stopped) only
    for destination directory failures or cancellation.
    """
    tracker = as_tracker(reporter)
    result = CopyResult()
    dest_root = Path(dest_root)
    total = sum(r.size for r in records)
    processed = 0
    created_dirs: set[Path] = set()

    tracker.update(0, total, stage, f"Copying {len(records)} files...")

    try:
        ensure_dir(dest_root)
    except DestinationUnusable as e:
        result.fatal_error = e
        return result

    for index, record in enumerate(records, start=1):
        if cancel is not None and cancel.cancelled:
            result.fatal_error = OperationCancelled(
                f"Cancelled after {result.files_copied} of {len(records)} files"
            )
            return result

        source = Path(record.path) if record.path else Path(source_root) / record.relative_path
        target = dest_root.joinpath(*PurePosixPath(record.relative_path).parts)

        parent = target.parent
        if parent not in created_dirs:
            try:
                ensure_dir(parent)
            except DestinationUnusable as e:
                log.error("Destination unusable: %s", e)
                result.fatal_error = e
                return result
            created_dirs.add(parent)

        written = 0

        def _on_chunk(n: int) -> None:
            nonlocal written
            written += n
            tracker.update_if_changed(processed + written, total, stage, f"Copying {record.relative_path}")

        try:
            _copy_file(source, target, record, policy, chunk_size, _on_chunk)
        except _Skipped:
            result.files_skipped += 1
            total -= record.size
            if policy is OverwritePolicy.FAIL_IF_EXISTS:
                result.failures.append(f"Already exists: {record.relative_path}")
                log.info("Not overwriting existing file %s", target)
            else:
                log.debug("Skipping existing file %s", target)
            continue
        except PermissionError as e:
            result.files_skipped += 1
            total -= record.size
            result.failures.append(f"Permission denied: {record.relative_path} ({e})")
            log.warning("Permission denied copying %s: %s", record.relative_path, e)
            continue
        except OSError as e:
            result.files_skipped += 1
            total -= record.size
            result.failures.append(f"Failed to copy {record.relative_path}: {e}")
            log.warning("Backup copy error: %s: %s", record.relative_path, e)
            continue

        # Sizes may have drifted since enumeration; progress follows the record
        processed += record.size
        result.files_copied += 1
        result.bytes_copied += written
        result.copied.append(record.relative_path)
        tracker.update(
            processed, total, stage, f"Copied {index} of {len(records)} files",
        )

    tracker.update(total, total, stage, f"Copied {result.files_copied} files")
    return result


def _copy_file(
    source: Path,
    target: Path,
    record: FileRecord,
    policy: OverwritePolicy,
    chunk_size: int,
    on_chunk: Callable[[int], None],
) -> None:
    """Copy one file's content, then its attributes and modification time."""
    if policy is OverwritePolicy.OVERWRITE:
        mode = "wb"
    else:
        if os.path.lexists(target):
            raise _Skipped()
        mode = "xb"

    with open(source, "rb") as src:
        try:
            dst = open(target, mode)
        except FileExistsError as e:
            raise _Skipped() from e
        try:
            with dst:
                while True:
                    chunk = src.read(chunk_size)
                    if not chunk:
                        break
                    dst.write(chunk)
                    on_chunk(len(chunk))
        except BaseException:
            with contextlib.suppress(OSError):
                target.unlink()
            raise

    _copy_attributes(source, target, record)


def _copy_attributes(source: Path, target: Path, record: FileRecord) -> None:
    try:
        shutil.copystat(source, target)
        atime_ns = target.stat().st_atime_ns
        os.utime(target, ns=(atime_ns, record.modified_time))
    except OSError as e:
        # Content is in place; attribute failures do not fail the file
        log.debug("Could not preserve attributes on %s: %s", target, e)
