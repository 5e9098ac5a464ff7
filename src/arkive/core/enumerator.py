"""File Enumerator: walk a source tree into FileRecords."""

from __future__ import annotations

import logging
import os
import stat as stat_mod
from collections.abc import Iterable
from pathlib import Path

from arkive.core.errors import InvalidArgument, InvalidSource, SourceNotFound
from arkive.core.models import Enumeration, FileRecord

log = logging.getLogger(__name__)


def file_attributes(st: os.stat_result) -> int:
    """Platform attribute bits: Windows file attributes, else st_mode."""
    return getattr(st, "st_file_attributes", st.st_mode)


def make_record(path: Path, relative_path: str, st: os.stat_result) -> FileRecord:
    return FileRecord(
        path=str(path),
        relative_path=relative_path,
        size=st.st_size,
        modified_time=st.st_mtime_ns,
        attributes=file_attributes(st),
    )


def enumerate_files(root: Path | str, exclude: Iterable[str] = ()) -> Enumeration:
    """Enumerate every readable regular file under ``root``.

    A single file yields exactly one record. Entries that cannot be read are
    omitted silently. ``exclude`` lists file names to leave out of the top level.
    """
    if root is None or str(root) == "":
        raise InvalidArgument("Source path is required")

    root = Path(root).absolute()
    excluded = set(exclude)

    try:
        root_stat = root.stat()
    except FileNotFoundError as e:
        raise SourceNotFound(f"Source path does not exist: {root}") from e
    except OSError as e:
        raise SourceNotFound(f"Cannot access source path {root}: {e}") from e

    if stat_mod.S_ISREG(root_stat.st_mode):
        record = make_record(root, root.name, root_stat)
        return Enumeration(root=str(root.parent), records=[record], total_size=record.size)

    if not stat_mod.S_ISDIR(root_stat.st_mode):
        raise InvalidSource(f"Source is not a valid file or directory: {root}")

    result = Enumeration(root=str(root))

    def _on_error(err: OSError) -> None:
        log.debug("Skipping unreadable directory %s: %s", err.filename, err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        current = Path(dirpath)
        rel_dir = current.relative_to(root)
        at_root = current == root

        for name in sorted(filenames):
            if at_root and name in excluded:
                continue
            path = current / name
            try:
                st = path.lstat()
            except OSError as e:
                log.debug("Skipping %s: %s", path, e)
                continue
            if not stat_mod.S_ISREG(st.st_mode):
                continue
            if not os.access(path, os.R_OK):
                log.debug("Skipping unreadable file %s", path)
                continue

            rel = (rel_dir / name).as_posix()
            result.records.append(make_record(root / rel, rel, st))
            result.total_size += st.st_size

    log.debug("Enumerated %d files (%d bytes) under %s", len(result.records), result.total_size, root)
    return result
