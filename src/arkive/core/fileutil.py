"""File system utilities: atomic writes, directory creation, destination locking."""

from __future__ import annotations

import contextlib
import logging
import os
import platform
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from arkive.core.errors import DestinationBusy, DestinationUnusable

log = logging.getLogger(__name__)

LOCK_NAME = ".arkive.lock"

_IS_WINDOWS = platform.system() == "Windows"


def ensure_dir(path: Path) -> Path:
    """Create a directory tree, raising DestinationUnusable on failure."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DestinationUnusable(f"Cannot create directory {path}: {e}") from e
    if not path.is_dir():
        raise DestinationUnusable(f"Not a directory: {path}")
    return path


def atomic_write(path: Path, content: str, encoding: str = "utf-8", errors: str = "strict") -> None:
    """Write content to file atomically via temp file + rename.

    An existing file at ``path`` is left untouched if the write fails.
    """
    ensure_dir(path.parent)

    # Temp file in the same directory so the rename stays on one file system
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=path.suffix,
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding, errors=errors, newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


@contextmanager
def destination_lock(root: Path) -> Generator[Path, None, None]:
    """Hold an exclusive, non-blocking lock on a destination root.

    Raises DestinationBusy if another operation already holds it. The lock
    file stays in place after release; only the OS lock on it is dropped.
    """
    ensure_dir(root)
    lock_path = root / LOCK_NAME

    if _IS_WINDOWS:
        yield from _windows_lock(lock_path)
    else:
        yield from _unix_lock(lock_path)


def _unix_lock(lock_path: Path) -> Generator[Path, None, None]:
    import fcntl

    with open(lock_path, "w") as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise DestinationBusy(
                f"Destination is in use by another operation: {lock_path.parent}"
            ) from e
        log.debug("Acquired destination lock %s", lock_path)
        try:
            yield lock_path.parent
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)


def _windows_lock(lock_path: Path) -> Generator[Path, None, None]:
    import msvcrt

    with open(lock_path, "w") as fd:
        try:
            msvcrt.locking(fd.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError as e:
            raise DestinationBusy(
                f"Destination is in use by another operation: {lock_path.parent}"
            ) from e
        try:
            yield lock_path.parent
        finally:
            with contextlib.suppress(OSError):
                msvcrt.locking(fd.fileno(), msvcrt.LK_UNLCK, 1)
