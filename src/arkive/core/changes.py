"""Change Detector: choose which enumerated files a backup run copies."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from arkive.core.models import ChangeSet, FileRecord

log = logging.getLogger(__name__)


def is_changed(record: FileRecord, baseline: Mapping[str, FileRecord]) -> bool:
    """True if ``record`` is new or strictly newer than its baseline entry."""
    previous = baseline.get(record.path)
    return previous is None or record.modified_time > previous.modified_time


def select_changes(
    current: Iterable[FileRecord],
    baseline: Mapping[str, FileRecord] | None,
) -> ChangeSet:
    """Select records for copying against ``baseline``.

    ``baseline=None`` means a full backup: everything is selected.
    Incremental and differential runs differ only in which index is passed.
    Only the modification time is compared; equal or older times are unchanged.
    """
    records = list(current)
    if baseline is None:
        return ChangeSet(records)

    selected = [r for r in records if is_changed(r, baseline)]
    log.debug("Selected %d of %d files against a baseline of %d", len(selected), len(records), len(baseline))
    return ChangeSet(selected)
