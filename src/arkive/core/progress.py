"""Progress reporting contract and the shared percentage aggregation.

A reporter is any callable taking ``(percentage, message)``. Every component
computes percentages through ``scale_progress`` and funnels them through a
``ProgressTracker``, which keeps the reported sequence non-decreasing for
one operation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

log = logging.getLogger(__name__)


@runtime_checkable
class ProgressReporter(Protocol):
    """Callback invoked synchronously on the operation's own thread."""

    def __call__(self, percentage: int, message: str) -> None:
        ...


class NullReporter:
    """Reporter that discards every update."""

    def __call__(self, percentage: int, message: str) -> None:
        pass


NULL_REPORTER = NullReporter()


class LoggingReporter:
    """Reporter that forwards updates to a logger."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._log = logger or log
        self._level = level

    def __call__(self, percentage: int, message: str) -> None:
        self._log.log(self._level, "[%3d%%] %s", percentage, message)


def as_reporter(callback: Callable[[int, str], None] | None) -> Callable[[int, str], None]:
    """Return ``callback`` or the null reporter when none was given."""
    return callback if callback is not None else NULL_REPORTER


@dataclass(frozen=True)
class Stage:
    """Slice of the 0-100 range owned by one phase of an operation."""

    offset: int = 0
    weight: int = 100

    @property
    def end(self) -> int:
        return self.offset + self.weight


FULL_RANGE = Stage(0, 100)


def scale_progress(processed: int, total: int, stage_offset: int = 0, stage_weight: int = 100) -> int:
    """Map ``processed / total`` into ``[stage_offset, stage_offset + stage_weight]``.

    An empty total counts as complete. The result is clamped to 0-100.
    """
    if total <= 0:
        fraction = 1.0
    else:
        fraction = min(max(processed, 0), total) / total
    percent = stage_offset + int(fraction * stage_weight)
    return max(0, min(100, percent))


class ProgressTracker:
    """Monotonic front for a reporter during one operation."""

    def __init__(self, reporter: Callable[[int, str], None] | None = None) -> None:
        self._reporter = as_reporter(reporter)
        self.last = 0

    def report(self, percentage: int, message: str) -> int:
        """Emit ``percentage`` (never lower than anything already reported)."""
        self.last = max(self.last, max(0, min(100, int(percentage))))
        self._reporter(self.last, message)
        return self.last

    def update(self, processed: int, total: int, stage: Stage, message: str) -> int:
        """Emit the stage-scaled percentage for ``processed`` of ``total`` bytes."""
        return self.report(scale_progress(processed, total, stage.offset, stage.weight), message)

    def update_if_changed(self, processed: int, total: int, stage: Stage, message: str) -> bool:
        """Emit only when the integer percentage moved, bounding call volume."""
        percent = scale_progress(processed, total, stage.offset, stage.weight)
        if percent <= self.last:
            return False
        self.report(percent, message)
        return True

    def fail(self, message: str) -> None:
        """Report a failure at the last reached percentage."""
        self._reporter(self.last, message)


def as_tracker(reporter: ProgressTracker | Callable[[int, str], None] | None) -> ProgressTracker:
    """Wrap a plain callback; pass a shared tracker through unchanged."""
    if isinstance(reporter, ProgressTracker):
        return reporter
    return ProgressTracker(reporter)
