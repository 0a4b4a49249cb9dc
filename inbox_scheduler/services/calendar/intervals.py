"""
Interval arithmetic over busy/free time.

Pure functions; inputs are never mutated.
"""

from collections.abc import Iterable
from datetime import timedelta

from inbox_scheduler.models.domain.interval import BusyWindow, TimeInterval


def _as_interval(item: TimeInterval | BusyWindow) -> TimeInterval:
    return item.interval if isinstance(item, BusyWindow) else item


def merge_intervals(intervals: Iterable[TimeInterval | BusyWindow]) -> list[TimeInterval]:
    """
    Merge overlapping or touching intervals.

    Output is sorted by start. Touching intervals (``a.end == b.start``) are
    merged, so back-to-back meetings become one busy block.
    """
    ordered = sorted((_as_interval(i) for i in intervals), key=lambda i: (i.start, i.end))
    if not ordered:
        return []

    merged: list[TimeInterval] = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = TimeInterval(last.start, current.end)
        else:
            merged.append(current)

    return merged


def complement(
    busy: Iterable[TimeInterval | BusyWindow],
    window: TimeInterval,
    min_duration: timedelta = timedelta(0),
) -> list[TimeInterval]:
    """
    Free runs inside ``window`` not covered by ``busy``.

    Runs shorter than ``min_duration`` are dropped.
    """
    free: list[TimeInterval] = []
    cursor = window.start

    for interval in merge_intervals(busy):
        if interval.end <= window.start:
            continue
        if interval.start >= window.end:
            break
        if interval.start > cursor:
            free.append(TimeInterval(cursor, interval.start))
        cursor = max(cursor, interval.end)

    if cursor < window.end:
        free.append(TimeInterval(cursor, window.end))

    return [run for run in free if run.duration >= min_duration and run.duration > timedelta(0)]


def any_overlap(candidate: TimeInterval, others: Iterable[TimeInterval]) -> bool:
    """True when ``candidate`` overlaps any interval (half-open semantics)."""
    return any(candidate.overlaps(other) for other in others)
