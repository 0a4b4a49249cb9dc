"""
Slot finder.

Scans a search window at a fixed granularity and returns the first
non-conflicting slots of the requested length. The scan advances by the
granularity only, never by the accepted slot's length, so accepted slots may
overlap each other.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from inbox_scheduler.config import settings
from inbox_scheduler.errors import ValidationError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.interval import (
    BusyWindow,
    CandidateSlot,
    TimeInterval,
    resolve_timezone,
)
from inbox_scheduler.services.calendar.intervals import any_overlap, merge_intervals

logger = get_logger(__name__)


def round_down_to_granularity(instant: datetime, granularity_minutes: int, tz: ZoneInfo) -> datetime:
    """Floor ``instant`` to the previous granularity boundary of the local wall clock in ``tz``."""
    local = instant.astimezone(tz)
    minute_of_day = local.hour * 60 + local.minute
    floored = minute_of_day - (minute_of_day % granularity_minutes)
    local = local.replace(hour=floored // 60, minute=floored % 60, second=0, microsecond=0)
    return local.astimezone(instant.tzinfo)


def find_slots(
    window: TimeInterval,
    duration_minutes: int,
    busy: Iterable[TimeInterval | BusyWindow] = (),
    exclude: Iterable[TimeInterval] = (),
    granularity_minutes: int | None = None,
    max_results: int | None = None,
    timezone: str | ZoneInfo | None = None,
) -> list[CandidateSlot]:
    """
    Enumerate candidate slots inside ``window``.

    Args:
        window: Search window
        duration_minutes: Length of each slot
        busy: Busy intervals; merged before testing
        exclude: Extra intervals the slot must not overlap (e.g. already offered slots)
        granularity_minutes: Step size and rounding boundary (default 15)
        max_results: Stop after this many slots (default 3)
        timezone: Timezone whose wall clock defines the rounding boundary

    Returns:
        Slots in ascending start order; empty when nothing fits
    """
    if granularity_minutes is None:
        granularity_minutes = settings.SLOT_GRANULARITY_MINUTES
    max_results = settings.MAX_SLOT_RESULTS if max_results is None else max_results

    if duration_minutes <= 0:
        raise ValidationError("Slot duration must be positive", field="duration_minutes")
    if granularity_minutes <= 0:
        raise ValidationError("Granularity must be positive", field="granularity_minutes")
    if max_results < 0:
        raise ValidationError("max_results cannot be negative", field="max_results")

    tz = timezone if isinstance(timezone, ZoneInfo) else resolve_timezone(timezone)
    merged_busy = merge_intervals(busy)
    exclusions = list(exclude)

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=granularity_minutes)
    cursor = round_down_to_granularity(window.start, granularity_minutes, tz)

    slots: list[CandidateSlot] = []
    while cursor + duration <= window.end and len(slots) < max_results:
        candidate = TimeInterval(cursor, cursor + duration)
        if not any_overlap(candidate, merged_busy) and not any_overlap(candidate, exclusions):
            slots.append(CandidateSlot(interval=candidate, order=len(slots) + 1))
        cursor += step

    logger.debug(
        "Slot search completed",
        window_start=window.start.isoformat(),
        window_end=window.end.isoformat(),
        duration_minutes=duration_minutes,
        busy_count=len(merged_busy),
        exclude_count=len(exclusions),
        slots_found=len(slots),
    )
    return slots
