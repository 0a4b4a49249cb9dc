import random
from datetime import UTC, datetime, timedelta, timezone

import pytest

from inbox_scheduler.errors import ValidationError
from inbox_scheduler.models.domain.interval import BusyWindow, TimeInterval, parse_instant
from inbox_scheduler.services.calendar.intervals import complement, merge_intervals


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 10, 20, hour, minute, tzinfo=UTC)


def iv(start: tuple, end: tuple) -> TimeInterval:
    return TimeInterval(at(*start), at(*end))


def test_interval_rejects_naive_datetimes():
    with pytest.raises(ValidationError):
        TimeInterval(datetime(2025, 10, 20, 9), at(10))


def test_interval_rejects_end_before_start():
    with pytest.raises(ValidationError) as exc:
        TimeInterval(at(10), at(9))

    assert exc.value.field == "end"


def test_zero_length_interval_is_allowed():
    interval = TimeInterval(at(9), at(9))

    assert interval.duration == timedelta(0)


def test_interval_is_normalized_to_utc():
    plus_two = timezone(timedelta(hours=2))
    interval = TimeInterval(
        datetime(2025, 10, 20, 11, tzinfo=plus_two), datetime(2025, 10, 20, 12, tzinfo=plus_two)
    )

    assert interval.start == at(9)
    assert interval.start.tzinfo == UTC


def test_parse_instant_accepts_z_suffix():
    assert parse_instant("2025-10-20T09:00:00Z") == at(9)

    with pytest.raises(ValidationError):
        parse_instant("2025-10-20T09:00:00")


def test_overlap_is_half_open():
    assert iv((9,), (10,)).overlaps(iv((9, 30), (10, 30)))
    assert not iv((9,), (10,)).overlaps(iv((10,), (11,)))


def test_merge_overlapping_and_contained_intervals():
    merged = merge_intervals([iv((9,), (10,)), iv((9, 30), (11,)), iv((9, 45), (10, 15)), iv((13,), (14,))])

    assert merged == [iv((9,), (11,)), iv((13,), (14,))]


def test_merge_joins_touching_intervals():
    assert merge_intervals([iv((9,), (10,)), iv((10,), (11,))]) == [iv((9,), (11,))]


def test_merge_empty_input():
    assert merge_intervals([]) == []


def test_merge_accepts_busy_windows_from_several_calendars():
    busy = [
        BusyWindow(iv((9,), (10,)), "work"),
        BusyWindow(iv((9, 30), (10, 30)), "personal"),
    ]

    assert merge_intervals(busy) == [iv((9,), (10, 30))]


def test_merge_is_idempotent_and_order_independent():
    intervals = [
        iv((8,), (8, 30)),
        iv((9,), (10,)),
        iv((9, 15), (9, 45)),
        iv((10,), (10, 15)),
        iv((12,), (13,)),
        iv((12, 30), (14,)),
        iv((16,), (16,)),
    ]
    expected = merge_intervals(intervals)

    shuffled = list(intervals)
    random.Random(7).shuffle(shuffled)

    assert merge_intervals(shuffled) == expected
    assert merge_intervals(expected) == expected
    for first, second in zip(expected, expected[1:]):
        assert first.end < second.start


def test_merge_does_not_mutate_input():
    intervals = [iv((10,), (11,)), iv((9,), (10, 30))]
    snapshot = list(intervals)

    merge_intervals(intervals)

    assert intervals == snapshot


def test_complement_returns_gaps_inside_window():
    window = iv((9,), (17,))
    busy = [iv((10,), (11,)), iv((13,), (14,))]

    assert complement(busy, window) == [iv((9,), (10,)), iv((11,), (13,)), iv((14,), (17,))]


def test_complement_drops_runs_shorter_than_min_duration():
    window = iv((9,), (17,))
    busy = [iv((10,), (11,)), iv((13,), (14,))]

    free = complement(busy, window, timedelta(minutes=90))

    assert free == [iv((11,), (13,)), iv((14,), (17,))]


def test_complement_clips_busy_time_outside_window():
    window = iv((9,), (12,))
    busy = [iv((7,), (9, 30)), iv((11, 30), (15,))]

    assert complement(busy, window) == [iv((9, 30), (11, 30))]


def test_complement_of_fully_busy_window_is_empty():
    assert complement([iv((8,), (18,))], iv((9,), (17,))) == []
