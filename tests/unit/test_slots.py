from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from inbox_scheduler.errors import ValidationError
from inbox_scheduler.models.domain.interval import TimeInterval
from inbox_scheduler.services.calendar.slots import find_slots, round_down_to_granularity


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 10, 20, hour, minute, tzinfo=UTC)


def starts(slots) -> list[datetime]:
    return [slot.start for slot in slots]


def test_first_three_slots_around_busy_block():
    window = TimeInterval(at(9), at(12))
    busy = [TimeInterval(at(9, 30), at(10, 30))]

    slots = find_slots(window, 30, busy=busy, granularity_minutes=15, max_results=3)

    assert starts(slots) == [at(9), at(10, 30), at(10, 45)]
    assert [slot.order for slot in slots] == [1, 2, 3]
    assert all(slot.end - slot.start == (at(9, 30) - at(9)) for slot in slots)


def test_slots_never_overlap_busy_time():
    window = TimeInterval(at(8), at(18))
    busy = [
        TimeInterval(at(8), at(9, 10)),
        TimeInterval(at(9, 40), at(11)),
        TimeInterval(at(11, 5), at(12)),
    ]

    slots = find_slots(window, 25, busy=busy, granularity_minutes=5, max_results=10)

    assert len(slots) == 10
    for slot in slots:
        assert not any(slot.interval.overlaps(b) for b in busy)


def test_accepted_slots_may_overlap_each_other():
    window = TimeInterval(at(9), at(11))

    slots = find_slots(window, 60, granularity_minutes=15, max_results=3)

    assert starts(slots) == [at(9), at(9, 15), at(9, 30)]
    assert slots[0].interval.overlaps(slots[1].interval)


def test_window_start_is_rounded_down_to_granularity():
    window = TimeInterval(at(9, 7), at(10))

    slots = find_slots(window, 30, granularity_minutes=15, max_results=1)

    assert starts(slots) == [at(9)]


def test_rounding_uses_local_wall_clock():
    kolkata = ZoneInfo("Asia/Kolkata")

    # 09:07 UTC is 14:37 in Kolkata; the local hour boundary is 14:00 = 08:30 UTC
    assert round_down_to_granularity(at(9, 7), 60, kolkata) == at(8, 30)
    assert round_down_to_granularity(at(9, 7), 60, ZoneInfo("UTC")) == at(9)


def test_excluded_slots_are_skipped():
    window = TimeInterval(at(9), at(12))
    exclude = [TimeInterval(at(9), at(9, 30)), TimeInterval(at(9, 30), at(10))]

    slots = find_slots(window, 30, exclude=exclude, granularity_minutes=30, max_results=2)

    assert starts(slots) == [at(10), at(10, 30)]


def test_result_count_is_bounded():
    window = TimeInterval(at(0), at(23))

    assert len(find_slots(window, 15, granularity_minutes=15, max_results=4)) == 4
    assert find_slots(window, 15, granularity_minutes=15, max_results=0) == []


def test_duration_longer_than_window_finds_nothing():
    window = TimeInterval(at(9), at(9, 45))

    assert find_slots(window, 60, granularity_minutes=15) == []


def test_fully_busy_window_finds_nothing():
    window = TimeInterval(at(9), at(12))

    assert find_slots(window, 30, busy=[TimeInterval(at(8), at(13))], granularity_minutes=15) == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"duration_minutes": 0},
        {"duration_minutes": 30, "granularity_minutes": 0},
        {"duration_minutes": 30, "max_results": -1},
    ],
)
def test_invalid_parameters_are_rejected(kwargs):
    window = TimeInterval(at(9), at(12))

    with pytest.raises(ValidationError):
        find_slots(window, **kwargs)


def test_unknown_timezone_is_rejected():
    window = TimeInterval(at(9), at(12))

    with pytest.raises(ValidationError):
        find_slots(window, 30, timezone="Mars/Olympus_Mons")
