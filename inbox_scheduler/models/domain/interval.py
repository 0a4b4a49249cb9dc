"""
Time interval domain models.

All instants are timezone-aware and normalized to UTC on construction; a
display timezone is applied only when formatting.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from inbox_scheduler.errors import ValidationError


def ensure_utc(value: datetime, field_name: str = "datetime") -> datetime:
    """Reject naive datetimes and convert aware ones to UTC."""
    if not isinstance(value, datetime):
        raise ValidationError(f"{field_name} must be a datetime", field=field_name)
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValidationError(f"{field_name} must be timezone-aware", field=field_name)
    return value.astimezone(UTC)


def parse_instant(value: str, field_name: str = "datetime") -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Invalid ISO-8601 {field_name}: {value!r}", field=field_name) from e
    return ensure_utc(parsed, field_name)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Load an IANA timezone, raising ValidationError for unknown names."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Invalid timezone: {name}", field="timezone") from e


@dataclass(frozen=True, slots=True)
class TimeInterval:
    """Half-open ``[start, end)`` interval between two instants. start == end is allowed."""

    start: datetime
    end: datetime

    def __post_init__(self):
        start = ensure_utc(self.start, "start")
        end = ensure_utc(self.end, "end")
        if end < start:
            raise ValidationError(
                f"Interval end {end.isoformat()} is before start {start.isoformat()}",
                field="end",
            )
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @classmethod
    def from_iso(cls, start: str, end: str) -> "TimeInterval":
        return cls(parse_instant(start, "start"), parse_instant(end, "end"))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeInterval") -> bool:
        """Half-open overlap test; intervals that only touch do not overlap."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeInterval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def to_dict(self, tz: ZoneInfo | None = None) -> dict:
        start, end = self.start, self.end
        if tz is not None:
            start, end = start.astimezone(tz), end.astimezone(tz)
        return {"start": start.isoformat(), "end": end.isoformat()}


@dataclass(frozen=True, slots=True)
class BusyWindow:
    """A busy interval tagged with the calendar that reported it."""

    interval: TimeInterval
    calendar_id: str

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end


@dataclass(frozen=True, slots=True)
class CandidateSlot:
    """A free slot of exactly the requested duration, numbered in discovery order."""

    interval: TimeInterval
    order: int = field(default=0)

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end
