"""
Calendar Domain Models
Domain models for calendar connections, provider events and availability results.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from inbox_scheduler.models.domain.interval import TimeInterval


class CalendarEvent:
    """Domain model for a provider calendar event."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.summary = data.get("summary", "")
        self.description = data.get("description", "")
        self.start_time = self._parse_datetime(data.get("start", {}))
        self.end_time = self._parse_datetime(data.get("end", {}))
        self.timezone = data.get("start", {}).get("timeZone", "UTC")
        self.status = data.get("status", "confirmed")
        self.attendees = data.get("attendees", [])
        self.organizer = (data.get("organizer") or {}).get("email")
        self.location = data.get("location", "")
        self.raw_data = data

    def _parse_datetime(self, dt_data: dict) -> datetime | None:
        """Parse datetime from Google Calendar format."""
        if not dt_data:
            return None

        # All-day events carry a date only
        if "date" in dt_data:
            return datetime.strptime(dt_data["date"], "%Y-%m-%d").replace(tzinfo=UTC)

        if "dateTime" in dt_data:
            try:
                return datetime.fromisoformat(dt_data["dateTime"].replace("Z", "+00:00"))
            except ValueError:
                return None

        return None

    def is_all_day(self) -> bool:
        return "date" in self.raw_data.get("start", {})

    def is_busy(self) -> bool:
        """Check if this event blocks availability."""
        transparency = self.raw_data.get("transparency", "opaque")
        return transparency == "opaque" and self.status == "confirmed"

    def attendee_emails(self) -> list[str]:
        return [a["email"] for a in self.attendees if a.get("email")]

    def interval(self) -> TimeInterval | None:
        if not self.start_time or not self.end_time:
            return None
        return TimeInterval(self.start_time, self.end_time)

    def to_dict(self, tz: ZoneInfo | None = None) -> dict:
        """Convert to dictionary, optionally shifting times into ``tz``."""
        start, end = self.start_time, self.end_time
        if tz is not None:
            start = start.astimezone(tz) if start else None
            end = end.astimezone(tz) if end else None
        return {
            "id": self.id,
            "summary": self.summary,
            "description": self.description,
            "start_time": start.isoformat() if start else None,
            "end_time": end.isoformat() if end else None,
            "status": self.status,
            "location": self.location,
            "is_all_day": self.is_all_day(),
            "is_busy": self.is_busy(),
            "attendees": self.attendee_emails(),
        }


@dataclass(slots=True)
class CalendarConnection:
    """One calendar reachable through a connected provider account."""

    id: str
    user_id: str
    account_id: str
    calendar_id: str
    access_token: str
    calendar_name: str | None = None
    provider: str = "google"
    is_primary: bool = False
    include_in_availability: bool = True


@dataclass(slots=True)
class AvailabilityResult:
    """Unified busy/free picture across every calendar account a user connected."""

    busy: list[TimeInterval]
    free: list[TimeInterval]
    timezone: str
    window: TimeInterval
    events: dict[str, list[CalendarEvent]] = field(default_factory=dict)
    failed_accounts: dict[str, str] = field(default_factory=dict)
    unavailable_calendars: dict[str, str] = field(default_factory=dict)
    calendars_checked: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_accounts)

    def to_dict(self) -> dict:
        tz = ZoneInfo(self.timezone)
        return {
            "busy": [interval.to_dict(tz) for interval in self.busy],
            "free": [interval.to_dict(tz) for interval in self.free],
            "events": {
                calendar_id: [event.to_dict(tz) for event in events]
                for calendar_id, events in self.events.items()
            },
            "timezone": self.timezone,
            "failed_accounts": self.failed_accounts,
            "unavailable_calendars": self.unavailable_calendars,
            "calendars_checked": self.calendars_checked,
        }
