"""
Plain-text formatting of slots, events and scheduling request emails.

Everything here is pure. Output is read by people and by the language
model, so it uses numbered lists and labeled fields.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from zoneinfo import ZoneInfo

from inbox_scheduler.models.domain.calendar_domain import CalendarEvent
from inbox_scheduler.models.domain.interval import CandidateSlot, TimeInterval, resolve_timezone

NO_SLOTS_MESSAGE = "No available slots found in the specified time range."


def _tz(timezone: str | ZoneInfo | None) -> ZoneInfo:
    return timezone if isinstance(timezone, ZoneInfo) else resolve_timezone(timezone)


def format_time(value: datetime) -> str:
    """``9:00 AM`` style, no leading zero."""
    hour = value.hour % 12 or 12
    return f"{hour}:{value:%M} {value:%p}"


def format_day(value: datetime) -> str:
    """``Mon, Oct 20`` style."""
    return f"{value:%a, %b} {value.day}"


def format_range(interval: TimeInterval, timezone: str | ZoneInfo | None) -> str:
    """
    ``Mon, Oct 20 from 9:00 AM to 9:30 AM EDT``; the end day is repeated
    when the range crosses midnight in ``timezone``.
    """
    tz = _tz(timezone)
    start = interval.start.astimezone(tz)
    end = interval.end.astimezone(tz)
    abbreviation = end.tzname() or str(tz)

    if start.date() == end.date():
        return f"{format_day(start)} from {format_time(start)} to {format_time(end)} {abbreviation}"
    return (
        f"{format_day(start)} from {format_time(start)} "
        f"to {format_day(end)} {format_time(end)} {abbreviation}"
    )


def _as_interval(slot: CandidateSlot | TimeInterval) -> TimeInterval:
    return slot.interval if isinstance(slot, CandidateSlot) else slot


def format_slots(slots: Sequence[CandidateSlot | TimeInterval], timezone: str | ZoneInfo | None) -> str:
    """1-indexed slot list, or an explicit message when there are none."""
    if not slots:
        return NO_SLOTS_MESSAGE
    return "\n".join(
        f"{index}. {format_range(_as_interval(slot), timezone)}"
        for index, slot in enumerate(slots, start=1)
    )


def format_intervals(label: str, intervals: Iterable[TimeInterval], timezone: str | ZoneInfo | None) -> str:
    lines = [f"- {format_range(interval, timezone)}" for interval in intervals]
    if not lines:
        lines = ["- none"]
    return "\n".join([f"{label}:", *lines])


def format_event_summary(event: CalendarEvent, timezone: str | ZoneInfo | None) -> str:
    """Labeled multi-line description of an event."""
    interval = event.interval()
    when = format_range(interval, timezone) if interval else "the scheduled time"
    attendees = ", ".join(event.attendee_emails()) or "No attendees"

    return "\n".join(
        [
            f"Title: {event.summary or 'Event'}",
            f"Date & Time: {when}",
            f"Location: {event.location or 'No location specified'}",
            f"Attendees: {attendees}",
            f"Description: {event.description or 'No description provided'}",
        ]
    )


def scheduling_request_subject(summary: str | None) -> str:
    return f"Scheduling Request: {summary or 'Event'}"


def reschedule_request_subject(event: CalendarEvent) -> str:
    return f"Reschedule Request: {event.summary or 'Event'}"


def format_scheduling_request_body(
    summary: str | None,
    slots: Sequence[CandidateSlot | TimeInterval],
    timezone: str | ZoneInfo | None,
    attendees: Sequence[str],
    description: str | None = None,
    host_email: str | None = None,
) -> str:
    host_line = f"\nHost: {host_email}" if host_email else ""
    return f"""Hi there,

A meeting scheduling request is being made.

Event Details:
Title: {summary or 'Event'}
Description: {description or 'No description provided'}
Attendees: {', '.join(attendees)}{host_line}

Here are some time slots that are available:

Suggested Time Slots:
{format_slots(slots, timezone)}

Please let us know which of these times work best for you, or suggest an alternative time that fits your schedule."""


def format_reschedule_request_body(
    event: CalendarEvent,
    slots: Sequence[CandidateSlot | TimeInterval],
    timezone: str | ZoneInfo | None,
    reason: str | None = None,
) -> str:
    return f"""Hi there,

A request to reschedule the following event is being made.

Event Details:
{format_event_summary(event, timezone)}

Reason for Reschedule: {reason or 'Not specified'}

Here are some alternative time slots that are available:

Suggested Time Slots:
{format_slots(slots, timezone)}

Please let us know which of these times work best for you, or suggest an alternative time that fits your schedule."""
