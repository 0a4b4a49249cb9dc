"""
Tool surface exposed to the scheduling agent.

Every tool returns human-readable text. Failures the model can act on are
returned as ``Error: ...`` text rather than raised.
"""

import json
from collections.abc import Sequence
from typing import Any

from inbox_scheduler.db.helpers import DatabaseError
from inbox_scheduler.errors import SchedulingError, ValidationError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.calendar_domain import AvailabilityResult
from inbox_scheduler.models.domain.interval import TimeInterval, parse_instant
from inbox_scheduler.models.domain.user_domain import User
from inbox_scheduler.services.scheduling import composer

logger = get_logger(__name__)

FIND_BOOKABLE_SLOTS = "find_bookable_slots"
CHECK_BUSY_STATUS = "check_busy_status"
REQUEST_SCHEDULING_OVER_EMAIL = "request_scheduling_over_email"
REQUEST_RESCHEDULING_OVER_EMAIL = "request_rescheduling_over_email"
BOOK_MEETING = "book_meeting"

ALL_TOOLS = (
    FIND_BOOKABLE_SLOTS,
    CHECK_BUSY_STATUS,
    REQUEST_SCHEDULING_OVER_EMAIL,
    REQUEST_RESCHEDULING_OVER_EMAIL,
    BOOK_MEETING,
)

_SLOT_SCHEMA = {
    "type": "object",
    "properties": {
        "start": {"type": "string", "description": "ISO-8601 start with offset"},
        "end": {"type": "string", "description": "ISO-8601 end with offset"},
    },
    "required": ["start", "end"],
}

TOOL_DEFINITIONS: dict[str, dict[str, Any]] = {
    FIND_BOOKABLE_SLOTS: {
        "description": "Find free meeting slots across all of the user's calendars.",
        "parameters": {
            "type": "object",
            "properties": {
                "start": {"type": "string", "description": "Search window start (ISO-8601)"},
                "end": {"type": "string", "description": "Search window end (ISO-8601)"},
                "duration_minutes": {"type": "integer", "description": "Meeting length"},
                "exclude_slots": {"type": "array", "items": _SLOT_SCHEMA},
                "max_results": {"type": "integer"},
            },
            "required": ["start", "end", "duration_minutes"],
        },
    },
    CHECK_BUSY_STATUS: {
        "description": "List busy and free time for the user in a window.",
        "parameters": {
            "type": "object",
            "properties": {
                "start": {"type": "string", "description": "Window start (ISO-8601)"},
                "end": {"type": "string", "description": "Window end (ISO-8601)"},
            },
            "required": ["start", "end"],
        },
    },
    REQUEST_SCHEDULING_OVER_EMAIL: {
        "description": "Email attendees proposing time slots for a new meeting.",
        "parameters": {
            "type": "object",
            "properties": {
                "attendees": {"type": "array", "items": {"type": "string"}},
                "slots": {"type": "array", "items": _SLOT_SCHEMA},
                "summary": {"type": "string"},
                "description": {"type": "string"},
            },
            "required": ["attendees", "slots", "summary"],
        },
    },
    REQUEST_RESCHEDULING_OVER_EMAIL: {
        "description": "Email an event's attendees proposing alternative slots.",
        "parameters": {
            "type": "object",
            "properties": {
                "event_id": {"type": "string"},
                "slots": {"type": "array", "items": _SLOT_SCHEMA},
                "reason": {"type": "string"},
            },
            "required": ["event_id", "slots"],
        },
    },
    BOOK_MEETING: {
        "description": "Book an agreed time on the user's primary calendar and invite attendees.",
        "parameters": {
            "type": "object",
            "properties": {
                "start": {"type": "string", "description": "Meeting start (ISO-8601)"},
                "end": {"type": "string", "description": "Meeting end (ISO-8601)"},
                "summary": {"type": "string", "description": "Meeting title"},
                "attendees": {"type": "array", "items": {"type": "string"}},
                "description": {"type": "string"},
            },
            "required": ["start", "end", "summary"],
        },
    },
}


def openai_tool_specs(allowlist: Sequence[str]) -> list[dict[str, Any]]:
    """Function-calling specs for the allowed tools."""
    return [
        {"type": "function", "function": {"name": name, **TOOL_DEFINITIONS[name]}}
        for name in allowlist
        if name in TOOL_DEFINITIONS
    ]


def parse_slots(raw_slots: Sequence[dict] | None) -> list[TimeInterval]:
    return [TimeInterval.from_iso(slot["start"], slot["end"]) for slot in raw_slots or []]


def _partial_note(availability: AvailabilityResult) -> str:
    notes = []
    if availability.is_partial:
        notes.append(
            f"Note: {len(availability.failed_accounts)} calendar account(s) could not be checked, "
            "so results may be incomplete."
        )
    if availability.unavailable_calendars:
        notes.append(
            "Note: these calendars were unavailable: "
            + ", ".join(sorted(availability.unavailable_calendars))
        )
    return "\n".join(notes)


class SchedulingTools:
    """Agent tools bound to one user for one request."""

    def __init__(self, user: User, availability_service, request_service, timezone: str | None = None):
        self.user = user
        self.availability_service = availability_service
        self.request_service = request_service
        self.timezone = timezone or user.timezone

    async def find_bookable_slots(
        self,
        start: str,
        end: str,
        duration_minutes: int = 30,
        exclude_slots: Sequence[dict] | None = None,
        max_results: int | None = None,
    ) -> str:
        window = TimeInterval(parse_instant(start, "start"), parse_instant(end, "end"))
        slots, availability = await self.availability_service.find_bookable_slots(
            self.user.id,
            window,
            int(duration_minutes),
            exclude_slots=parse_slots(exclude_slots),
            max_results=max_results,
            timezone=self.timezone,
        )

        text = composer.format_slots(slots, self.timezone)
        if slots:
            text = f"Available {int(duration_minutes)}-minute slots ({self.timezone}):\n{text}"
        note = _partial_note(availability)
        return f"{text}\n\n{note}" if note else text

    async def check_busy_status(self, start: str, end: str, slot_duration_minutes: int = 30) -> str:
        window = TimeInterval(parse_instant(start, "start"), parse_instant(end, "end"))
        availability = await self.availability_service.check_availability(
            self.user.id,
            window,
            response_timezone=self.timezone,
            slot_duration_minutes=int(slot_duration_minutes),
        )

        sections = [
            f"Calendar status for {composer.format_range(window, self.timezone)}:",
            composer.format_intervals("Busy", availability.busy, self.timezone),
            composer.format_intervals("Free", availability.free, self.timezone),
        ]
        note = _partial_note(availability)
        if note:
            sections.append(note)
        return "\n\n".join(sections)

    async def request_scheduling_over_email(
        self,
        attendees: Sequence[str],
        slots: Sequence[dict],
        summary: str,
        description: str | None = None,
    ) -> str:
        return await self.request_service.request_scheduling(
            self.user,
            attendees,
            parse_slots(slots),
            summary=summary,
            description=description,
            timezone=self.timezone,
        )

    async def request_rescheduling_over_email(
        self, event_id: str, slots: Sequence[dict], reason: str | None = None
    ) -> str:
        return await self.request_service.request_rescheduling(
            self.user, event_id, parse_slots(slots), reason=reason, timezone=self.timezone
        )

    async def book_meeting(
        self,
        start: str,
        end: str,
        summary: str,
        attendees: Sequence[str] | None = None,
        description: str | None = None,
    ) -> str:
        return await self.request_service.book_meeting(
            self.user,
            TimeInterval.from_iso(start, end),
            summary,
            attendees=attendees or [],
            description=description,
            timezone=self.timezone,
        )

    async def dispatch(self, name: str, arguments: dict[str, Any] | str | None) -> str:
        """Route a tool call from the agent and return its text result."""
        handlers = {
            FIND_BOOKABLE_SLOTS: self.find_bookable_slots,
            CHECK_BUSY_STATUS: self.check_busy_status,
            REQUEST_SCHEDULING_OVER_EMAIL: self.request_scheduling_over_email,
            REQUEST_RESCHEDULING_OVER_EMAIL: self.request_rescheduling_over_email,
            BOOK_MEETING: self.book_meeting,
        }
        handler = handlers.get(name)
        if handler is None:
            return f"Error: unknown tool '{name}'"

        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments else {}
            except json.JSONDecodeError as e:
                return f"Error: tool arguments are not valid JSON ({e.msg})"

        logger.info("Agent tool call", tool=name, user_id=self.user.id)
        try:
            return await handler(**(arguments or {}))
        except TypeError as e:
            return f"Error: invalid arguments for {name}: {e}"
        except (KeyError, ValueError, ValidationError) as e:
            return f"Error: invalid input for {name}: {e}"
        except (SchedulingError, DatabaseError) as e:
            logger.warning("Agent tool failed", tool=name, user_id=self.user.id, error=str(e))
            return f"Error: {e}"
