"""
Scheduling and rescheduling requests sent on behalf of a user.

Each request opens a new email thread owned by the user, so counterpart
replies are routed back into the third-party flow. Once a time is agreed the
meeting is booked on the user's primary calendar.
"""

from collections.abc import Sequence

from inbox_scheduler.errors import NotFoundError, ValidationError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import (
    ExchangeMessage,
    normalize_address,
    normalize_addresses,
)
from inbox_scheduler.models.domain.interval import TimeInterval
from inbox_scheduler.models.domain.user_domain import User
from inbox_scheduler.services.scheduling import composer

logger = get_logger(__name__)


class SchedulingRequestService:
    """Composes, sends and records scheduling request emails."""

    def __init__(self, email_service, exchange_data_service, calendar_client, availability_service):
        self.email_service = email_service
        self.exchange_data_service = exchange_data_service
        self.calendar_client = calendar_client
        self.availability_service = availability_service

    async def _send_on_behalf_of_user(
        self, user: User, subject: str, body: str, recipients: list[str]
    ) -> ExchangeMessage:
        outbound = await self.email_service.send_email(
            to=recipients, subject=subject, body=body, owner_id=user.id
        )
        return await self.exchange_data_service.save_message(outbound)

    async def request_scheduling(
        self,
        user: User,
        attendees: Sequence[str],
        slots: Sequence[TimeInterval],
        summary: str | None = None,
        description: str | None = None,
        timezone: str | None = None,
    ) -> str:
        """Email attendees (and the user as host) a list of proposed slots."""
        attendee_emails = normalize_addresses(attendees)
        if not attendee_emails:
            raise ValidationError("At least one attendee is required", field="attendees")
        if not slots:
            raise ValidationError("At least one slot is required", field="slots")

        recipients = normalize_addresses([*attendee_emails, user.email])
        body = composer.format_scheduling_request_body(
            summary,
            slots,
            timezone or user.timezone,
            attendees=attendee_emails,
            description=description,
            host_email=user.email,
        )

        outbound = await self._send_on_behalf_of_user(
            user, composer.scheduling_request_subject(summary), body, recipients
        )
        logger.info(
            "Scheduling request sent",
            user_id=user.id,
            exchange_id=outbound.exchange_id,
            recipient_count=len(recipients),
        )
        return f"Scheduling request sent successfully to {', '.join(recipients)}"

    async def request_rescheduling(
        self,
        user: User,
        event_id: str,
        slots: Sequence[TimeInterval],
        reason: str | None = None,
        timezone: str | None = None,
    ) -> str:
        """Email an event's attendees and organizer proposing alternative slots."""
        if not slots:
            raise ValidationError("At least one slot is required", field="slots")

        connection = await self.availability_service.get_primary_connection(user.id)
        event = await self.calendar_client.get_event(
            connection.access_token, event_id, connection.calendar_id
        )

        recipients = event.attendee_emails()
        if event.organizer:
            recipients.append(event.organizer)
        recipients = normalize_addresses(recipients)
        if not recipients:
            raise NotFoundError(
                f"Event {event_id} has no attendees to notify", resource="event", identifier=event_id
            )

        body = composer.format_reschedule_request_body(
            event, slots, timezone or user.timezone, reason=reason
        )
        outbound = await self._send_on_behalf_of_user(
            user, composer.reschedule_request_subject(event), body, recipients
        )
        logger.info(
            "Reschedule request sent",
            user_id=user.id,
            event_id=event_id,
            exchange_id=outbound.exchange_id,
            recipient_count=len(recipients),
        )
        return f"Rescheduling request sent successfully to {', '.join(recipients)}"

    async def book_meeting(
        self,
        user: User,
        slot: TimeInterval,
        summary: str,
        attendees: Sequence[str] = (),
        description: str | None = None,
        timezone: str | None = None,
    ) -> str:
        """Put the agreed slot on the user's primary calendar if it is still free."""
        if not summary or not summary.strip():
            raise ValidationError("A meeting title is required", field="summary")

        timezone_name = timezone or user.timezone
        availability = await self.availability_service.check_availability(
            user.id,
            slot,
            response_timezone=timezone_name,
            slot_duration_minutes=max(1, int(slot.duration.total_seconds() // 60)),
        )
        if any(busy.overlaps(slot) for busy in availability.busy):
            raise ValidationError(
                f"{composer.format_range(slot, timezone_name)} is no longer free", field="slot"
            )

        attendee_emails = [a for a in normalize_addresses(attendees) if a != normalize_address(user.email)]
        connection = await self.availability_service.get_primary_connection(user.id)
        event = await self.calendar_client.create_event(
            connection.access_token,
            summary.strip(),
            slot.start,
            slot.end,
            calendar_id=connection.calendar_id,
            description=description or "",
            timezone_str=timezone_name,
            attendees=attendee_emails,
        )
        logger.info(
            "Meeting booked",
            user_id=user.id,
            event_id=event.id,
            calendar_id=connection.calendar_id,
            attendee_count=len(attendee_emails),
        )

        text = f"Meeting booked: {summary.strip()} on {composer.format_range(slot, timezone_name)}"
        if attendee_emails:
            text += f" with {', '.join(attendee_emails)}"
        return f"{text} (event id {event.id})"
