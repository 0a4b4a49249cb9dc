"""
Availability aggregation across every calendar account a user connected.

One free/busy request is made per provider account (all of that account's
calendars batched together). Accounts are queried concurrently and a failing
account is logged and skipped; the call only fails when no account answered.
"""

import asyncio
from collections.abc import Iterable
from datetime import timedelta

from inbox_scheduler.config import settings
from inbox_scheduler.errors import NotFoundError, PartialFailureError, SchedulingError, ValidationError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.calendar_domain import (
    AvailabilityResult,
    CalendarConnection,
    CalendarEvent,
)
from inbox_scheduler.models.domain.interval import (
    BusyWindow,
    CandidateSlot,
    TimeInterval,
    resolve_timezone,
)
from inbox_scheduler.repositories.calendar_repository import CalendarConnectionRepository
from inbox_scheduler.services.calendar.google_client import FreeBusyResponse, GoogleCalendarService
from inbox_scheduler.services.calendar.intervals import complement, merge_intervals
from inbox_scheduler.services.calendar.slots import find_slots, round_down_to_granularity

logger = get_logger(__name__)


class AvailabilityError(SchedulingError):
    """Availability could not be computed for a user."""

    def __init__(self, message: str, user_id: str | None = None, recoverable: bool = True):
        super().__init__(message, recoverable=recoverable)
        self.user_id = user_id


def group_by_account(connections: Iterable[CalendarConnection]) -> dict[str, list[CalendarConnection]]:
    """Group calendar connections by provider account, keeping first-seen order."""
    grouped: dict[str, list[CalendarConnection]] = {}
    for connection in connections:
        grouped.setdefault(connection.account_id, []).append(connection)
    return grouped


class AvailabilityService:
    """Builds a unified busy/free picture for a user."""

    def __init__(
        self,
        calendar_client: GoogleCalendarService,
        connection_repository=CalendarConnectionRepository,
        max_window_days: int | None = None,
        default_timezone: str | None = None,
    ):
        self.calendar_client = calendar_client
        self.connection_repository = connection_repository
        self.max_window_days = max_window_days or settings.MAX_AVAILABILITY_WINDOW_DAYS
        self.default_timezone = default_timezone or settings.DEFAULT_TIMEZONE

    def _validate_window(self, window: TimeInterval) -> None:
        if window.duration <= timedelta(0):
            raise ValidationError("Availability window must have a positive length", field="window")
        if window.duration > timedelta(days=self.max_window_days):
            raise ValidationError(
                f"Availability window cannot exceed {self.max_window_days} days", field="window"
            )

    async def _select_connections(
        self,
        user_id: str,
        include_calendar_ids: list[str] | None,
        exclude_calendar_ids: list[str] | None,
    ) -> list[CalendarConnection]:
        connections = await self.connection_repository.get_active_connections(user_id)
        if not connections:
            raise AvailabilityError("No calendars connected", user_id=user_id, recoverable=False)

        selected = [c for c in connections if c.include_in_availability]
        if include_calendar_ids:
            wanted = set(include_calendar_ids)
            selected = [c for c in selected if c.calendar_id in wanted]
        if exclude_calendar_ids:
            unwanted = set(exclude_calendar_ids)
            selected = [c for c in selected if c.calendar_id not in unwanted]

        if not selected:
            raise AvailabilityError(
                "No calendars selected for availability", user_id=user_id, recoverable=False
            )
        return selected

    async def _query_account(
        self, account_connections: list[CalendarConnection], window: TimeInterval
    ) -> FreeBusyResponse:
        access_token = account_connections[0].access_token
        calendar_ids = [c.calendar_id for c in account_connections]
        return await self.calendar_client.query_free_busy(access_token, window, calendar_ids)

    async def _list_events(
        self, connections: list[CalendarConnection], window: TimeInterval
    ) -> dict[str, list[CalendarEvent]]:
        results = await asyncio.gather(
            *(
                self.calendar_client.list_events(
                    c.access_token, c.calendar_id, time_min=window.start, time_max=window.end
                )
                for c in connections
            ),
            return_exceptions=True,
        )

        events: dict[str, list[CalendarEvent]] = {}
        for connection, result in zip(connections, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed to list events for calendar",
                    calendar_id=connection.calendar_id,
                    account_id=connection.account_id,
                    error=str(result),
                )
                continue
            events[connection.calendar_id] = result
        return events

    async def check_availability(
        self,
        user_id: str,
        window: TimeInterval,
        include_calendar_ids: list[str] | None = None,
        exclude_calendar_ids: list[str] | None = None,
        response_timezone: str | None = None,
        slot_duration_minutes: int = 30,
        include_events: bool = False,
    ) -> AvailabilityResult:
        """
        Merge busy time across all selected calendars and derive free windows.

        Args:
            user_id: Owner of the calendar connections
            window: Range to check
            include_calendar_ids: Only consider these calendars
            exclude_calendar_ids: Skip these calendars
            response_timezone: Timezone the caller wants results presented in
            slot_duration_minutes: Free windows shorter than this are dropped
            include_events: Also list event details per calendar

        Returns:
            AvailabilityResult with merged busy and free intervals

        Raises:
            ValidationError: Bad window, timezone or duration
            AvailabilityError: No calendars connected or selected
            PartialFailureError: Every account query failed, or no selected
                calendar could be checked
        """
        self._validate_window(window)
        if slot_duration_minutes <= 0:
            raise ValidationError("Slot duration must be positive", field="slot_duration_minutes")
        timezone_name = response_timezone or self.default_timezone
        resolve_timezone(timezone_name)

        connections = await self._select_connections(
            user_id, include_calendar_ids, exclude_calendar_ids
        )
        accounts = group_by_account(connections)

        logger.info(
            "Checking availability",
            user_id=user_id,
            account_count=len(accounts),
            calendar_count=len(connections),
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
        )

        responses = await asyncio.gather(
            *(self._query_account(conns, window) for conns in accounts.values()),
            return_exceptions=True,
        )

        busy_windows: list[BusyWindow] = []
        failed_accounts: dict[str, str] = {}
        unavailable_calendars: dict[str, str] = {}
        calendars_checked: list[str] = []

        for account_id, response in zip(accounts, responses, strict=True):
            if isinstance(response, Exception):
                logger.error(
                    "Free/busy query failed for account",
                    user_id=user_id,
                    account_id=account_id,
                    error=str(response),
                    error_type=type(response).__name__,
                )
                failed_accounts[account_id] = str(response)
                continue

            for calendar_id, windows in response.busy.items():
                calendars_checked.append(calendar_id)
                busy_windows.extend(windows)
            for calendar_id, reason in response.errors.items():
                logger.warning(
                    "Calendar unavailable in free/busy response",
                    account_id=account_id,
                    calendar_id=calendar_id,
                    reason=reason,
                )
                unavailable_calendars[calendar_id] = reason

        if len(failed_accounts) == len(accounts):
            raise PartialFailureError(
                "Availability could not be determined for any connected account",
                failures=failed_accounts,
            )
        if not calendars_checked:
            raise PartialFailureError(
                "None of the selected calendars could be checked",
                failures={**failed_accounts, **unavailable_calendars},
            )

        merged_busy = merge_intervals(busy_windows)
        free = complement(merged_busy, window, timedelta(minutes=slot_duration_minutes))

        events: dict[str, list[CalendarEvent]] = {}
        if include_events:
            queried = [
                c
                for c in connections
                if c.account_id not in failed_accounts and c.calendar_id not in unavailable_calendars
            ]
            events = await self._list_events(queried, window)

        if failed_accounts:
            logger.warning(
                "Availability computed from partial data",
                user_id=user_id,
                failed_accounts=list(failed_accounts),
            )

        logger.info(
            "Availability computed",
            user_id=user_id,
            busy_count=len(merged_busy),
            free_count=len(free),
        )

        return AvailabilityResult(
            busy=merged_busy,
            free=free,
            timezone=timezone_name,
            window=window,
            events=events,
            failed_accounts=failed_accounts,
            unavailable_calendars=unavailable_calendars,
            calendars_checked=calendars_checked,
        )

    async def find_bookable_slots(
        self,
        user_id: str,
        window: TimeInterval,
        duration_minutes: int,
        exclude_slots: list[TimeInterval] | None = None,
        max_results: int | None = None,
        timezone: str | None = None,
        granularity_minutes: int | None = None,
    ) -> tuple[list[CandidateSlot], AvailabilityResult]:
        """
        Find the first free slots of ``duration_minutes`` across all calendars.

        Busy time is fetched from the granularity boundary at or before
        ``window.start``, since the first candidate slot may start there.

        Returns:
            The slots and the availability they were derived from, so callers
            can report accounts that could not be queried.
        """
        if granularity_minutes is None:
            granularity_minutes = settings.SLOT_GRANULARITY_MINUTES
        timezone_name = timezone or self.default_timezone

        query_window = window
        if granularity_minutes > 0:
            query_window = TimeInterval(
                round_down_to_granularity(
                    window.start, granularity_minutes, resolve_timezone(timezone_name)
                ),
                window.end,
            )

        availability = await self.check_availability(
            user_id,
            query_window,
            response_timezone=timezone_name,
            slot_duration_minutes=duration_minutes,
        )
        slots = find_slots(
            window,
            duration_minutes,
            busy=availability.busy,
            exclude=exclude_slots or [],
            granularity_minutes=granularity_minutes,
            max_results=max_results,
            timezone=availability.timezone,
        )
        return slots, availability

    async def get_primary_connection(self, user_id: str) -> CalendarConnection:
        connection = await self.connection_repository.get_primary_connection(user_id)
        if connection is None:
            raise NotFoundError(
                "No primary calendar connected", resource="calendar_connection", identifier=user_id
            )
        return connection
