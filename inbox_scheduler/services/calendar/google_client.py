"""
Google Calendar API client.
Low-level free/busy queries and event CRUD with retry.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from inbox_scheduler.errors import NotFoundError, TransportError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.calendar_domain import CalendarEvent
from inbox_scheduler.models.domain.interval import BusyWindow, TimeInterval, parse_instant

logger = get_logger(__name__)

# Google Calendar API configuration
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


def _path(segment: str) -> str:
    # Calendar ids such as "en.usa#holiday@group.v.calendar.google.com" need escaping
    return quote(segment, safe="")


class GoogleCalendarError(TransportError):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        retryable = status_code is None or status_code in RETRY_STATUS_CODES
        super().__init__(message, retryable=retryable, status_code=status_code)
        self.error_code = error_code
        self.response_data = response_data or {}


@dataclass(slots=True)
class FreeBusyResponse:
    """Busy windows per calendar plus calendars the provider reported errors for."""

    busy: dict[str, list[BusyWindow]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class GoogleCalendarService:
    """
    Service for Google Calendar API operations.

    Handles free/busy queries and event CRUD with error mapping. Requests
    are retried with backoff on 429 and 5xx.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, backoff_factor: float = BACKOFF_FACTOR):
        self._client = client or self._create_client()
        self._backoff_factor = backoff_factor

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for Calendar API."""
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = self._backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "Calendar API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise GoogleCalendarError(f"Calendar API unreachable: {e}") from e
                backoff = self._backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Calendar API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise GoogleCalendarError("Calendar API retry loop exhausted")

    def _event_url(self, calendar_id: str, event_id: str) -> str:
        return f"{CALENDAR_API_BASE_URL}/calendars/{_path(calendar_id)}/events/{_path(event_id)}"

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Calendar API response.

        Args:
            response: HTTP response from Calendar API
            operation: Operation name for logging

        Returns:
            dict: Parsed response data

        Raises:
            GoogleCalendarError: If response contains errors
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error("Failed to parse Calendar API response", operation=operation, error=str(e))
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                "Calendar API failed with non-JSON response",
                operation=operation,
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {})
        error_code = error_info.get("code", response.status_code)
        error_message = error_info.get("message", "Unknown Calendar API error")

        logger.error(
            "Calendar API request failed",
            operation=operation,
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )

        raise GoogleCalendarError(
            self._map_calendar_error(str(error_code), error_message),
            error_code=str(error_code),
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_calendar_error(self, error_code: str, error_message: str) -> str:
        """Map Calendar API error codes to readable messages."""
        error_mappings = {
            "403": "Calendar access denied. Please check permissions.",
            "404": "Calendar or event not found.",
            "400": "Invalid calendar request format.",
            "401": "Calendar authorization expired. Please reconnect.",
            "429": "Too many calendar requests. Please try again later.",
            "500": "Google Calendar service temporarily unavailable.",
        }

        return error_mappings.get(error_code, f"Calendar error: {error_message}")

    async def query_free_busy(
        self,
        access_token: str,
        window: TimeInterval,
        calendar_ids: list[str],
    ) -> FreeBusyResponse:
        """
        Query busy intervals for several calendars of one account in a single request.

        Args:
            access_token: OAuth access token of the account
            window: Time range to query
            calendar_ids: Calendars belonging to this account

        Returns:
            FreeBusyResponse: busy windows per calendar, and per-calendar errors
                (e.g. ``notFound``) reported inside an otherwise successful response

        Raises:
            GoogleCalendarError: If the request itself fails
        """
        url = f"{CALENDAR_API_BASE_URL}/freeBusy"
        query_data = {
            "timeMin": window.start.isoformat(),
            "timeMax": window.end.isoformat(),
            "items": [{"id": cal_id} for cal_id in calendar_ids],
        }

        logger.info(
            "Querying free/busy",
            time_min=query_data["timeMin"],
            time_max=query_data["timeMax"],
            calendar_count=len(calendar_ids),
        )

        response = await self._request_with_retry(
            "POST", url, headers=self._get_auth_headers(access_token), json=query_data
        )
        data = self._handle_api_response(response, "free_busy")

        result = FreeBusyResponse()
        calendars = data.get("calendars", {})
        for cal_id in calendar_ids:
            calendar_data = calendars.get(cal_id, {})
            errors = calendar_data.get("errors") or []
            if errors:
                result.errors[cal_id] = ", ".join(e.get("reason", "unknown") for e in errors)
                continue
            result.busy[cal_id] = [
                BusyWindow(
                    interval=TimeInterval(parse_instant(period["start"]), parse_instant(period["end"])),
                    calendar_id=cal_id,
                )
                for period in calendar_data.get("busy", [])
            ]

        logger.info(
            "Free/busy query completed",
            calendars_ok=len(result.busy),
            calendars_failed=len(result.errors),
            busy_count=sum(len(windows) for windows in result.busy.values()),
        )
        return result

    async def list_events(
        self,
        access_token: str,
        calendar_id: str = CALENDAR_PRIMARY,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 250,
    ) -> list[CalendarEvent]:
        """List single (expanded) events from a calendar within a range."""
        url = f"{CALENDAR_API_BASE_URL}/calendars/{_path(calendar_id)}/events"
        params: dict[str, Any] = {
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if time_min:
            params["timeMin"] = time_min.isoformat()
        if time_max:
            params["timeMax"] = time_max.isoformat()

        logger.info("Listing calendar events", calendar_id=calendar_id, max_results=max_results)

        response = await self._request_with_retry(
            "GET", url, headers=self._get_auth_headers(access_token), params=params
        )
        data = self._handle_api_response(response, "list_events")

        events = [CalendarEvent(item) for item in data.get("items", [])]
        logger.info("Events listed successfully", calendar_id=calendar_id, event_count=len(events))
        return events

    async def get_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> CalendarEvent:
        """
        Get a specific event by ID.

        Raises:
            NotFoundError: If the event does not exist
            GoogleCalendarError: For any other API failure
        """
        url = self._event_url(calendar_id, event_id)

        logger.info("Getting calendar event", event_id=event_id, calendar_id=calendar_id)

        response = await self._request_with_retry(
            "GET", url, headers=self._get_auth_headers(access_token)
        )
        if response.status_code in (404, 410):
            raise NotFoundError(f"Event {event_id} not found", resource="event", identifier=event_id)

        return CalendarEvent(self._handle_api_response(response, "get_event"))

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        description: str = "",
        location: str = "",
        timezone_str: str = "UTC",
        attendees: list[str] | None = None,
    ) -> CalendarEvent:
        """
        Create a new calendar event.

        Args:
            access_token: Valid OAuth access token
            summary: Event title
            start_time: Event start time
            end_time: Event end time
            calendar_id: Calendar ID (default: primary)
            description: Event description
            location: Event location
            timezone_str: Timezone for the event
            attendees: List of attendee email addresses

        Returns:
            CalendarEvent: Created event

        Raises:
            GoogleCalendarError: If creating event fails
        """
        url = f"{CALENDAR_API_BASE_URL}/calendars/{_path(calendar_id)}/events"

        event_data: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "location": location,
            "start": {"dateTime": start_time.isoformat(), "timeZone": timezone_str},
            "end": {"dateTime": end_time.isoformat(), "timeZone": timezone_str},
        }
        if attendees:
            event_data["attendees"] = [{"email": email} for email in attendees]

        logger.info(
            "Creating calendar event",
            summary=summary,
            start_time=start_time.isoformat(),
            calendar_id=calendar_id,
            attendee_count=len(attendees or []),
        )

        response = await self._request_with_retry(
            "POST", url, headers=self._get_auth_headers(access_token), json=event_data
        )
        event = CalendarEvent(self._handle_api_response(response, "create_event"))
        logger.info("Event created successfully", event_id=event.id, summary=summary)
        return event

    async def update_event(
        self,
        access_token: str,
        event_id: str,
        calendar_id: str = CALENDAR_PRIMARY,
        summary: str | None = None,
        description: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        location: str | None = None,
        timezone_str: str | None = None,
    ) -> CalendarEvent:
        """
        Patch an existing event; only the fields given are sent.

        Raises:
            NotFoundError: If the event does not exist
            GoogleCalendarError: For any other API failure
        """
        update_data: dict[str, Any] = {}
        if summary is not None:
            update_data["summary"] = summary
        if description is not None:
            update_data["description"] = description
        if location is not None:
            update_data["location"] = location

        if start_time is not None or end_time is not None or timezone_str is not None:
            # Google needs both ends restated when either moves
            existing_event = await self.get_event(access_token, event_id, calendar_id)
            timezone_name = timezone_str or existing_event.timezone
            update_data["start"] = {
                "dateTime": (start_time or existing_event.start_time).isoformat(),
                "timeZone": timezone_name,
            }
            update_data["end"] = {
                "dateTime": (end_time or existing_event.end_time).isoformat(),
                "timeZone": timezone_name,
            }

        logger.info(
            "Updating calendar event",
            event_id=event_id,
            calendar_id=calendar_id,
            fields_updated=list(update_data.keys()),
        )

        response = await self._request_with_retry(
            "PATCH",
            self._event_url(calendar_id, event_id),
            headers=self._get_auth_headers(access_token),
            json=update_data,
        )
        if response.status_code in (404, 410):
            raise NotFoundError(f"Event {event_id} not found", resource="event", identifier=event_id)

        event = CalendarEvent(self._handle_api_response(response, "update_event"))
        logger.info("Event updated successfully", event_id=event_id)
        return event

    async def delete_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> bool:
        """
        Delete a calendar event. An event that is already gone (410) counts as deleted.

        Raises:
            NotFoundError: If the event never existed
            GoogleCalendarError: For any other API failure
        """
        logger.info("Deleting calendar event", event_id=event_id, calendar_id=calendar_id)

        response = await self._request_with_retry(
            "DELETE", self._event_url(calendar_id, event_id), headers=self._get_auth_headers(access_token)
        )
        if response.status_code in (204, 410):
            logger.info("Event deleted successfully", event_id=event_id)
            return True
        if response.status_code == 404:
            raise NotFoundError(f"Event {event_id} not found", resource="event", identifier=event_id)

        self._handle_api_response(response, "delete_event")
        return True
