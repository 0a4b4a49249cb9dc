import json
import re
from datetime import UTC, datetime

import pytest

from inbox_scheduler.errors import NotFoundError
from inbox_scheduler.models.domain.interval import TimeInterval
from inbox_scheduler.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService

FREE_BUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"
WINDOW = TimeInterval(datetime(2025, 10, 20, 9, tzinfo=UTC), datetime(2025, 10, 20, 17, tzinfo=UTC))


@pytest.mark.asyncio
async def test_free_busy_maps_busy_windows_and_calendar_errors(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="POST",
        url=FREE_BUSY_URL,
        json={
            "calendars": {
                "work": {"busy": [{"start": "2025-10-20T10:00:00Z", "end": "2025-10-20T11:00:00Z"}]},
                "shared": {"errors": [{"domain": "global", "reason": "notFound"}]},
            }
        },
    )

    result = await service.query_free_busy("token", WINDOW, ["work", "shared"])
    await service.close()

    assert [w.interval.start.hour for w in result.busy["work"]] == [10]
    assert result.busy["work"][0].calendar_id == "work"
    assert result.errors == {"shared": "notFound"}

    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer token"
    assert json.loads(request.content)["items"] == [{"id": "work"}, {"id": "shared"}]


@pytest.mark.asyncio
async def test_free_busy_expired_token_is_not_retried(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="POST",
        url=FREE_BUSY_URL,
        status_code=401,
        json={"error": {"code": 401, "message": "Invalid Credentials"}},
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.query_free_busy("token", WINDOW, ["work"])
    await service.close()

    assert exc.value.status_code == 401
    assert exc.value.retryable is False
    assert "authorization" in str(exc.value).lower()
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_free_busy_retries_server_errors(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(method="POST", url=FREE_BUSY_URL, status_code=503)
    httpx_mock.add_response(method="POST", url=FREE_BUSY_URL, json={"calendars": {"work": {"busy": []}}})

    result = await service.query_free_busy("token", WINDOW, ["work"])
    await service.close()

    assert result.busy == {"work": []}
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_get_event_not_found(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="GET",
        url="https://www.googleapis.com/calendar/v3/calendars/primary/events/evt-gone",
        status_code=404,
        json={"error": {"code": 404, "message": "Not Found"}},
    )

    with pytest.raises(NotFoundError) as exc:
        await service.get_event("token", "evt-gone")
    await service.close()

    assert exc.value.identifier == "evt-gone"


@pytest.mark.asyncio
async def test_get_event_success(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="GET",
        url="https://www.googleapis.com/calendar/v3/calendars/work/events/evt-1",
        json={
            "id": "evt-1",
            "summary": "Quarterly review",
            "start": {"dateTime": "2025-10-20T15:00:00Z"},
            "end": {"dateTime": "2025-10-20T16:00:00Z"},
            "attendees": [{"email": "bob@example.com"}],
            "organizer": {"email": "alice@example.com"},
        },
    )

    event = await service.get_event("token", "evt-1", calendar_id="work")
    await service.close()

    assert event.summary == "Quarterly review"
    assert event.organizer == "alice@example.com"
    assert event.start_time == datetime(2025, 10, 20, 15, tzinfo=UTC)


@pytest.mark.asyncio
async def test_list_events_expands_single_events(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="GET",
        url=re.compile(r"https://www\.googleapis\.com/calendar/v3/calendars/work/events\?.*"),
        json={
            "items": [
                {
                    "id": "evt-1",
                    "status": "confirmed",
                    "summary": "Standup",
                    "start": {"dateTime": "2025-10-20T10:00:00Z"},
                    "end": {"dateTime": "2025-10-20T10:30:00Z"},
                }
            ]
        },
    )

    events = await service.list_events("token", "work", time_min=WINDOW.start, time_max=WINDOW.end)
    await service.close()

    assert [e.id for e in events] == ["evt-1"]
    request = httpx_mock.get_request()
    assert request.url.params["singleEvents"] == "true"
    assert request.url.params["timeMin"] == "2025-10-20T09:00:00+00:00"


HOLIDAY_CALENDAR = "en.usa#holiday@group.v.calendar.google.com"
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/work/events"


@pytest.mark.asyncio
async def test_calendar_ids_are_escaped_in_the_path(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(method="GET", json={"items": []})

    await service.list_events("token", HOLIDAY_CALENDAR)
    await service.close()

    request = httpx_mock.get_request()
    assert request.url.raw_path.startswith(
        b"/calendar/v3/calendars/en.usa%23holiday%40group.v.calendar.google.com/events?"
    )
    assert request.url.fragment == ""


@pytest.mark.asyncio
async def test_create_event_sends_times_and_attendees(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        json={
            "id": "evt-new",
            "summary": "Coffee chat",
            "start": {"dateTime": "2025-10-21T15:00:00Z", "timeZone": "UTC"},
            "end": {"dateTime": "2025-10-21T15:30:00Z", "timeZone": "UTC"},
        },
    )

    event = await service.create_event(
        "token",
        "Coffee chat",
        datetime(2025, 10, 21, 15, tzinfo=UTC),
        datetime(2025, 10, 21, 15, 30, tzinfo=UTC),
        calendar_id="work",
        attendees=["bob@example.com"],
    )
    await service.close()

    assert event.id == "evt-new"
    body = json.loads(httpx_mock.get_request().content)
    assert body["start"] == {"dateTime": "2025-10-21T15:00:00+00:00", "timeZone": "UTC"}
    assert body["attendees"] == [{"email": "bob@example.com"}]


@pytest.mark.asyncio
async def test_update_event_patches_only_given_fields(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="PATCH", url=f"{EVENTS_URL}/evt-1", json={"id": "evt-1", "summary": "Renamed"}
    )

    event = await service.update_event("token", "evt-1", calendar_id="work", summary="Renamed")
    await service.close()

    assert event.summary == "Renamed"
    (request,) = httpx_mock.get_requests()
    assert json.loads(request.content) == {"summary": "Renamed"}


@pytest.mark.asyncio
async def test_update_event_moving_start_restates_both_ends(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(
        method="GET",
        url=f"{EVENTS_URL}/evt-1",
        json={
            "id": "evt-1",
            "start": {"dateTime": "2025-10-20T15:00:00Z", "timeZone": "America/New_York"},
            "end": {"dateTime": "2025-10-20T16:00:00Z", "timeZone": "America/New_York"},
        },
    )
    httpx_mock.add_response(method="PATCH", url=f"{EVENTS_URL}/evt-1", json={"id": "evt-1"})

    await service.update_event(
        "token", "evt-1", calendar_id="work", start_time=datetime(2025, 10, 20, 14, tzinfo=UTC)
    )
    await service.close()

    patch = json.loads(httpx_mock.get_requests()[-1].content)
    assert patch["start"] == {"dateTime": "2025-10-20T14:00:00+00:00", "timeZone": "America/New_York"}
    assert patch["end"] == {"dateTime": "2025-10-20T16:00:00+00:00", "timeZone": "America/New_York"}


@pytest.mark.asyncio
async def test_update_missing_event_raises_not_found(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(method="PATCH", url=f"{EVENTS_URL}/evt-gone", status_code=404)

    with pytest.raises(NotFoundError):
        await service.update_event("token", "evt-gone", calendar_id="work", summary="x")
    await service.close()


@pytest.mark.asyncio
async def test_delete_event_treats_gone_as_deleted(httpx_mock):
    service = GoogleCalendarService(backoff_factor=0)

    httpx_mock.add_response(method="DELETE", url=f"{EVENTS_URL}/evt-1", status_code=204)
    httpx_mock.add_response(method="DELETE", url=f"{EVENTS_URL}/evt-2", status_code=410)
    httpx_mock.add_response(method="DELETE", url=f"{EVENTS_URL}/evt-3", status_code=404)

    assert await service.delete_event("token", "evt-1", calendar_id="work") is True
    assert await service.delete_event("token", "evt-2", calendar_id="work") is True
    with pytest.raises(NotFoundError):
        await service.delete_event("token", "evt-3", calendar_id="work")
    await service.close()
