import asyncio
import dataclasses
from datetime import UTC, datetime

import pytest

from inbox_scheduler.errors import AgentError
from inbox_scheduler.models.domain.calendar_domain import CalendarEvent
from inbox_scheduler.models.domain.exchange_domain import ExchangeMessage, MessageType
from inbox_scheduler.models.domain.user_domain import User
from inbox_scheduler.services.calendar.google_client import FreeBusyResponse
from inbox_scheduler.services.email.email_service import EmailService
from inbox_scheduler.services.email.mailgun_client import MailTransportError
from inbox_scheduler.services.exchange.data_service import ExchangeDataService

OWN_DOMAIN = "mail.example.com"
ASSISTANT = "assistant@mail.example.com"


class FakeExchangeRepository:
    """In-memory exchange_data with the same owner semantics as the SQL repository."""

    def __init__(self):
        self.rows: list[ExchangeMessage] = []
        self._owner_lock = asyncio.Lock()

    def _owner(self, exchange_id: str) -> str | None:
        for row in self.rows:
            if row.exchange_id == exchange_id and row.exchange_owner_id:
                return row.exchange_owner_id
        return None

    async def insert_message(self, message: ExchangeMessage) -> ExchangeMessage:
        existing = await self.get_by_message_id(message.message_id)
        if existing is not None:
            return existing
        stored = dataclasses.replace(
            message,
            recipients=list(message.recipients),
            exchange_owner_id=self._owner(message.exchange_id) or message.exchange_owner_id,
        )
        self.rows.append(stored)
        return stored

    async def get_by_message_id(self, message_id: str) -> ExchangeMessage | None:
        return next((row for row in self.rows if row.message_id == message_id), None)

    async def list_messages_in_exchange(self, exchange_id: str) -> list[ExchangeMessage]:
        return sorted(
            (row for row in self.rows if row.exchange_id == exchange_id),
            key=lambda row: (row.timestamp, row.id),
        )

    async def get_exchange_owner(self, exchange_id: str) -> str | None:
        return self._owner(exchange_id)

    async def set_owner_if_unset(self, exchange_id: str, owner_id: str) -> str | None:
        async with self._owner_lock:
            # Yield so concurrent callers interleave before the check
            await asyncio.sleep(0)
            if self._owner(exchange_id) is None:
                for row in self.rows:
                    if row.exchange_id == exchange_id:
                        row.exchange_owner_id = owner_id
            return self._owner(exchange_id)

    def in_exchange(self, exchange_id: str) -> list[ExchangeMessage]:
        return [row for row in self.rows if row.exchange_id == exchange_id]


class FakeUserRepository:
    def __init__(self, users: list[User] | None = None):
        self.users = {user.id: user for user in users or []}

    def add(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def get_user_by_email(self, email: str) -> User | None:
        email = email.strip().lower()
        return next(
            (u for u in self.users.values() if u.email.lower() == email and u.is_active), None
        )

    async def get_user_by_id(self, user_id: str) -> User | None:
        return self.users.get(user_id)


class FakeMailTransport:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, email) -> str:
        if self.fail:
            raise MailTransportError("Mail send failed (HTTP 500): boom", status_code=500)
        self.sent.append(email)
        return f"out-{len(self.sent)}@{OWN_DOMAIN}"


class FakeAgent:
    def __init__(self, reply: str = "Here are some times that work.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def generate(self, prompt, *, profile, tools, context):
        self.calls.append({"prompt": prompt, "profile": profile, "tools": tools, "context": context})
        if self.error is not None:
            raise self.error
        return self.reply


class FakeConnectionRepository:
    def __init__(self, connections=None):
        self.connections = list(connections or [])

    async def get_active_connections(self, user_id: str):
        return [c for c in self.connections if c.user_id == user_id]

    async def get_primary_connection(self, user_id: str):
        mine = [c for c in self.connections if c.user_id == user_id]
        primary = [c for c in mine if c.is_primary]
        return (primary or mine or [None])[0]


class FakeCalendarClient:
    """
    Free/busy answers keyed by access token; a stored exception is raised instead.

    Like the provider, only busy windows overlapping the queried window are
    reported, and calendars without a configured answer come back free.
    """

    def __init__(self, free_busy=None, events=None):
        self.free_busy = free_busy or {}
        self.events = events or {}
        self.free_busy_calls = []
        self.free_busy_windows = []
        self.list_events_calls = []
        self.created_events = []

    async def query_free_busy(self, access_token, window, calendar_ids):
        self.free_busy_calls.append((access_token, list(calendar_ids)))
        self.free_busy_windows.append(window)
        result = self.free_busy.get(access_token)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return FreeBusyResponse(busy={calendar_id: [] for calendar_id in calendar_ids})
        return FreeBusyResponse(
            busy={
                calendar_id: [w for w in windows if w.interval.overlaps(window)]
                for calendar_id, windows in result.busy.items()
            },
            errors=dict(result.errors),
        )

    async def list_events(self, access_token, calendar_id, time_min=None, time_max=None):
        self.list_events_calls.append(calendar_id)
        return self.events.get(calendar_id, [])

    async def get_event(self, access_token, event_id, calendar_id="primary"):
        event = self.events.get(event_id)
        if isinstance(event, Exception):
            raise event
        return event

    async def create_event(self, access_token, summary, start_time, end_time, **kwargs):
        self.created_events.append(
            {"access_token": access_token, "summary": summary, "start": start_time, "end": end_time, **kwargs}
        )
        return make_event(
            id=f"evt-new-{len(self.created_events)}",
            summary=summary,
            start={"dateTime": start_time.isoformat()},
            end={"dateTime": end_time.isoformat()},
        )


def make_message(
    exchange_id: str,
    message_id: str,
    sender: str = "bob@example.com",
    recipients: list[str] | None = None,
    timestamp: datetime | None = None,
    type: MessageType = MessageType.INBOUND,
    owner_id: str | None = None,
    previous_message_id: str | None = None,
) -> ExchangeMessage:
    return ExchangeMessage.create(
        exchange_id=exchange_id,
        message_id=message_id,
        sender=sender,
        recipients=recipients if recipients is not None else [ASSISTANT],
        type=type,
        timestamp=timestamp or datetime.now(UTC),
        previous_message_id=previous_message_id,
        exchange_owner_id=owner_id,
    )


def make_event(**overrides) -> CalendarEvent:
    data = {
        "id": "evt-1",
        "summary": "Quarterly review",
        "start": {"dateTime": "2025-10-20T15:00:00Z"},
        "end": {"dateTime": "2025-10-20T16:00:00Z"},
        "attendees": [{"email": "bob@example.com"}, {"email": "carol@example.com"}],
        "organizer": {"email": "alice@example.com"},
    }
    data.update(overrides)
    return CalendarEvent(data)


@pytest.fixture
def alice():
    return User(id="user-alice", email="alice@example.com", display_name="Alice", timezone="UTC")


@pytest.fixture
def exchange_repo():
    return FakeExchangeRepository()


@pytest.fixture
def user_repo(alice):
    return FakeUserRepository([alice])


@pytest.fixture
def mail_transport():
    return FakeMailTransport()


@pytest.fixture
def data_service(exchange_repo, user_repo):
    return ExchangeDataService(
        repository=exchange_repo,
        user_repository=user_repo,
        max_messages=25,
        max_age_days=30,
        assistant_name="Scheduling Assistant",
    )


@pytest.fixture
def email_service(mail_transport):
    return EmailService(
        mail_transport,
        sender_address=ASSISTANT,
        sender_name="Scheduling Assistant",
        own_domain=OWN_DOMAIN,
    )


@pytest.fixture
def failing_agent():
    return FakeAgent(error=AgentError("Language model unavailable"))


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def connection_repo():
    return FakeConnectionRepository()


@pytest.fixture
def calendar_client():
    return FakeCalendarClient()


@pytest.fixture
def message_factory():
    return make_message


@pytest.fixture
def event_factory():
    return make_event
