from urllib.parse import parse_qs

import httpx
import pytest

from inbox_scheduler.services.email import mailgun_client
from inbox_scheduler.services.email.mailgun_client import MailgunClient, MailTransportError, OutboundEmail

MESSAGES_URL = "https://api.mailgun.net/v3/mail.example.com/messages"


def outbound(**overrides) -> OutboundEmail:
    data = {
        "sender": "Scheduling Assistant <assistant@mail.example.com>",
        "to": ["bob@example.com"],
        "subject": "Re: Lunch",
        "body": "Tuesday works.",
    }
    data.update(overrides)
    return OutboundEmail(**data)


@pytest.mark.asyncio
async def test_send_reply_threads_and_returns_normalized_id(httpx_mock):
    client = MailgunClient(api_key="key-test", domain="mail.example.com")

    httpx_mock.add_response(
        method="POST",
        url=MESSAGES_URL,
        json={"id": "<ABC123@Mail.Example.com>", "message": "Queued. Thank you."},
    )

    message_id = await client.send(outbound(cc=["carol@example.com"], in_reply_to="in-1@example.com"))
    await client.close()

    assert message_id == "abc123@mail.example.com"

    form = parse_qs(httpx_mock.get_request().content.decode())
    assert form["to"] == ["bob@example.com"]
    assert form["cc"] == ["carol@example.com"]
    assert form["h:In-Reply-To"] == ["<in-1@example.com>"]
    assert form["h:References"] == ["<in-1@example.com>"]


@pytest.mark.asyncio
async def test_new_thread_has_no_threading_headers(httpx_mock):
    client = MailgunClient(api_key="key-test", domain="mail.example.com")

    httpx_mock.add_response(method="POST", url=MESSAGES_URL, json={"id": "<new@mail.example.com>"})

    await client.send(outbound(subject="Scheduling Request: Coffee chat"))
    await client.close()

    form = parse_qs(httpx_mock.get_request().content.decode())
    assert "h:In-Reply-To" not in form
    assert form["subject"] == ["Scheduling Request: Coffee chat"]


@pytest.mark.asyncio
async def test_rejected_send_is_not_retried(httpx_mock):
    client = MailgunClient(api_key="key-test", domain="mail.example.com")

    httpx_mock.add_response(
        method="POST",
        url=MESSAGES_URL,
        status_code=400,
        json={"message": "'to' parameter is not a valid address"},
    )

    with pytest.raises(MailTransportError) as exc:
        await client.send(outbound())
    await client.close()

    assert exc.value.status_code == 400
    assert exc.value.retryable is False
    assert "not a valid address" in str(exc.value)
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_unreachable_provider_raises_transport_error(httpx_mock):
    client = MailgunClient(api_key="key-test", domain="mail.example.com")

    httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=MESSAGES_URL)

    with pytest.raises(MailTransportError, match="unreachable"):
        await client.send(outbound())
    await client.close()


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_sending(monkeypatch):
    monkeypatch.setattr(mailgun_client.settings, "MAILGUN_API_KEY", None)
    client = MailgunClient(domain="mail.example.com")

    with pytest.raises(MailTransportError, match="MAILGUN_API_KEY"):
        await client.send(outbound())
    await client.close()
