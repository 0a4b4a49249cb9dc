"""
Mailgun HTTP client for outbound email.

Sends are never retried: a retry after an ambiguous failure could deliver
the same email twice.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx

from inbox_scheduler.config import settings
from inbox_scheduler.errors import TransportError
from inbox_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 20  # seconds


class MailTransportError(TransportError):
    """Outbound mail could not be handed to the provider."""

    def __init__(self, message: str, status_code: int | None = None, response_data: dict | None = None):
        super().__init__(message, retryable=False, status_code=status_code)
        self.response_data = response_data or {}


@dataclass(slots=True)
class OutboundEmail:
    sender: str
    to: list[str]
    subject: str
    body: str
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    body_html: str | None = None
    in_reply_to: str | None = None
    references: list[str] = field(default_factory=list)


def _wrap_message_id(message_id: str) -> str:
    return message_id if message_id.startswith("<") else f"<{message_id}>"


def _unwrap_message_id(message_id: str) -> str:
    return message_id.strip().strip("<>").lower()


class MailgunClient:
    """Thin wrapper over the Mailgun messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        domain: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key or settings.MAILGUN_API_KEY
        self.domain = domain or settings.MAILGUN_DOMAIN
        self.base_url = (base_url or settings.MAILGUN_API_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT))

    async def close(self) -> None:
        await self._client.aclose()

    def _build_form(self, email: OutboundEmail) -> dict[str, str]:
        form = {
            "from": email.sender,
            "to": ", ".join(email.to),
            "subject": email.subject,
            "text": email.body,
        }
        if email.cc:
            form["cc"] = ", ".join(email.cc)
        if email.bcc:
            form["bcc"] = ", ".join(email.bcc)
        if email.body_html:
            form["html"] = email.body_html
        if email.in_reply_to:
            form["h:In-Reply-To"] = _wrap_message_id(email.in_reply_to)
            references = email.references or [email.in_reply_to]
            form["h:References"] = " ".join(_wrap_message_id(r) for r in references)
        return form

    async def send(self, email: OutboundEmail) -> str:
        """
        Send one email.

        Returns:
            str: Transport message id assigned by Mailgun (without angle brackets)

        Raises:
            MailTransportError: On any failure; never retried
        """
        if not self.api_key:
            raise MailTransportError("MAILGUN_API_KEY not configured")
        if not email.to:
            raise MailTransportError("Email has no recipients")

        url = f"{self.base_url}/{self.domain}/messages"

        logger.info(
            "Sending email",
            to_count=len(email.to),
            cc_count=len(email.cc),
            bcc_count=len(email.bcc),
            is_reply=bool(email.in_reply_to),
        )

        try:
            response = await self._client.post(
                url, auth=("api", self.api_key), data=self._build_form(email)
            )
        except httpx.RequestError as e:
            logger.error("Mailgun request failed", error=str(e), error_type=type(e).__name__)
            raise MailTransportError(f"Mail transport unreachable: {e}") from e

        data: dict[str, Any]
        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}

        if not response.is_success:
            logger.error(
                "Mailgun send failed",
                status_code=response.status_code,
                message=data.get("message"),
            )
            raise MailTransportError(
                f"Mail send failed (HTTP {response.status_code}): {data.get('message', 'unknown error')}",
                status_code=response.status_code,
                response_data=data,
            )

        message_id = data.get("id")
        if not message_id:
            raise MailTransportError("Mail provider returned no message id", response_data=data)

        message_id = _unwrap_message_id(message_id)
        logger.info("Email sent", message_id=message_id)
        return message_id
