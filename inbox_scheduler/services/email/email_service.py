"""
Outbound email composition and reply routing.

Every send produces an outbound ExchangeMessage carrying the thread context:
replies inherit the exchange of the message they answer, new threads get a
fresh exchange id. Persisting that record is the caller's job, after the
send succeeds.
"""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

from inbox_scheduler.config import settings
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import (
    ExchangeMessage,
    MessageType,
    normalize_address,
    normalize_addresses,
)
from inbox_scheduler.services.email.mailgun_client import OutboundEmail
from inbox_scheduler.services.exchange.text import reply_subject
from inbox_scheduler.services.exchange.thread_resolver import is_own_domain

logger = get_logger(__name__)


class ReplyType(StrEnum):
    SENDER_ONLY = "sender-only"
    ALL_INCLUDING_SENDER = "all-including-sender"
    ALL_EXCLUDING_SENDER = "all-excluding-sender"
    ALL_WITH_CC_TO_SENDER = "all-with-cc-to-sender"


class MailTransport(Protocol):
    async def send(self, email: OutboundEmail) -> str: ...


def reply_recipients(
    sender: str, recipients: list[str], reply_type: ReplyType
) -> tuple[list[str], list[str]]:
    """(to, cc) for replying to a message from ``sender`` addressed to ``recipients``."""
    sender = normalize_address(sender)
    others = [r for r in normalize_addresses(recipients) if r != sender]

    match ReplyType(reply_type):
        case ReplyType.SENDER_ONLY:
            return [sender], []
        case ReplyType.ALL_INCLUDING_SENDER:
            return [sender, *others], []
        case ReplyType.ALL_EXCLUDING_SENDER:
            return others, []
        case ReplyType.ALL_WITH_CC_TO_SENDER:
            return others, [sender]


class EmailService:
    """Sends email on behalf of the assistant."""

    def __init__(
        self,
        transport: MailTransport,
        sender_address: str | None = None,
        sender_name: str | None = None,
        own_domain: str | None = None,
    ):
        self.transport = transport
        self.sender_address = normalize_address(sender_address or settings.ASSISTANT_EMAIL_ADDRESS)
        self.sender_name = sender_name or settings.ASSISTANT_NAME
        self.own_domain = (own_domain or settings.own_domain()).lower()

    @property
    def from_header(self) -> str:
        return f"{self.sender_name} <{self.sender_address}>"

    def process_recipients(self, recipients: list[str] | None) -> list[str]:
        """Lowercase, de-duplicate and drop addresses on the assistant's own domain."""
        return [r for r in normalize_addresses(recipients) if not is_own_domain(r, self.own_domain)]

    async def send_email(
        self,
        to: list[str],
        subject: str,
        body: str,
        cc: list[str] | None = None,
        bcc: list[str] | None = None,
        body_html: str | None = None,
        reply_to: ExchangeMessage | None = None,
        owner_id: str | None = None,
    ) -> ExchangeMessage:
        """
        Send an email, as a reply to ``reply_to`` or as a new thread.

        Returns:
            ExchangeMessage: The outbound record (not yet persisted)

        Raises:
            MailTransportError: If the provider rejects or cannot be reached
        """
        to = self.process_recipients(to)
        cc = [r for r in self.process_recipients(cc) if r not in to]
        bcc = [r for r in self.process_recipients(bcc) if r not in to and r not in cc]

        if reply_to is not None:
            exchange_id = reply_to.exchange_id
            previous_message_id = reply_to.message_id
        else:
            exchange_id = str(uuid.uuid4())
            previous_message_id = None

        message_id = await self.transport.send(
            OutboundEmail(
                sender=self.from_header,
                to=to,
                cc=cc,
                bcc=bcc,
                subject=subject,
                body=body,
                body_html=body_html,
                in_reply_to=previous_message_id,
            )
        )

        outbound = ExchangeMessage.create(
            exchange_id=exchange_id,
            message_id=message_id,
            sender=self.sender_address,
            recipients=[*to, *cc, *bcc],
            type=MessageType.OUTBOUND,
            timestamp=datetime.now(UTC),
            previous_message_id=previous_message_id,
            exchange_owner_id=owner_id,
        )

        logger.info(
            "Outbound email recorded",
            exchange_id=exchange_id,
            message_id=message_id,
            new_thread=reply_to is None,
            recipient_count=len(outbound.recipients),
        )
        return outbound

    async def send_reply(
        self,
        original: ExchangeMessage,
        body: str,
        reply_type: ReplyType = ReplyType.SENDER_ONLY,
        subject: str | None = None,
        body_html: str | None = None,
        owner_id: str | None = None,
    ) -> ExchangeMessage:
        """Reply to ``original`` with recipients chosen by ``reply_type``."""
        to, cc = reply_recipients(original.sender, original.recipients, reply_type)
        return await self.send_email(
            to=to,
            cc=cc,
            subject=reply_subject(subject),
            body=body,
            body_html=body_html,
            reply_to=original,
            owner_id=owner_id,
        )
