"""
Exchange domain models.

An exchange is one email conversation. Every message in it is stored as an
append-only ExchangeMessage row; only ``exchange_owner_id`` may be filled in
later, and only once.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class MessageType(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


def normalize_address(address: str) -> str:
    return address.strip().lower()


def normalize_addresses(addresses) -> list[str]:
    """Lowercase, strip and de-duplicate addresses, keeping first-seen order."""
    seen: dict[str, None] = {}
    for address in addresses or []:
        if not address:
            continue
        normalized = normalize_address(address)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


@dataclass(slots=True)
class RawMessage:
    """An inbound email as delivered by the mail transport."""

    message_id: str
    sender: str
    recipients: list[str]
    raw_subject: str
    raw_body: str
    timestamp: datetime
    previous_message_id: str | None = None
    sender_name: str | None = None
    cc: list[str] = field(default_factory=list)
    body_html: str | None = None


@dataclass(slots=True)
class ExchangeMessage:
    """Represents one exchange_data row."""

    id: str
    exchange_id: str
    message_id: str
    sender: str
    recipients: list[str]
    timestamp: datetime
    type: MessageType
    previous_message_id: str | None = None
    exchange_owner_id: str | None = None

    @classmethod
    def create(
        cls,
        *,
        exchange_id: str,
        message_id: str,
        sender: str,
        recipients: list[str],
        type: MessageType,
        timestamp: datetime | None = None,
        previous_message_id: str | None = None,
        exchange_owner_id: str | None = None,
    ) -> "ExchangeMessage":
        return cls(
            id=str(uuid.uuid4()),
            exchange_id=exchange_id,
            message_id=message_id,
            sender=normalize_address(sender),
            recipients=normalize_addresses(recipients),
            timestamp=timestamp or datetime.now(UTC),
            type=MessageType(type),
            previous_message_id=previous_message_id,
            exchange_owner_id=exchange_owner_id,
        )


@dataclass(slots=True)
class ResolvedMessage:
    """An inbound message attached to its exchange, ready for classification."""

    raw: RawMessage
    exchange_id: str
    is_new_exchange: bool
    body: str
    subject: str
    previous_message: ExchangeMessage | None = None

    @property
    def message_id(self) -> str:
        return self.raw.message_id

    @property
    def sender(self) -> str:
        return normalize_address(self.raw.sender)

    @property
    def recipients(self) -> list[str]:
        return normalize_addresses([*self.raw.recipients, *self.raw.cc])

    def to_exchange_message(
        self, recipients: list[str] | None = None, owner_id: str | None = None
    ) -> ExchangeMessage:
        """Build the inbound row persisted for this message."""
        return ExchangeMessage.create(
            exchange_id=self.exchange_id,
            message_id=self.raw.message_id,
            sender=self.raw.sender,
            recipients=recipients if recipients is not None else self.recipients,
            type=MessageType.INBOUND,
            timestamp=self.raw.timestamp,
            previous_message_id=self.raw.previous_message_id,
            exchange_owner_id=owner_id,
        )
