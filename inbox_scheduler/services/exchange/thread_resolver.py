"""
Thread resolution for inbound email.

An inbound message continues an exchange when its in-reply-to reference
resolves to a stored message; otherwise it starts a new exchange.
"""

import uuid
from collections.abc import Iterable

from inbox_scheduler.config import settings
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import (
    RawMessage,
    ResolvedMessage,
    normalize_address,
    normalize_addresses,
)
from inbox_scheduler.services.exchange.text import build_quoted_body

logger = get_logger(__name__)


def is_own_domain(address: str, own_domain: str) -> bool:
    _, _, domain = normalize_address(address).rpartition("@")
    return domain == own_domain.lower()


def merge_recipients(
    previous: Iterable[str],
    current: Iterable[str],
    sender: str,
    own_domain: str | None = None,
) -> list[str]:
    """
    Union of previous and current recipients for a reply-all.

    Addresses are lowercased and de-duplicated in first-seen order; the
    triggering sender and every address on the assistant's own domain are
    removed.
    """
    own_domain = own_domain or settings.own_domain()
    sender = normalize_address(sender)
    return [
        address
        for address in normalize_addresses([*previous, *current])
        if address != sender and not is_own_domain(address, own_domain)
    ]


class ThreadResolver:
    """Attaches inbound messages to their exchange."""

    def __init__(self, exchange_store, body_max_length: int | None = None):
        self.exchange_store = exchange_store
        self.body_max_length = body_max_length or settings.BODY_MAX_LENGTH

    async def resolve_thread(self, raw: RawMessage) -> ResolvedMessage:
        """
        Assign the exchange id for ``raw`` and build its cleaned, attributed body.

        A missing or unresolvable previous message id starts a new exchange.
        """
        previous_message = None
        if raw.previous_message_id:
            previous_message = await self.exchange_store.get_by_message_id(raw.previous_message_id)
            if previous_message is None:
                logger.info(
                    "Previous message not found, starting new exchange",
                    message_id=raw.message_id,
                    previous_message_id=raw.previous_message_id,
                )

        if previous_message is not None:
            exchange_id = previous_message.exchange_id
        else:
            exchange_id = str(uuid.uuid4())

        body = build_quoted_body(
            raw.raw_body,
            normalize_address(raw.sender),
            raw.timestamp,
            sender_name=raw.sender_name,
            max_length=self.body_max_length,
        )

        resolved = ResolvedMessage(
            raw=raw,
            exchange_id=exchange_id,
            is_new_exchange=previous_message is None,
            body=body,
            subject=(raw.raw_subject or "").strip(),
            previous_message=previous_message,
        )

        logger.info(
            "Thread resolved",
            message_id=raw.message_id,
            exchange_id=exchange_id,
            is_new_exchange=resolved.is_new_exchange,
        )
        return resolved
