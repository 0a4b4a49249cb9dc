"""
Exchange data service.

Query surface over the append-only exchange log: thread lookups, engagement
validity and the set-once owner association.
"""

from datetime import UTC, datetime, timedelta

from inbox_scheduler.config import settings
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import ExchangeMessage, ResolvedMessage
from inbox_scheduler.repositories.exchange_repository import ExchangeRepository
from inbox_scheduler.repositories.user_repository import UserRepository

logger = get_logger(__name__)


class ExchangeDataService:
    """Exchange lookups, validity rules and owner association."""

    def __init__(
        self,
        repository=ExchangeRepository,
        user_repository=UserRepository,
        max_messages: int | None = None,
        max_age_days: int | None = None,
        assistant_name: str | None = None,
    ):
        self.repository = repository
        self.user_repository = user_repository
        self.max_messages = max_messages or settings.MAX_MESSAGES_IN_EXCHANGE
        self.max_age = timedelta(days=max_age_days or settings.EXCHANGE_MAX_AGE_DAYS)
        self.assistant_name = assistant_name or settings.ASSISTANT_NAME

    async def get_by_message_id(self, message_id: str) -> ExchangeMessage | None:
        return await self.repository.get_by_message_id(message_id)

    async def get_all_messages_in_exchange(self, exchange_id: str) -> list[ExchangeMessage]:
        """All stored messages of an exchange, oldest first."""
        return await self.repository.list_messages_in_exchange(exchange_id)

    async def get_exchange_owner(self, exchange_id: str) -> str | None:
        return await self.repository.get_exchange_owner(exchange_id)

    async def is_first_message_in_exchange(self, message: ExchangeMessage | ResolvedMessage) -> bool:
        """
        True when ``message`` is the earliest message of its exchange, or when
        nothing has been stored for the exchange yet.
        """
        messages = await self.get_all_messages_in_exchange(message.exchange_id)
        if not messages:
            return True

        first = messages[0]
        if isinstance(message, ExchangeMessage) and first.id == message.id:
            return True
        return first.message_id == message.message_id

    async def is_valid_engagement(
        self, message: ExchangeMessage | ResolvedMessage, now: datetime | None = None
    ) -> bool:
        """
        Whether the exchange may still be engaged.

        Evaluated against the messages stored right now. Invalid when nothing
        is stored, when more than ``max_messages`` are stored, or when the
        first message is older than ``max_age`` (a first message exactly
        ``max_age`` old is still valid).
        """
        now = now or datetime.now(UTC)
        messages = await self.get_all_messages_in_exchange(message.exchange_id)

        if not messages:
            return False

        if len(messages) > self.max_messages:
            logger.info(
                "Exchange exceeds message limit",
                exchange_id=message.exchange_id,
                message_count=len(messages),
                max_messages=self.max_messages,
            )
            return False

        first_timestamp = messages[0].timestamp
        if first_timestamp < now - self.max_age:
            logger.info(
                "Exchange is stale",
                exchange_id=message.exchange_id,
                first_message_at=first_timestamp.isoformat(),
                max_age_days=self.max_age.days,
            )
            return False

        return True

    async def save_message(self, message: ExchangeMessage) -> ExchangeMessage:
        """Persist a message; the exchange's existing owner wins over the one on ``message``."""
        existing_owner = await self.repository.get_exchange_owner(message.exchange_id)
        if existing_owner:
            message.exchange_owner_id = existing_owner
        return await self.repository.insert_message(message)

    async def associate_exchange_with_user(self, exchange_id: str, user_email: str) -> str | None:
        """
        Set the exchange owner to the user registered under ``user_email``,
        unless an owner is already set.

        Returns:
            The effective owner id (unchanged when one was already set), or
            None when the email is not a registered user and no owner exists
        """
        user = await self.user_repository.get_user_by_email(user_email)
        if user is None:
            logger.warning(
                "Cannot associate exchange, user not found",
                exchange_id=exchange_id,
                user_email=user_email,
            )
            return await self.repository.get_exchange_owner(exchange_id)

        owner_id = await self.repository.set_owner_if_unset(exchange_id, user.id)
        if owner_id != user.id:
            logger.info(
                "Exchange already owned, association skipped",
                exchange_id=exchange_id,
                owner_id=owner_id,
                requested_user_id=user.id,
            )
        return owner_id

    async def get_signature(self, exchange_id: str) -> str:
        """Sign-off for replies in this exchange, based on its owner."""
        owner_id = await self.repository.get_exchange_owner(exchange_id)
        if not owner_id:
            return f"Best,\n{self.assistant_name}"

        owner = await self.user_repository.get_user_by_id(owner_id)
        if owner is None:
            return f"Best,\n{self.assistant_name}"
        if owner.signature:
            return f"Best,\n{owner.signature}"
        return f"Best,\n{owner.email}'s AI Assistant"
